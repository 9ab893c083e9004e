#!/usr/bin/env python3
"""
Name: uniq
Description: report or filter out repeated lines in a file
Author: Jonathan Feinberg, jdf@pobox.com (Original Perl Author)
License: perl
"""

import sys
import os
import argparse
import locale
import re

# Longest line accepted by default, terminator included. 0 disables the limit.
LINE_MAX = 65536

BLANKS = b' \t'

class UniqError(Exception):
    """Base class for errors that end the program with a message."""
    exit_status = 1

class UsageError(UniqError):
    pass

class SelfClobberError(UniqError):
    def __init__(self):
        super().__init__("output clobbers input, bailing")

class OpenError(UniqError):
    def __init__(self, path, strerror):
        super().__init__(f"failed to open '{path}': {strerror}")
        self.path = path
        self.strerror = strerror

class LineTooLongError(UniqError):
    def __init__(self, lineno, limit):
        super().__init__(f"line {lineno} is longer than {limit} bytes")
        self.lineno = lineno
        self.limit = limit

class Mode:
    """The output selection: -c, -d and -u as independent switches."""
    def __init__(self, count=False, repeated=False, unique=False):
        self.count = count
        self.repeated = repeated
        self.unique = unique

    @classmethod
    def from_args(cls, args):
        return cls(count=args.count, repeated=args.repeated, unique=args.unique)

    def __repr__(self):
        return f"Mode(count={self.count}, repeated={self.repeated}, unique={self.unique})"

def line_end(line: bytes) -> int:
    """Offset of the line terminator, or the length if there is none."""
    return len(line) - 1 if line.endswith(b'\n') else len(line)

def skip_fields(line: bytes, fields: int, start: int = 0, end: int = None) -> int:
    """
    Returns the offset just past `fields` fields. One field is a run of
    non-blanks followed by a run of blanks. Stops at `end` if the line
    runs out first.
    """
    if end is None:
        end = line_end(line)
    pos = start
    for _ in range(fields):
        if pos >= end:
            break
        while pos < end and line[pos] not in BLANKS:
            pos += 1
        while pos < end and line[pos] in BLANKS:
            pos += 1
    return pos

def skip_chars(line: bytes, chars: int, start: int = 0, end: int = None) -> int:
    """Returns the offset `chars` bytes past `start`, clamped to `end`."""
    if end is None:
        end = line_end(line)
    return min(start + chars, end)

def get_comparison_key(line: bytes, skip_field_count: int, skip_char_count: int) -> memoryview:
    """
    Returns a view of the part of the line used for comparison,
    respecting the -f (fields) and -s (chars) options. The line
    terminator is never part of the key.
    """
    end = line_end(line)
    pos = skip_fields(line, skip_field_count, 0, end)
    pos = skip_chars(line, skip_char_count, pos, end)
    return memoryview(line)[pos:end]

def format_run(line, count: int, mode: Mode):
    """
    Renders one closed run for output, or returns None if the mode
    suppresses it. -d and -u filter independently, so both together
    select nothing.
    """
    if count == 0:
        return None
    if mode.repeated and count == 1:
        return None
    if mode.unique and count != 1:
        return None
    if mode.count:
        return b"%d %s" % (count, line)
    return line

class LineCollapser:
    """Holds the current run of adjacent duplicate lines."""
    def __init__(self, skip_field_count=0, skip_char_count=0, mode=None):
        self.skip_field_count = skip_field_count
        self.skip_char_count = skip_char_count
        self.mode = mode or Mode()
        self.line = None
        self.key = None
        self.count = 0

    def feed(self, line: bytes):
        """
        Adds a line. Returns the output of the run it closed, if any;
        a line that extends the current run returns None.
        """
        key = get_comparison_key(line, self.skip_field_count, self.skip_char_count)
        if self.count and key == self.key:
            # The first line of a run is the one that gets printed.
            self.count += 1
            return None

        output = self.finish()
        self.line = line
        self.key = key
        self.count = 1
        return output

    def finish(self):
        """Closes the buffered run and returns its output, if any."""
        output = format_run(self.line, self.count, self.mode)
        self.line = None
        self.key = None
        self.count = 0
        return output

def collapse(lines, skip_field_count=0, skip_char_count=0, mode=None):
    """Yields the output chunks for an iterable of lines."""
    collapser = LineCollapser(skip_field_count, skip_char_count, mode)
    for line in lines:
        output = collapser.feed(line)
        if output is not None:
            yield output
    output = collapser.finish()
    if output is not None:
        yield output

def read_lines(stream, max_line=LINE_MAX):
    """
    Yields the lines of a binary stream. A line longer than `max_line`
    bytes is an error rather than being split or truncated.
    """
    lineno = 0
    while True:
        line = stream.readline(max_line + 1) if max_line else stream.readline()
        if not line:
            return
        lineno += 1
        if max_line and len(line) > max_line:
            raise LineTooLongError(lineno, max_line)
        yield line

def open_stream(path: str, mode: str):
    """Opens a file in binary mode, with '-' meaning stdin or stdout."""
    if path == '-':
        return sys.stdin.buffer if 'r' in mode else sys.stdout.buffer
    try:
        return open(path, mode)
    except OSError as e:
        raise OpenError(path, e.strerror) from e

def uniq(input_path='-', output_path='-', skip_field_count=0, skip_char_count=0,
         mode=None, max_line=LINE_MAX) -> int:
    """Copies input to output collapsing adjacent duplicates. Returns the exit status."""
    infile = open_stream(input_path, 'rb')
    try:
        outfile = open_stream(output_path, 'wb')
        try:
            # close() flushes again, so its errors are reported like write errors.
            try:
                for chunk in collapse(read_lines(infile, max_line), skip_field_count, skip_char_count, mode):
                    outfile.write(chunk)
                outfile.flush()
            finally:
                if output_path != '-':
                    outfile.close()
        except BrokenPipeError:
            raise
        except OSError as e:
            raise UniqError(f"I/O error: {e.strerror}") from e
    finally:
        if input_path != '-':
            infile.close()
    return 0

def resolve_operands(operands: list) -> tuple:
    """Turns the [input [output]] operands into an (input, output) pair."""
    if len(operands) > 2:
        raise UsageError("too many operands")
    input_path = operands[0] if len(operands) > 0 else '-'
    output_path = operands[1] if len(operands) > 1 else '-'
    if input_path == output_path == '-':
        raise SelfClobberError()
    return input_path, output_path

def count_arg(text: str) -> int:
    """argparse type for the -f and -s counts: plain decimal digits only."""
    if not re.fullmatch(r'[0-9]+', text):
        raise argparse.ArgumentTypeError(f"invalid count: '{text}'")
    value = int(text)
    if value > sys.maxsize:
        raise argparse.ArgumentTypeError(f"count out of range: '{text}'")
    return value

def build_parser():
    parser = argparse.ArgumentParser(
        description="Report or filter out repeated adjacent lines in a file.",
        usage="%(prog)s [-c] [-d] [-u] [-f fields] [-s chars] [input [output]]"
    )
    # -c, -d and -u may be combined; -d -u together print nothing.
    parser.add_argument('-c', '--count', action='store_true', help='Precede each line with its repetition count.')
    parser.add_argument('-d', '--repeated', action='store_true', help='Only print duplicate lines, one for each group.')
    parser.add_argument('-u', '--unique', action='store_true', help='Only print lines that are not repeated.')

    parser.add_argument('-f', '--skip-fields', type=count_arg, default=0, metavar='fields',
                        help='Avoid comparing the first N fields.')
    parser.add_argument('-s', '--skip-chars', type=count_arg, default=0, metavar='chars',
                        help='Avoid comparing the first N characters.')
    parser.add_argument('--max-line-length', type=count_arg, default=LINE_MAX, metavar='N',
                        help=f'Fail on lines longer than N bytes (default: {LINE_MAX}, 0 for no limit).')

    parser.add_argument('operands', nargs='*', metavar='operand',
                        help="Input file and output file (default: stdin and stdout).")
    return parser

def main(argv=None):
    """Parses arguments and runs the uniq logic."""
    try:
        locale.setlocale(locale.LC_ALL, '')
    except locale.Error:
        pass # Unsupported locale in the environment, stay with "C".

    program_name = os.path.basename(sys.argv[0])
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on bad usage; this tool reports every failure as 1.
        sys.exit(1 if e.code else 0)

    try:
        input_path, output_path = resolve_operands(args.operands)
        exit_status = uniq(input_path, output_path, args.skip_fields, args.skip_chars,
                           Mode.from_args(args), args.max_line_length)
    except UniqError as e:
        print(f"{program_name}: {e}", file=sys.stderr)
        exit_status = e.exit_status
    except BrokenPipeError:
        # The reader went away; point stdout at devnull so the final flush is quiet.
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        exit_status = 1

    sys.exit(exit_status)

if __name__ == "__main__":
    main()
