"""
Line-oriented file adapters for the factorial pipeline.

LineFileSource yields input lines lazily; ResultFileWriter renders results one
per line and truncates the target on open.
"""
import logging
import sys
import threading
from pathlib import Path
from typing import Iterator

from factorial import INVALID_INPUT

logger = logging.getLogger(__name__)

INVALID_INPUT_MESSAGE = "Factorial can't be calculated as an empty string|character|text was provided"

_digits_lock = threading.Lock()


def _to_decimal(n: int) -> str:
    """str(n) with CPython's int -> str digit limit lifted for this call only."""
    if not hasattr(sys, "set_int_max_str_digits"):
        return str(n)
    with _digits_lock:
        previous = sys.get_int_max_str_digits()
        sys.set_int_max_str_digits(0)
        try:
            return str(n)
        finally:
            sys.set_int_max_str_digits(previous)


def format_result(value: int, result: int) -> str:
    """Render one output line (without terminator)."""
    if value == INVALID_INPUT:
        return INVALID_INPUT_MESSAGE
    return f"{value} = {_to_decimal(result)}"


class LineFileSource:
    """Lazy, single-pass iterator over the lines of a text file."""

    def __init__(self, path: str | Path, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        self._consumed = False

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError(f"{self.path} has already been read")
        self._consumed = True
        with open(self.path, "r", encoding=self.encoding, newline=None) as f:
            for line in f:
                yield line.rstrip("\r\n")


class ResultFileWriter:
    """Context manager writing "<n> = <n!>" lines, overwriting any existing file."""

    def __init__(self, path: str | Path, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        self._file = None
        self.lines_written = 0

    def __enter__(self) -> "ResultFileWriter":
        self._file = open(self.path, "w", encoding=self.encoding)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._file.close()
        self._file = None
        logger.debug(f"Closed {self.path} after {self.lines_written} line(s)")
        return False

    def write(self, value: int, result: int) -> None:
        if self._file is None:
            raise RuntimeError("ResultFileWriter is not open")
        self._file.write(format_result(value, result) + "\n")
        self.lines_written += 1
