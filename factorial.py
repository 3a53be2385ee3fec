"""
Arbitrary-precision factorials and input-token parsing.

BigFactorial is a pure function: no shared state, no caching at this level
(deduplication is the pipeline's ResultCache job). It multiplies iteratively so
very large inputs never hit the recursion limit.

PARSING:
- A token is an optional sign followed by ASCII digits, nothing else on the line
- Values must fit a signed 32-bit int; larger magnitudes are malformed
- Anything else (empty line, text, whitespace, negative numbers) maps to INVALID_INPUT
- INVALID_INPUT is 0, so an unparsable line and a literal "0" share a cache entry
"""
import re
from concurrent.futures import CancelledError

# Reserved marker for lines that could not be parsed into a non-negative integer
INVALID_INPUT = 0

INT32_MAX = 2**31 - 1

_TOKEN_RE = re.compile(r"[+-]?[0-9]+")

# Multiplications between two looks at the cancel flag
_CANCEL_CHECK_EVERY = 256


class InvalidArgumentError(ValueError):
    """Raised when factorial() is called with a value it cannot accept."""


def factorial(n: int, cancel=None) -> int:
    """
    Compute n! exactly.

    Args:
        n: Non-negative integer
        cancel: Optional threading.Event; checked every few hundred
                multiplications so very large inputs can be abandoned

    Returns:
        Product of 2..n, or 1 when n <= 1

    Raises:
        InvalidArgumentError: n is negative or not an int
        CancelledError: cancel was set before the product finished
    """
    if isinstance(n, bool) or not isinstance(n, int):
        raise InvalidArgumentError(f"Expected an integer, got {type(n).__name__}")
    if n < 0:
        raise InvalidArgumentError(f"Factorial is not defined for negative numbers: {n}")

    result = 1
    for i in range(2, n + 1):
        if cancel is not None and i % _CANCEL_CHECK_EVERY == 0 and cancel.is_set():
            raise CancelledError(f"Factorial of {n} cancelled at step {i}")
        result *= i
    return result


def parse_line(line: str) -> int:
    """Parse one input line, substituting INVALID_INPUT for malformed tokens."""
    if not _TOKEN_RE.fullmatch(line):
        return INVALID_INPUT
    value = int(line)
    if value < 0 or value > INT32_MAX:
        return INVALID_INPUT
    return value
