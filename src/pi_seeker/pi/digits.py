# src/pi_seeker/pi/digits.py

"""
Decimal digits of pi.

pi = 16*arctan(1/5) - 4*arctan(1/239) (Machin), each arctan summed as an
alternating power series in scaled-integer fixed point. No floats are involved,
so the only error sources are the integer floor divisions and the cut-off tail,
and both are bounded by the number of terms summed.

The result is checked against that bound before the guard digits are dropped.
If the guard digits sit too close to a digit boundary (a long run of 0s or 9s
right after the requested precision), the computation is repeated with a
wider guard. The returned digits are therefore always the exact truncated
expansion of pi, which makes generate(p2) start with generate(p1) for p1 < p2.
"""

from __future__ import annotations

import logging
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_GUARD_DIGITS = 10

# Below the interpreter's int-to-str conversion limit (4300 digits by default).
_STR_BLOCK_DIGITS = 1000


def _arctan_inv(x: int, unity: int) -> tuple[int, int]:
    """
    Return (arctan(1/x) * unity, number of terms summed).

    power is floor(unity / x**(2k+1)) exactly at every step, since nested floor
    divisions by positive integers compose. Each term is off by less than 2 units,
    and the loop stops once power hits zero, which leaves a tail below 1 unit.
    """
    x2 = x * x
    power = unity // x
    total = 0
    n = 1
    terms = 0
    while power:
        term = power // n
        if terms % 2:
            total -= term
        else:
            total += term
        power //= x2
        n += 2
        terms += 1
    return total, terms


def _to_decimal(n: int, width: int) -> str:
    """Zero-padded decimal text of 0 <= n < 10**width, built from small blocks."""
    if width <= _STR_BLOCK_DIGITS:
        return str(n).zfill(width)
    low_width = width // 2
    high, low = divmod(n, 10**low_width)
    return _to_decimal(high, width - low_width) + _to_decimal(low, low_width)


def _pi_scaled(working_digits: int) -> tuple[int, int]:
    """
    Return (floor-ish pi * 10**working_digits, error bound in the same units).
    """
    unity = 10**working_digits
    a5, t5 = _arctan_inv(5, unity)
    a239, t239 = _arctan_inv(239, unity)
    value = 16 * a5 - 4 * a239
    # 16 * (2*t5 + 1) + 4 * (2*t239 + 1), plus one unit of slack.
    bound = 32 * t5 + 8 * t239 + 21
    return value, bound


@lru_cache(maxsize=8)
def generate(precision: int, guard_digits: int = DEFAULT_GUARD_DIGITS) -> str:
    """
    Return exactly `precision` digits of pi after the decimal point.

    >>> generate(5)
    '14159'
    """
    if precision < 1:
        raise ValueError(f"precision must be positive, got {precision}")
    if guard_digits < 1:
        raise ValueError(f"guard_digits must be positive, got {guard_digits}")

    guard = guard_digits
    while True:
        value, bound = _pi_scaled(precision + guard)
        scale = 10**guard
        head, rest = divmod(value, scale)
        if bound <= rest <= scale - bound:
            # head == floor(pi * 10**precision), i.e. 3 followed by `precision` digits.
            return _to_decimal(head - 3 * 10**precision, precision)

        logger.debug(
            "pi digits ambiguous at precision=%s guard=%s; widening guard",
            precision,
            guard,
        )
        guard *= 2
