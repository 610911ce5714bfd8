"""
Fixed-point amount codec.

Converts between human decimal strings ("12.5") and raw integer token amounts
at a given precision. No floats are involved at any point:
- `to_raw` truncates excess fractional digits (never rounds up).
- `to_human` strips trailing zero fractional digits.

Round-trip law: to_raw(to_human(x, d), d) == x.
"""

from __future__ import annotations

import re

from .errors import InvalidAmount


MAX_DECIMALS = 77  # 10**77 < 2**256

_AMOUNT_RE = re.compile(r"([+-]?)([0-9]*)(?:\.([0-9]*))?")


def _require_decimals(decimals: int) -> int:
    if not isinstance(decimals, int) or isinstance(decimals, bool):
        raise InvalidAmount("decimals must be an int")
    if not (0 <= decimals <= MAX_DECIMALS):
        raise InvalidAmount(f"decimals must be in [0, {MAX_DECIMALS}]: {decimals}")
    return decimals


def to_raw(amount: str, decimals: int) -> int:
    """
    Parse an optionally-signed decimal string into a raw integer amount.

    "1.5" at 6 decimals -> 1_500_000. Fractional digits beyond `decimals` are
    truncated. Empty strings, lone signs/points, exponents and anything else
    that is not exactly `[+-]digits[.digits]` (surrounding whitespace included)
    raise `InvalidAmount`.
    """
    _require_decimals(decimals)
    if not isinstance(amount, str):
        raise InvalidAmount(f"amount must be a decimal string, got {type(amount).__name__}")
    m = _AMOUNT_RE.fullmatch(amount)
    if m is None:
        raise InvalidAmount(f"invalid numeric amount: {amount!r}")
    sign, whole, fraction = m.group(1), m.group(2), m.group(3) or ""
    if not whole and not fraction:
        raise InvalidAmount(f"invalid numeric amount: {amount!r}")

    padded = fraction[:decimals].ljust(decimals, "0")
    raw = int((whole or "0") + padded)
    return -raw if sign == "-" else raw


def to_human(raw: int, decimals: int) -> str:
    """Format a raw integer amount as a decimal string without trailing zeros."""
    _require_decimals(decimals)
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise InvalidAmount("raw amount must be an int")
    sign = "-" if raw < 0 else ""
    value = -raw if raw < 0 else raw
    if decimals == 0:
        return f"{sign}{value}"
    whole, fraction = divmod(value, 10**decimals)
    frac_str = str(fraction).rjust(decimals, "0").rstrip("0")
    if not frac_str:
        return f"{sign}{whole}" if value else "0"
    return f"{sign}{whole}.{frac_str}"


def to_raw_non_negative(amount: str, decimals: int, *, name: str = "amount") -> int:
    """`to_raw` for request inputs where a negative amount is meaningless."""
    raw = to_raw(amount, decimals)
    if raw < 0:
        raise InvalidAmount(f"{name} must not be negative: {amount!r}")
    return raw


def amount_view(raw: int, decimals: int) -> dict:
    """Raw + human representation of one quantity, as returned to front ends."""
    return {"raw": str(raw), "human": to_human(raw, decimals)}
