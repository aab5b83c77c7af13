"""
Amount conversions between human units and on-chain smallest units.

All wei math is integer and human amounts are Decimal; floats only enter at
the USD-valuation edge.
"""

from __future__ import annotations

import time
from decimal import ROUND_DOWN, Decimal, getcontext
from typing import Union

getcontext().prec = 60

Number = Union[int, float, str, Decimal]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr keeps the shortest round-trip digits (0.1 -> "0.1")
        return Decimal(repr(value))
    return Decimal(str(value))


def to_wei(amount: Number, decimals: int) -> int:
    """floor(amount * 10**decimals)."""
    scaled = to_decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_wei(amount_wei: Union[int, str], decimals: int) -> Decimal:
    """Exact human amount for an integer wei value."""
    return Decimal(int(amount_wei)) / (Decimal(10) ** decimals)


def fmt_amount(value: Number) -> str:
    """Plain (non-exponent) string for ledger storage."""
    dec = to_decimal(value)
    if dec == 0:
        return "0"
    return format(dec.normalize(), "f")


def quantize_down(value: Number, decimals: int) -> Decimal:
    """Truncate to `decimals` places (never rounds up past a real balance)."""
    exp = Decimal(1).scaleb(-decimals)
    return to_decimal(value).quantize(exp, rounding=ROUND_DOWN)


def output_amount_wei(from_amount_wei: int, limit_price: Number, from_decimals: int, to_decimals: int) -> int:
    """Destination amount implied by `limit_price` (destination per source)."""
    human_in = Decimal(int(from_amount_wei)) / (Decimal(10) ** from_decimals)
    human_out = human_in * to_decimal(limit_price)
    return int((human_out * (Decimal(10) ** to_decimals)).to_integral_value(rounding=ROUND_DOWN))


def min_amount_out(expected_wei: int, slippage_pct: Number) -> int:
    """expected * floor((100 - slippage) * 100) / 10000."""
    bps = int(((Decimal(100) - to_decimal(slippage_pct)) * 100).to_integral_value(rounding=ROUND_DOWN))
    return (int(expected_wei) * bps) // 10000


def deadline(hours: float, now: float | None = None) -> int:
    """Absolute unix deadline `hours` from now."""
    base = time.time() if now is None else now
    return int(base + hours * 3600)


def now_ms() -> int:
    return int(time.time() * 1000)
