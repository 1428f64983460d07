"""
Fixed-point helpers for SOL and token amounts.

Amounts are scaled to integer base units (lamports for SOL) before any
accumulation, then scaled back, so repeated small additions don't drift.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

LAMPORTS_PER_SOL = 1_000_000_000
SCALE = Decimal(LAMPORTS_PER_SOL)

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def to_base_units(value: Number, scale: Decimal = SCALE) -> int:
    """Scale and round half-up to an integer."""
    return int((to_decimal(value) * scale).to_integral_value(rounding=ROUND_HALF_UP))


def from_base_units(units: int, scale: Decimal = SCALE) -> Decimal:
    return Decimal(units) / scale


def add_fixed(total: Number, amount: Number) -> Decimal:
    return from_base_units(to_base_units(total) + to_base_units(amount))


def subtract_fixed(total: Number, amount: Number, floor_zero: bool = True) -> Decimal:
    units = to_base_units(total) - to_base_units(amount)
    if floor_zero:
        units = max(units, 0)
    return from_base_units(units)


def sol_to_lamports(sol: Number) -> int:
    return to_base_units(sol)


def lamports_to_sol(lamports: int) -> Decimal:
    return from_base_units(lamports)


def percent_of(value: Number, rate_percent: Number) -> Decimal:
    """``value * rate / 100``, kept exact until the caller rounds."""
    return to_decimal(value) * to_decimal(rate_percent) / Decimal(100)


def floor_tokens(value: Number) -> int:
    return int(to_decimal(value).to_integral_value(rounding=ROUND_DOWN))
