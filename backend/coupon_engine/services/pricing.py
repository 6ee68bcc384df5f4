from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Literal

from coupon_engine.core.config import settings


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def quantize_money(value: Decimal, *, rounding: MoneyRounding | None = None) -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding or settings.money_rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    return Decimal(str(value))
