from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from coupon_engine.models.coupon import CouponDiscountType
from coupon_engine.services.pricing import ZERO, quantize_money
from coupon_engine.services.rules import CouponRules


@dataclass(frozen=True)
class DiscountResult:
    amount: Decimal
    waives_shipping: bool = False


def calculate(rules: CouponRules, matched_subtotal: Decimal) -> DiscountResult:
    """Discount for an eligible coupon over its matched subtotal, rounded once at the end."""
    subtotal = max(Decimal(matched_subtotal), Decimal("0"))

    if rules.discount_type == CouponDiscountType.percentage:
        raw = subtotal * rules.value / Decimal("100")
        if rules.max_discount_amount is not None:
            raw = min(raw, rules.max_discount_amount)
        return DiscountResult(amount=quantize_money(raw, rounding="half_up"))

    if rules.discount_type == CouponDiscountType.fixed:
        # Never discount more than the matched items are worth.
        return DiscountResult(amount=quantize_money(min(rules.value, subtotal), rounding="half_up"))

    if rules.discount_type == CouponDiscountType.free_shipping:
        return DiscountResult(amount=ZERO, waives_shipping=True)

    raise TypeError(f"Unsupported discount type: {rules.discount_type!r}")
