from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Union

from coupon_engine.schemas.order import OrderContext, OrderLine
from coupon_engine.services.coupon_errors import CouponErrorCode, message_for
from coupon_engine.services.rules import CouponRules, as_utc, is_excluded, scope_matches, user_is_eligible


class CouponState(str, enum.Enum):
    draft = "draft"
    active = "active"
    expired = "expired"
    exhausted = "exhausted"
    revoked = "revoked"


@dataclass(frozen=True)
class UsageSnapshot:
    total: int = 0
    per_user: int = 0


@dataclass(frozen=True)
class Eligible:
    matched_items: tuple[OrderLine, ...]
    matched_subtotal: Decimal
    matched_quantity: int

    @property
    def eligible(self) -> bool:
        return True


@dataclass(frozen=True)
class Ineligible:
    reason: CouponErrorCode

    @property
    def eligible(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return message_for(self.reason)


EligibilityResult = Union[Eligible, Ineligible]


def coupon_state(rules: CouponRules, *, as_of: datetime, usage_total: int) -> CouponState:
    """Lifecycle state derived from stored fields; never persisted."""
    now = as_utc(as_of)
    if not rules.is_active:
        return CouponState.revoked
    if now < rules.valid_from:
        return CouponState.draft
    if now > rules.valid_until:
        return CouponState.expired
    if rules.usage_limit_total is not None and usage_total >= rules.usage_limit_total:
        return CouponState.exhausted
    return CouponState.active


def match_items(rules: CouponRules, order: OrderContext) -> tuple[OrderLine, ...]:
    return tuple(line for line in order.items if scope_matches(rules.scope, line) and not is_excluded(rules, line))


def evaluate(
    rules: CouponRules,
    order: OrderContext,
    *,
    as_of: datetime,
    usage: UsageSnapshot = UsageSnapshot(),
) -> EligibilityResult:
    """Check a coupon against an order snapshot.

    Checks run in a fixed order and stop at the first failure so the reported
    reason is deterministic. Nothing is reserved or written.
    """
    now = as_utc(as_of)

    if not rules.is_active:
        return Ineligible(CouponErrorCode.inactive)
    if now < rules.valid_from:
        return Ineligible(CouponErrorCode.not_yet_valid)
    if now > rules.valid_until:
        return Ineligible(CouponErrorCode.expired)

    matched = match_items(rules, order)
    if not matched:
        return Ineligible(CouponErrorCode.scope_mismatch)

    matched_subtotal = sum((line.line_total for line in matched), start=Decimal("0.00"))
    if matched_subtotal < rules.min_purchase_amount:
        return Ineligible(CouponErrorCode.below_minimum_purchase)

    matched_quantity = sum(line.quantity for line in matched)
    if matched_quantity < rules.min_item_quantity:
        return Ineligible(CouponErrorCode.below_minimum_quantity)

    if not user_is_eligible(rules.user_eligibility, order):
        return Ineligible(CouponErrorCode.user_not_eligible)

    if rules.usage_limit_total is not None and usage.total >= rules.usage_limit_total:
        return Ineligible(CouponErrorCode.usage_limit_exceeded)
    if usage.per_user >= rules.usage_limit_per_user:
        return Ineligible(CouponErrorCode.per_user_limit_exceeded)

    return Eligible(matched_items=matched, matched_subtotal=matched_subtotal, matched_quantity=matched_quantity)
