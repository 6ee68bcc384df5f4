"""Closed rule types the evaluator and calculator work on.

Scope and user eligibility are tagged variants: every consumer handles each
variant explicitly and raises ``TypeError`` for anything else, so adding a new
kind fails loudly wherever it is not handled yet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Union
from uuid import UUID

from coupon_engine.models.coupon import (
    Coupon,
    CouponDiscountType,
    CouponScopeType,
    CouponTargetEntityType,
    CouponTargetMode,
    CouponUserEligibility,
)
from coupon_engine.schemas.order import OrderContext, OrderLine
from coupon_engine.services.pricing import to_decimal


@dataclass(frozen=True)
class PlatformScope:
    pass


@dataclass(frozen=True)
class SellerScope:
    seller_id: str

    def __post_init__(self) -> None:
        if not self.seller_id:
            raise ValueError("Seller scope requires a seller id")


@dataclass(frozen=True)
class ProductScope:
    product_ids: frozenset[str]


@dataclass(frozen=True)
class CategoryScope:
    categories: frozenset[str]


CouponScope = Union[PlatformScope, SellerScope, ProductScope, CategoryScope]


@dataclass(frozen=True)
class AllUsers:
    pass


@dataclass(frozen=True)
class NewCustomersOnly:
    pass


@dataclass(frozen=True)
class SpecificUsers:
    identifiers: frozenset[str]


UserEligibility = Union[AllUsers, NewCustomersOnly, SpecificUsers]


@dataclass(frozen=True)
class CouponRules:
    code: str
    discount_type: CouponDiscountType
    value: Decimal
    valid_from: datetime
    valid_until: datetime
    scope: CouponScope = PlatformScope()
    user_eligibility: UserEligibility = AllUsers()
    max_discount_amount: Decimal | None = None
    min_purchase_amount: Decimal = Decimal("0")
    min_item_quantity: int = 0
    usage_limit_total: int | None = None
    usage_limit_per_user: int = 1
    is_active: bool = True
    excluded_product_ids: frozenset[str] = field(default_factory=frozenset)
    excluded_categories: frozenset[str] = field(default_factory=frozenset)
    coupon_id: UUID | None = None


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def normalize_identifier(value: str) -> str:
    # E-mail addresses compare case-insensitively; opaque ids are left as-is apart from whitespace.
    cleaned = (value or "").strip()
    return cleaned.lower() if "@" in cleaned else cleaned


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _target_values(coupon: Coupon, entity_type: CouponTargetEntityType, mode: CouponTargetMode) -> frozenset[str]:
    return frozenset(
        target.value for target in (coupon.targets or []) if target.entity_type == entity_type and target.mode == mode
    )


def scope_from_coupon(coupon: Coupon) -> CouponScope:
    if coupon.scope_type == CouponScopeType.platform:
        return PlatformScope()
    if coupon.scope_type == CouponScopeType.seller:
        return SellerScope(seller_id=coupon.scope_seller_id or "")
    if coupon.scope_type == CouponScopeType.products:
        return ProductScope(_target_values(coupon, CouponTargetEntityType.product, CouponTargetMode.include))
    if coupon.scope_type == CouponScopeType.categories:
        return CategoryScope(_target_values(coupon, CouponTargetEntityType.category, CouponTargetMode.include))
    raise TypeError(f"Unsupported coupon scope type: {coupon.scope_type!r}")


def user_eligibility_from_coupon(coupon: Coupon) -> UserEligibility:
    if coupon.user_eligibility == CouponUserEligibility.all_users:
        return AllUsers()
    if coupon.user_eligibility == CouponUserEligibility.new_customers_only:
        return NewCustomersOnly()
    if coupon.user_eligibility == CouponUserEligibility.specific_users:
        users = _target_values(coupon, CouponTargetEntityType.user, CouponTargetMode.include)
        return SpecificUsers(frozenset(normalize_identifier(u) for u in users))
    raise TypeError(f"Unsupported user eligibility: {coupon.user_eligibility!r}")


def rules_from_coupon(coupon: Coupon) -> CouponRules:
    """Snapshot a stored coupon into plain rule values (no lazy loads past this point)."""
    return CouponRules(
        coupon_id=coupon.id,
        code=normalize_code(coupon.code),
        discount_type=coupon.discount_type,
        value=to_decimal(coupon.value),
        max_discount_amount=to_decimal(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None,
        scope=scope_from_coupon(coupon),
        min_purchase_amount=to_decimal(coupon.min_purchase_amount),
        min_item_quantity=int(coupon.min_item_quantity or 0),
        valid_from=as_utc(coupon.valid_from),
        valid_until=as_utc(coupon.valid_until),
        user_eligibility=user_eligibility_from_coupon(coupon),
        usage_limit_total=coupon.usage_limit_total,
        usage_limit_per_user=int(coupon.usage_limit_per_user or 1),
        is_active=bool(coupon.is_active),
        excluded_product_ids=_target_values(coupon, CouponTargetEntityType.product, CouponTargetMode.exclude),
        excluded_categories=_target_values(coupon, CouponTargetEntityType.category, CouponTargetMode.exclude),
    )


def scope_matches(scope: CouponScope, line: OrderLine) -> bool:
    if isinstance(scope, PlatformScope):
        return True
    if isinstance(scope, SellerScope):
        return line.seller_id == scope.seller_id
    if isinstance(scope, ProductScope):
        return line.product_id in scope.product_ids
    if isinstance(scope, CategoryScope):
        return line.category in scope.categories
    raise TypeError(f"Unsupported coupon scope: {scope!r}")


def is_excluded(rules: CouponRules, line: OrderLine) -> bool:
    return line.product_id in rules.excluded_product_ids or line.category in rules.excluded_categories


def user_is_eligible(eligibility: UserEligibility, order: OrderContext) -> bool:
    if isinstance(eligibility, AllUsers):
        return True
    if isinstance(eligibility, NewCustomersOnly):
        return order.is_new_customer
    if isinstance(eligibility, SpecificUsers):
        candidates = {normalize_identifier(order.customer_id)}
        if order.customer_email:
            candidates.add(normalize_identifier(order.customer_email))
        return bool(candidates & eligibility.identifiers)
    raise TypeError(f"Unsupported user eligibility: {eligibility!r}")
