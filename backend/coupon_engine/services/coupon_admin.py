from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.config import settings
from coupon_engine.models.coupon import (
    Coupon,
    CouponDiscountType,
    CouponScopeType,
    CouponTarget,
    CouponTargetEntityType,
    CouponTargetMode,
    CouponUserEligibility,
    CouponUserUsage,
)
from coupon_engine.schemas.coupon import (
    AllUsersIn,
    CategoriesScopeIn,
    CouponCreate,
    CouponRead,
    CouponScopeIn,
    CouponUpdate,
    NewCustomersOnlyIn,
    PlatformScopeIn,
    ProductsScopeIn,
    SellerScopeIn,
    SpecificUsersIn,
    UserEligibilityIn,
)
from coupon_engine.services.eligibility import CouponState, coupon_state
from coupon_engine.services.pricing import to_decimal
from coupon_engine.services.rules import (
    AllUsers,
    CategoryScope,
    NewCustomersOnly,
    PlatformScope,
    ProductScope,
    SellerScope,
    SpecificUsers,
    as_utc,
    normalize_code,
    normalize_identifier,
    rules_from_coupon,
)


logger = logging.getLogger(__name__)

# Only these coupon terms may be cleared with an explicit null on update.
NULLABLE_UPDATE_FIELDS = frozenset({"description", "max_discount_amount", "usage_limit_total"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_values(values: list[str], *, lower_emails: bool = False) -> list[str]:
    seen: set[str] = set()
    cleaned: list[str] = []
    for raw in values:
        value = normalize_identifier(raw) if lower_emails else (raw or "").strip()
        if not value or value in seen:
            continue
        seen.add(value)
        cleaned.append(value)
    return cleaned


def _validate_terms(
    *,
    discount_type: CouponDiscountType,
    value: Decimal,
    max_discount_amount: Decimal | None,
    valid_from: datetime,
    valid_until: datetime,
) -> None:
    if as_utc(valid_until) < as_utc(valid_from):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="valid_until must not be before valid_from")
    if discount_type == CouponDiscountType.percentage and value > Decimal("100"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Percentage discount cannot exceed 100")
    if discount_type != CouponDiscountType.percentage and max_discount_amount is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="max_discount_amount only applies to percentage coupons",
        )
    if discount_type in {CouponDiscountType.percentage, CouponDiscountType.fixed} and value <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Discount value must be positive")


def _scope_targets(scope: CouponScopeIn) -> tuple[CouponScopeType, str | None, list[CouponTarget]]:
    if isinstance(scope, PlatformScopeIn):
        return CouponScopeType.platform, None, []
    if isinstance(scope, SellerScopeIn):
        return CouponScopeType.seller, scope.seller_id.strip(), []
    if isinstance(scope, ProductsScopeIn):
        targets = [
            CouponTarget(entity_type=CouponTargetEntityType.product, mode=CouponTargetMode.include, value=value)
            for value in _clean_values(scope.product_ids)
        ]
        return CouponScopeType.products, None, targets
    if isinstance(scope, CategoriesScopeIn):
        targets = [
            CouponTarget(entity_type=CouponTargetEntityType.category, mode=CouponTargetMode.include, value=value)
            for value in _clean_values(scope.categories)
        ]
        return CouponScopeType.categories, None, targets
    raise TypeError(f"Unsupported coupon scope: {scope!r}")


def _eligibility_targets(eligibility: UserEligibilityIn) -> tuple[CouponUserEligibility, list[CouponTarget]]:
    if isinstance(eligibility, AllUsersIn):
        return CouponUserEligibility.all_users, []
    if isinstance(eligibility, NewCustomersOnlyIn):
        return CouponUserEligibility.new_customers_only, []
    if isinstance(eligibility, SpecificUsersIn):
        targets = [
            CouponTarget(entity_type=CouponTargetEntityType.user, mode=CouponTargetMode.include, value=value)
            for value in _clean_values(eligibility.users, lower_emails=True)
        ]
        return CouponUserEligibility.specific_users, targets
    raise TypeError(f"Unsupported user eligibility: {eligibility!r}")


async def create_coupon(session: AsyncSession, payload: CouponCreate) -> Coupon:
    code = normalize_code(payload.code)
    if not code or len(code) > settings.coupon_code_max_length:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid coupon code")
    _validate_terms(
        discount_type=payload.discount_type,
        value=payload.value,
        max_discount_amount=payload.max_discount_amount,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
    )

    existing = (await session.execute(select(Coupon.id).where(Coupon.code == code))).first()
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Coupon code already exists")

    scope_type, seller_id, targets = _scope_targets(payload.scope)
    user_eligibility, user_targets = _eligibility_targets(payload.user_eligibility)
    targets.extend(user_targets)
    targets.extend(
        CouponTarget(entity_type=CouponTargetEntityType.product, mode=CouponTargetMode.exclude, value=value)
        for value in _clean_values(payload.excluded_product_ids)
    )
    targets.extend(
        CouponTarget(entity_type=CouponTargetEntityType.category, mode=CouponTargetMode.exclude, value=value)
        for value in _clean_values(payload.excluded_categories)
    )

    coupon = Coupon(
        code=code,
        description=payload.description,
        discount_type=payload.discount_type,
        value=payload.value,
        max_discount_amount=payload.max_discount_amount,
        scope_type=scope_type,
        scope_seller_id=seller_id,
        min_purchase_amount=payload.min_purchase_amount,
        min_item_quantity=payload.min_item_quantity,
        valid_from=as_utc(payload.valid_from),
        valid_until=as_utc(payload.valid_until),
        user_eligibility=user_eligibility,
        usage_limit_total=payload.usage_limit_total,
        usage_limit_per_user=payload.usage_limit_per_user,
        usage_count_total=0,
        is_active=payload.is_active,
        targets=targets,
    )
    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Coupon code already exists")
    await session.refresh(coupon)
    logger.info("coupon_created", extra={"coupon_code": code, "coupon_id": coupon.id})
    return coupon


async def get_coupon(session: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await session.get(Coupon, coupon_id)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return coupon


async def update_coupon(session: AsyncSession, coupon: Coupon, payload: CouponUpdate) -> Coupon:
    """Edit a coupon's terms without ever breaking the usage invariants.

    Limit changes are conditional updates against the live counters, so an edit
    racing a checkout cannot leave ``usage_count_total`` above the new limit.
    """
    data = payload.model_dump(exclude_unset=True)
    cleared = sorted(key for key, value in data.items() if value is None and key not in NULLABLE_UPDATE_FIELDS)
    if cleared:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Fields cannot be cleared: {', '.join(cleared)}",
        )
    coupon_id = coupon.id

    _validate_terms(
        discount_type=coupon.discount_type,
        value=to_decimal(data.get("value", coupon.value)),
        max_discount_amount=data.get("max_discount_amount", coupon.max_discount_amount),
        valid_from=data.get("valid_from") or coupon.valid_from,
        valid_until=data.get("valid_until") or coupon.valid_until,
    )

    if "usage_limit_total" in data:
        new_limit = data.pop("usage_limit_total")
        stmt = update(Coupon).where(Coupon.id == coupon_id)
        if new_limit is not None:
            stmt = stmt.where(Coupon.usage_count_total <= new_limit)
        res = await session.execute(
            stmt.values(usage_limit_total=new_limit).execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="usage_limit_total cannot be lower than the current usage count",
            )

    if "usage_limit_per_user" in data:
        new_per_user = data.pop("usage_limit_per_user")
        over_limit = exists().where(
            CouponUserUsage.coupon_id == coupon_id,
            CouponUserUsage.usage_count > new_per_user,
        )
        res = await session.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id, ~over_limit)
            .values(usage_limit_per_user=new_per_user)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="usage_limit_per_user cannot be lower than a customer's current usage",
            )

    for key, value in data.items():
        if key in {"valid_from", "valid_until"} and value is not None:
            value = as_utc(value)
        setattr(coupon, key, value)
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_updated", extra={"coupon_id": coupon_id, "fields": sorted(payload.model_fields_set)})
    return coupon


async def list_coupons(
    session: AsyncSession,
    *,
    state: CouponState | None = None,
    as_of: datetime | None = None,
) -> list[CouponRead]:
    now = as_utc(as_of or _now())
    coupons = (await session.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.code))).scalars().all()
    reads = [to_coupon_read(coupon, as_of=now) for coupon in coupons]
    if state is None:
        return reads
    return [read for read in reads if read.state == state]


def _scope_read(coupon: Coupon) -> CouponScopeIn:
    scope = rules_from_coupon(coupon).scope
    if isinstance(scope, PlatformScope):
        return PlatformScopeIn()
    if isinstance(scope, SellerScope):
        return SellerScopeIn(seller_id=scope.seller_id)
    if isinstance(scope, ProductScope):
        return ProductsScopeIn(product_ids=sorted(scope.product_ids))
    if isinstance(scope, CategoryScope):
        return CategoriesScopeIn(categories=sorted(scope.categories))
    raise TypeError(f"Unsupported coupon scope: {scope!r}")


def _eligibility_read(coupon: Coupon) -> UserEligibilityIn:
    eligibility = rules_from_coupon(coupon).user_eligibility
    if isinstance(eligibility, AllUsers):
        return AllUsersIn()
    if isinstance(eligibility, NewCustomersOnly):
        return NewCustomersOnlyIn()
    if isinstance(eligibility, SpecificUsers):
        return SpecificUsersIn(users=sorted(eligibility.identifiers))
    raise TypeError(f"Unsupported user eligibility: {eligibility!r}")


def to_coupon_read(coupon: Coupon, *, as_of: datetime | None = None) -> CouponRead:
    rules = rules_from_coupon(coupon)
    return CouponRead(
        id=coupon.id,
        code=coupon.code,
        description=coupon.description,
        discount_type=coupon.discount_type,
        value=to_decimal(coupon.value),
        max_discount_amount=rules.max_discount_amount,
        scope=_scope_read(coupon),
        excluded_product_ids=sorted(rules.excluded_product_ids),
        excluded_categories=sorted(rules.excluded_categories),
        min_purchase_amount=rules.min_purchase_amount,
        min_item_quantity=rules.min_item_quantity,
        valid_from=rules.valid_from,
        valid_until=rules.valid_until,
        user_eligibility=_eligibility_read(coupon),
        usage_limit_total=coupon.usage_limit_total,
        usage_limit_per_user=rules.usage_limit_per_user,
        usage_count_total=int(coupon.usage_count_total or 0),
        total_orders=int(coupon.total_orders or 0),
        total_discount_granted=to_decimal(coupon.total_discount_granted),
        total_revenue=to_decimal(coupon.total_revenue),
        is_active=bool(coupon.is_active),
        state=coupon_state(rules, as_of=as_of or _now(), usage_total=int(coupon.usage_count_total or 0)),
        created_at=as_utc(coupon.created_at),
        updated_at=as_utc(coupon.updated_at),
    )
