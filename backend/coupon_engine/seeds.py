from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.models.coupon import CouponDiscountType
from coupon_engine.schemas.coupon import CategoriesScopeIn, CouponCreate, NewCustomersOnlyIn
from coupon_engine.services import coupon_admin
from coupon_engine.services.redemption import get_coupon_by_code


logger = logging.getLogger(__name__)


def sample_coupons(now: datetime) -> list[CouponCreate]:
    valid_from = now - timedelta(days=1)
    valid_until = now + timedelta(days=90)
    return [
        CouponCreate(
            code="PLANET300",
            description="Flat 300 off",
            discount_type=CouponDiscountType.fixed,
            value=Decimal("300"),
            min_purchase_amount=Decimal("999"),
            valid_from=valid_from,
            valid_until=valid_until,
        ),
        CouponCreate(
            code="MEGA50",
            description="50% off, up to 500",
            discount_type=CouponDiscountType.percentage,
            value=Decimal("50"),
            max_discount_amount=Decimal("500"),
            min_purchase_amount=Decimal("999"),
            usage_limit_total=1000,
            valid_from=valid_from,
            valid_until=valid_until,
        ),
        CouponCreate(
            code="SAVE500",
            description="Flat 500 off on orders above 1999",
            discount_type=CouponDiscountType.fixed,
            value=Decimal("500"),
            min_purchase_amount=Decimal("1999"),
            valid_from=valid_from,
            valid_until=valid_until,
        ),
        CouponCreate(
            code="ELECTRO10",
            description="10% off electronics",
            discount_type=CouponDiscountType.percentage,
            value=Decimal("10"),
            max_discount_amount=Decimal("100"),
            scope=CategoriesScopeIn(categories=["Electronics"]),
            valid_from=valid_from,
            valid_until=valid_until,
        ),
        CouponCreate(
            code="WELCOMESHIP",
            description="Free shipping on your first order",
            discount_type=CouponDiscountType.free_shipping,
            user_eligibility=NewCustomersOnlyIn(),
            valid_from=valid_from,
            valid_until=valid_until,
        ),
    ]


async def seed(session: AsyncSession) -> list[str]:
    """Create the sample coupons that do not exist yet; returns the codes created."""
    created: list[str] = []
    for payload in sample_coupons(datetime.now(timezone.utc)):
        if await get_coupon_by_code(session, code=payload.code) is not None:
            continue
        coupon = await coupon_admin.create_coupon(session, payload)
        created.append(coupon.code)
    logger.info("coupons_seeded", extra={"coupon_codes": created})
    return created
