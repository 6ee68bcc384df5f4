from __future__ import annotations

import enum
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.models.coupon import Coupon, CouponUserUsage
from coupon_engine.services.coupon_errors import CouponErrorCode
from coupon_engine.services.eligibility import UsageSnapshot


logger = logging.getLogger(__name__)


class ReservationStatus(str, enum.Enum):
    reserved = "reserved"
    total_exhausted = "total_exhausted"
    per_user_exhausted = "per_user_exhausted"
    conflict = "conflict"

    @property
    def error_code(self) -> CouponErrorCode | None:
        return _STATUS_ERRORS.get(self)


_STATUS_ERRORS: dict[ReservationStatus, CouponErrorCode] = {
    ReservationStatus.total_exhausted: CouponErrorCode.usage_limit_exceeded,
    ReservationStatus.per_user_exhausted: CouponErrorCode.per_user_limit_exceeded,
    ReservationStatus.conflict: CouponErrorCode.reservation_conflict,
}


class UsageLedger:
    """Total and per-user redemption counters for coupons.

    Increments are single conditional UPDATE statements, so the limit check and
    the write happen in one step on the database side. Two checkouts that both
    saw ``count == limit - 1`` cannot both commit.

    ``reserve`` leaves the increments pending in the session's transaction; the
    caller commits them together with the redemption record. Any outcome other
    than ``reserved`` rolls the transaction back.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def snapshot(self, coupon_id: UUID, user_id: str) -> UsageSnapshot:
        total = (
            await self.session.execute(select(Coupon.usage_count_total).where(Coupon.id == coupon_id))
        ).scalar_one_or_none()
        per_user = (
            await self.session.execute(
                select(CouponUserUsage.usage_count).where(
                    CouponUserUsage.coupon_id == coupon_id,
                    CouponUserUsage.user_id == user_id,
                )
            )
        ).scalar_one_or_none()
        return UsageSnapshot(total=int(total or 0), per_user=int(per_user or 0))

    async def reserve(self, coupon_id: UUID, user_id: str, *, now: datetime) -> ReservationStatus:
        total_res = await self.session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit_total.is_(None), Coupon.usage_count_total < Coupon.usage_limit_total),
            )
            .values(usage_count_total=Coupon.usage_count_total + 1)
            .execution_options(synchronize_session=False)
        )
        if total_res.rowcount != 1:
            await self.session.rollback()
            return ReservationStatus.total_exhausted

        per_user_limit = select(Coupon.usage_limit_per_user).where(Coupon.id == coupon_id).scalar_subquery()
        user_res = await self.session.execute(
            update(CouponUserUsage)
            .where(
                CouponUserUsage.coupon_id == coupon_id,
                CouponUserUsage.user_id == user_id,
                CouponUserUsage.usage_count < per_user_limit,
            )
            .values(usage_count=CouponUserUsage.usage_count + 1, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        if user_res.rowcount == 1:
            return ReservationStatus.reserved

        existing = (
            await self.session.execute(
                select(CouponUserUsage.id).where(
                    CouponUserUsage.coupon_id == coupon_id,
                    CouponUserUsage.user_id == user_id,
                )
            )
        ).first()
        limit = (
            await self.session.execute(select(Coupon.usage_limit_per_user).where(Coupon.id == coupon_id))
        ).scalar_one_or_none()
        if existing is not None or int(limit or 0) < 1:
            await self.session.rollback()
            return ReservationStatus.per_user_exhausted

        # First redemption for this user: a concurrent first redemption may insert the row before us.
        self.session.add(CouponUserUsage(coupon_id=coupon_id, user_id=user_id, usage_count=1, last_used_at=now))
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.info("coupon_reservation_conflict", extra={"coupon_id": coupon_id, "user_id": user_id})
            return ReservationStatus.conflict
        return ReservationStatus.reserved

    async def release(self, coupon_id: UUID, user_id: str) -> None:
        """Give back one total and one per-user slot; counters never go below zero."""
        await self.session.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.usage_count_total > 0)
            .values(usage_count_total=Coupon.usage_count_total - 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(CouponUserUsage)
            .where(
                CouponUserUsage.coupon_id == coupon_id,
                CouponUserUsage.user_id == user_id,
                CouponUserUsage.usage_count > 0,
            )
            .values(usage_count=CouponUserUsage.usage_count - 1)
            .execution_options(synchronize_session=False)
        )
