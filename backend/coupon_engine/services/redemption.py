from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Union
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core import metrics
from coupon_engine.core.config import settings
from coupon_engine.models.coupon import Coupon, CouponRedemption
from coupon_engine.schemas.order import OrderContext
from coupon_engine.services.coupon_errors import CouponErrorCode, RedemptionRetryError, message_for
from coupon_engine.services.discounts import DiscountResult, calculate
from coupon_engine.services.eligibility import (
    CouponState,
    EligibilityResult,
    Eligible,
    Ineligible,
    coupon_state,
    evaluate,
)
from coupon_engine.services.pricing import to_decimal
from coupon_engine.services.rules import CouponRules, as_utc, normalize_code, rules_from_coupon
from coupon_engine.services.usage_ledger import ReservationStatus, UsageLedger


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CouponEvaluation:
    code: str
    result: EligibilityResult
    coupon_id: UUID | None = None
    state: CouponState | None = None
    discount: DiscountResult | None = None

    @property
    def eligible(self) -> bool:
        return isinstance(self.result, Eligible)


@dataclass(frozen=True)
class Redemption:
    coupon_id: UUID
    code: str
    order_id: str
    customer_id: str
    discount: Decimal
    waives_shipping: bool
    redeemed_at: datetime
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejection:
    code: str
    reason: CouponErrorCode

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return message_for(self.reason)


RedemptionResult = Union[Redemption, Rejection]


async def get_coupon_by_code(session: AsyncSession, *, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    return (await session.execute(select(Coupon).where(Coupon.code == cleaned))).scalar_one_or_none()


async def get_redemption(session: AsyncSession, *, coupon_id: UUID, order_id: str) -> CouponRedemption | None:
    return (
        (
            await session.execute(
                select(CouponRedemption).where(
                    CouponRedemption.coupon_id == coupon_id,
                    CouponRedemption.order_id == order_id,
                )
            )
        )
        .scalars()
        .first()
    )


def _from_record(record: CouponRedemption, *, code: str, replayed: bool) -> Redemption:
    return Redemption(
        coupon_id=record.coupon_id,
        code=code,
        order_id=record.order_id,
        customer_id=record.user_id,
        discount=to_decimal(record.discount_applied),
        waives_shipping=bool(record.waives_shipping),
        redeemed_at=as_utc(record.redeemed_at),
        replayed=replayed,
    )


def _reject(rules: CouponRules, reason: CouponErrorCode, *, order_id: str | None = None) -> Rejection:
    metrics.record_rejection(reason.value)
    logger.info(
        "coupon_rejected",
        extra={"coupon_code": rules.code, "order_id": order_id, "reason": reason.value},
    )
    return Rejection(code=rules.code, reason=reason)


async def evaluate_coupon(
    session: AsyncSession,
    *,
    coupon: Coupon,
    order: OrderContext,
    as_of: datetime | None = None,
) -> CouponEvaluation:
    """Live eligibility check for the "apply coupon" field; reads a usage snapshot, writes nothing."""
    now = as_utc(as_of or _now())
    rules = rules_from_coupon(coupon)
    usage = await UsageLedger(session).snapshot(coupon.id, order.customer_id)
    result = evaluate(rules, order, as_of=now, usage=usage)
    discount = calculate(rules, result.matched_subtotal) if isinstance(result, Eligible) else None
    return CouponEvaluation(
        code=rules.code,
        result=result,
        coupon_id=coupon.id,
        state=coupon_state(rules, as_of=now, usage_total=usage.total),
        discount=discount,
    )


async def evaluate_code(
    session: AsyncSession,
    *,
    code: str,
    order: OrderContext,
    as_of: datetime | None = None,
) -> CouponEvaluation:
    coupon = await get_coupon_by_code(session, code=code)
    if coupon is None:
        return CouponEvaluation(code=normalize_code(code), result=Ineligible(CouponErrorCode.not_found))
    return await evaluate_coupon(session, coupon=coupon, order=order, as_of=as_of)


async def _replay(session: AsyncSession, rules: CouponRules, *, coupon_id: UUID, order_id: str) -> Redemption | None:
    existing = await get_redemption(session, coupon_id=coupon_id, order_id=order_id)
    if existing is None:
        return None
    logger.info("coupon_redemption_replayed", extra={"coupon_code": rules.code, "order_id": order_id})
    return _from_record(existing, code=rules.code, replayed=True)


async def redeem(
    session: AsyncSession,
    *,
    coupon: Coupon,
    order: OrderContext,
    order_id: str,
    customer_id: str | None = None,
    as_of: datetime | None = None,
) -> RedemptionResult:
    """Apply ``coupon`` to one order exactly once.

    Replays the stored result when the order already redeemed this coupon,
    otherwise evaluates, reserves a usage slot, computes the discount and
    records the redemption in a single transaction. A duplicate of the same
    order that loses a race to the winner replays the winner's record instead
    of being rejected.
    """
    now = as_utc(as_of or _now())
    # Everything below reads from the snapshot: a rollback expires ORM state.
    rules = rules_from_coupon(coupon)
    coupon_id = coupon.id
    customer = customer_id or order.customer_id
    if customer != order.customer_id:
        # Eligibility is checked against the customer the usage is counted for.
        order = order.model_copy(update={"customer_id": customer})

    replayed = await _replay(session, rules, coupon_id=coupon_id, order_id=order_id)
    if replayed is not None:
        return replayed

    ledger = UsageLedger(session)
    usage = await ledger.snapshot(coupon_id, customer)
    verdict = evaluate(rules, order, as_of=now, usage=usage)
    if isinstance(verdict, Ineligible):
        replayed = await _replay(session, rules, coupon_id=coupon_id, order_id=order_id)
        if replayed is not None:
            return replayed
        return _reject(rules, verdict.reason, order_id=order_id)

    attempts = max(1, int(settings.coupon_reservation_max_attempts))
    for attempt in range(1, attempts + 1):
        status = await ledger.reserve(coupon_id, customer, now=now)
        if status == ReservationStatus.reserved:
            break
        # The ledger has rolled back; a concurrent duplicate of this order may have committed meanwhile.
        replayed = await _replay(session, rules, coupon_id=coupon_id, order_id=order_id)
        if replayed is not None:
            return replayed
        if status != ReservationStatus.conflict:
            return _reject(rules, status.error_code or CouponErrorCode.usage_limit_exceeded, order_id=order_id)
        metrics.record_reservation_conflict()
        logger.info(
            "coupon_reservation_retry",
            extra={"coupon_code": rules.code, "order_id": order_id, "attempt": attempt},
        )
    else:
        raise RedemptionRetryError(rules.code, attempts)

    discount = calculate(rules, verdict.matched_subtotal)
    order_subtotal = to_decimal(order.subtotal)
    redeemed_at = _now()
    try:
        await session.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id)
            .values(
                total_orders=Coupon.total_orders + 1,
                total_discount_granted=Coupon.total_discount_granted + discount.amount,
                total_revenue=Coupon.total_revenue + order_subtotal,
            )
            .execution_options(synchronize_session=False)
        )
        session.add(
            CouponRedemption(
                coupon_id=coupon_id,
                user_id=customer,
                order_id=order_id,
                discount_applied=discount.amount,
                order_subtotal=order_subtotal,
                waives_shipping=discount.waives_shipping,
                redeemed_at=redeemed_at,
            )
        )
        await session.commit()
    except IntegrityError:
        # The same order redeemed concurrently and won; our increments roll back with this transaction.
        await session.rollback()
        replayed = await _replay(session, rules, coupon_id=coupon_id, order_id=order_id)
        if replayed is None:
            raise
        return replayed

    metrics.record_redemption()
    logger.info(
        "coupon_redeemed",
        extra={
            "coupon_code": rules.code,
            "order_id": order_id,
            "customer_id": customer,
            "discount": discount.amount,
            "waives_shipping": discount.waives_shipping,
        },
    )
    return Redemption(
        coupon_id=coupon_id,
        code=rules.code,
        order_id=order_id,
        customer_id=customer,
        discount=discount.amount,
        waives_shipping=discount.waives_shipping,
        redeemed_at=redeemed_at,
    )


async def redeem_code(
    session: AsyncSession,
    *,
    code: str,
    order: OrderContext,
    order_id: str,
    customer_id: str | None = None,
    as_of: datetime | None = None,
) -> RedemptionResult:
    coupon = await get_coupon_by_code(session, code=code)
    if coupon is None:
        metrics.record_rejection(CouponErrorCode.not_found.value)
        return Rejection(code=normalize_code(code), reason=CouponErrorCode.not_found)
    return await redeem(
        session,
        coupon=coupon,
        order=order,
        order_id=order_id,
        customer_id=customer_id,
        as_of=as_of,
    )


async def release(session: AsyncSession, *, coupon_id: UUID, order_id: str) -> None:
    """Undo a redemption for a failed or cancelled order. No-op when nothing is recorded."""
    record = await get_redemption(session, coupon_id=coupon_id, order_id=order_id)
    if record is None:
        return
    user_id = record.user_id
    discount = to_decimal(record.discount_applied)
    order_subtotal = to_decimal(record.order_subtotal)

    # Deleting first makes concurrent releases of the same order race on this row, not on the counters.
    deleted = await session.execute(
        delete(CouponRedemption)
        .where(CouponRedemption.id == record.id)
        .execution_options(synchronize_session=False)
    )
    if deleted.rowcount != 1:
        await session.rollback()
        return

    await UsageLedger(session).release(coupon_id, user_id)
    await session.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.total_orders > 0)
        .values(
            total_orders=Coupon.total_orders - 1,
            total_discount_granted=Coupon.total_discount_granted - discount,
            total_revenue=Coupon.total_revenue - order_subtotal,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    session.expunge(record)

    metrics.record_release()
    logger.info("coupon_released", extra={"coupon_id": coupon_id, "order_id": order_id, "customer_id": user_id})
