from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.session import get_session
from coupon_engine.schemas.coupon import (
    CouponEvaluateRequest,
    CouponEvaluationRead,
    CouponRedeemRequest,
    CouponReleaseRequest,
    RedemptionRead,
)
from coupon_engine.schemas.error import ErrorResponse
from coupon_engine.services import redemption as redemption_service
from coupon_engine.services.coupon_errors import CouponErrorCode
from coupon_engine.services.eligibility import Eligible
from coupon_engine.services.pricing import quantize_money


router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/evaluate", response_model=CouponEvaluationRead)
async def evaluate_coupon(
    payload: CouponEvaluateRequest,
    session: AsyncSession = Depends(get_session),
) -> CouponEvaluationRead:
    evaluation = await redemption_service.evaluate_code(
        session,
        code=payload.code,
        order=payload.order,
        as_of=payload.as_of,
    )
    result = evaluation.result
    if isinstance(result, Eligible):
        discount = evaluation.discount
        return CouponEvaluationRead(
            code=evaluation.code,
            eligible=True,
            state=evaluation.state,
            matched_subtotal=quantize_money(result.matched_subtotal),
            matched_quantity=result.matched_quantity,
            discount=discount.amount if discount else None,
            waives_shipping=bool(discount and discount.waives_shipping),
        )
    return CouponEvaluationRead(
        code=evaluation.code,
        eligible=False,
        reason=result.reason,
        message=result.message,
        state=evaluation.state,
    )


@router.post(
    "/redeem",
    response_model=RedemptionRead,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
)
async def redeem_coupon(
    payload: CouponRedeemRequest,
    session: AsyncSession = Depends(get_session),
) -> RedemptionRead | JSONResponse:
    outcome = await redemption_service.redeem_code(
        session,
        code=payload.code,
        order=payload.order,
        order_id=payload.order_id,
        customer_id=payload.customer_id,
    )
    if isinstance(outcome, redemption_service.Rejection):
        status_code = (
            status.HTTP_404_NOT_FOUND if outcome.reason == CouponErrorCode.not_found else status.HTTP_409_CONFLICT
        )
        body = ErrorResponse(detail=outcome.message, code=outcome.reason.value)
        return JSONResponse(status_code=status_code, content=body.model_dump())
    return RedemptionRead.model_validate(outcome, from_attributes=True)


@router.post("/release", status_code=status.HTTP_204_NO_CONTENT)
async def release_coupon(
    payload: CouponReleaseRequest,
    session: AsyncSession = Depends(get_session),
) -> Response:
    await redemption_service.release(session, coupon_id=payload.coupon_id, order_id=payload.order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
