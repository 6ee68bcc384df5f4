from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.session import get_session
from coupon_engine.schemas.coupon import CouponCreate, CouponRead, CouponUpdate
from coupon_engine.services import coupon_admin
from coupon_engine.services import redemption as redemption_service
from coupon_engine.services.eligibility import CouponState


router = APIRouter(prefix="/admin/coupons", tags=["coupons-admin"])


@router.get("", response_model=list[CouponRead])
async def list_coupons(
    state: CouponState | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[CouponRead]:
    return await coupon_admin.list_coupons(session, state=state)


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(payload: CouponCreate, session: AsyncSession = Depends(get_session)) -> CouponRead:
    coupon = await coupon_admin.create_coupon(session, payload)
    return coupon_admin.to_coupon_read(coupon)


@router.get("/{code}", response_model=CouponRead)
async def get_coupon(code: str, session: AsyncSession = Depends(get_session)) -> CouponRead:
    coupon = await redemption_service.get_coupon_by_code(session, code=code)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return coupon_admin.to_coupon_read(coupon)


@router.patch("/{coupon_id}", response_model=CouponRead)
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: AsyncSession = Depends(get_session),
) -> CouponRead:
    coupon = await coupon_admin.get_coupon(session, coupon_id)
    updated = await coupon_admin.update_coupon(session, coupon, payload)
    return coupon_admin.to_coupon_read(updated)
