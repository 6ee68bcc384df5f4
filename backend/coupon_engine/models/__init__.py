from coupon_engine.db.base import Base  # noqa: F401
from coupon_engine.models.coupon import (
    Coupon,
    CouponDiscountType,
    CouponRedemption,
    CouponScopeType,
    CouponTarget,
    CouponTargetEntityType,
    CouponTargetMode,
    CouponUserEligibility,
    CouponUserUsage,
)  # noqa: F401

__all__ = [
    "Base",
    "Coupon",
    "CouponDiscountType",
    "CouponRedemption",
    "CouponScopeType",
    "CouponTarget",
    "CouponTargetEntityType",
    "CouponTargetMode",
    "CouponUserEligibility",
    "CouponUserUsage",
]
