from __future__ import annotations

import enum


class CouponErrorCode(str, enum.Enum):
    not_found = "not_found"
    inactive = "inactive"
    not_yet_valid = "not_yet_valid"
    expired = "expired"
    scope_mismatch = "scope_mismatch"
    below_minimum_purchase = "below_minimum_purchase"
    below_minimum_quantity = "below_minimum_quantity"
    user_not_eligible = "user_not_eligible"
    usage_limit_exceeded = "usage_limit_exceeded"
    per_user_limit_exceeded = "per_user_limit_exceeded"
    # Internal only: retried by the coordinator, never returned to callers.
    reservation_conflict = "reservation_conflict"


COUPON_ERROR_MESSAGES: dict[CouponErrorCode, str] = {
    CouponErrorCode.not_found: "This coupon code does not exist.",
    CouponErrorCode.inactive: "This coupon is no longer active.",
    CouponErrorCode.not_yet_valid: "This coupon is not valid yet.",
    CouponErrorCode.expired: "This coupon has expired.",
    CouponErrorCode.scope_mismatch: "This coupon does not apply to any item in your cart.",
    CouponErrorCode.below_minimum_purchase: "Your cart does not meet the minimum purchase amount for this coupon.",
    CouponErrorCode.below_minimum_quantity: "Your cart does not contain enough eligible items for this coupon.",
    CouponErrorCode.user_not_eligible: "This coupon is not available for your account.",
    CouponErrorCode.usage_limit_exceeded: "This coupon has reached its usage limit.",
    CouponErrorCode.per_user_limit_exceeded: "You have already used this coupon the maximum number of times.",
    CouponErrorCode.reservation_conflict: "Coupon could not be applied right now, please try again.",
}


def message_for(code: CouponErrorCode) -> str:
    return COUPON_ERROR_MESSAGES[code]


class RedemptionRetryError(Exception):
    """Reservation kept conflicting with concurrent writers; the caller may retry the whole redemption."""

    def __init__(self, coupon_code: str, attempts: int) -> None:
        super().__init__(f"Coupon {coupon_code} reservation conflicted {attempts} times")
        self.coupon_code = coupon_code
        self.attempts = attempts
