from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from coupon_engine.models.coupon import CouponDiscountType
from coupon_engine.schemas.order import OrderContext
from coupon_engine.services.coupon_errors import CouponErrorCode
from coupon_engine.services.eligibility import CouponState


class PlatformScopeIn(BaseModel):
    kind: Literal["platform"] = "platform"


class SellerScopeIn(BaseModel):
    kind: Literal["seller"] = "seller"
    seller_id: str = Field(min_length=1, max_length=64)


class ProductsScopeIn(BaseModel):
    kind: Literal["products"] = "products"
    product_ids: list[str] = Field(min_length=1)


class CategoriesScopeIn(BaseModel):
    kind: Literal["categories"] = "categories"
    categories: list[str] = Field(min_length=1)


CouponScopeIn = Annotated[
    Union[PlatformScopeIn, SellerScopeIn, ProductsScopeIn, CategoriesScopeIn],
    Field(discriminator="kind"),
]


class AllUsersIn(BaseModel):
    kind: Literal["all_users"] = "all_users"


class NewCustomersOnlyIn(BaseModel):
    kind: Literal["new_customers_only"] = "new_customers_only"


class SpecificUsersIn(BaseModel):
    kind: Literal["specific_users"] = "specific_users"
    users: list[str] = Field(min_length=1)


UserEligibilityIn = Annotated[
    Union[AllUsersIn, NewCustomersOnlyIn, SpecificUsersIn],
    Field(discriminator="kind"),
]


class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=40)
    description: str | None = None
    discount_type: CouponDiscountType
    value: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    scope: CouponScopeIn = Field(default_factory=PlatformScopeIn)
    excluded_product_ids: list[str] = Field(default_factory=list)
    excluded_categories: list[str] = Field(default_factory=list)
    min_purchase_amount: Decimal = Field(default=Decimal("0"), ge=0)
    min_item_quantity: int = Field(default=0, ge=0)
    valid_from: datetime
    valid_until: datetime
    user_eligibility: UserEligibilityIn = Field(default_factory=AllUsersIn)
    usage_limit_total: int | None = Field(default=None, ge=1)
    usage_limit_per_user: int = Field(default=1, ge=1)
    is_active: bool = True


class CouponUpdate(BaseModel):
    description: str | None = None
    value: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    min_purchase_amount: Decimal | None = Field(default=None, ge=0)
    min_item_quantity: int | None = Field(default=None, ge=0)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    usage_limit_total: int | None = Field(default=None, ge=1)
    usage_limit_per_user: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class CouponRead(BaseModel):
    id: UUID
    code: str
    description: str | None = None
    discount_type: CouponDiscountType
    value: Decimal
    max_discount_amount: Decimal | None = None
    scope: CouponScopeIn
    excluded_product_ids: list[str] = Field(default_factory=list)
    excluded_categories: list[str] = Field(default_factory=list)
    min_purchase_amount: Decimal
    min_item_quantity: int
    valid_from: datetime
    valid_until: datetime
    user_eligibility: UserEligibilityIn
    usage_limit_total: int | None = None
    usage_limit_per_user: int
    usage_count_total: int
    total_orders: int
    total_discount_granted: Decimal
    total_revenue: Decimal
    is_active: bool
    state: CouponState
    created_at: datetime
    updated_at: datetime


class CouponEvaluateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    order: OrderContext
    as_of: datetime | None = None


class CouponEvaluationRead(BaseModel):
    code: str
    eligible: bool
    reason: CouponErrorCode | None = None
    message: str | None = None
    state: CouponState | None = None
    matched_subtotal: Decimal | None = None
    matched_quantity: int | None = None
    discount: Decimal | None = None
    waives_shipping: bool = False


class CouponRedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    order_id: str = Field(min_length=1, max_length=64)
    order: OrderContext
    customer_id: str | None = Field(default=None, max_length=64)


class RedemptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    coupon_id: UUID
    code: str
    order_id: str
    customer_id: str
    discount: Decimal
    waives_shipping: bool
    redeemed_at: datetime
    replayed: bool = False


class CouponReleaseRequest(BaseModel):
    coupon_id: UUID
    order_id: str = Field(min_length=1, max_length=64)
