import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coupon_engine.db.base import Base


class CouponDiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"
    free_shipping = "free_shipping"


class CouponScopeType(str, enum.Enum):
    platform = "platform"
    seller = "seller"
    products = "products"
    categories = "categories"


class CouponUserEligibility(str, enum.Enum):
    all_users = "all_users"
    new_customers_only = "new_customers_only"
    specific_users = "specific_users"


class CouponTargetEntityType(str, enum.Enum):
    product = "product"
    category = "category"
    user = "user"


class CouponTargetMode(str, enum.Enum):
    include = "include"
    exclude = "exclude"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[CouponDiscountType] = mapped_column(
        Enum(CouponDiscountType, native_enum=False),
        nullable=False,
        default=CouponDiscountType.percentage,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    scope_type: Mapped[CouponScopeType] = mapped_column(
        Enum(CouponScopeType, native_enum=False),
        nullable=False,
        default=CouponScopeType.platform,
    )
    scope_seller_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    min_purchase_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    min_item_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    user_eligibility: Mapped[CouponUserEligibility] = mapped_column(
        Enum(CouponUserEligibility, native_enum=False),
        nullable=False,
        default=CouponUserEligibility.all_users,
    )
    usage_limit_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_limit_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    usage_count_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_discount_granted: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    targets: Mapped[list["CouponTarget"]] = relationship(
        "CouponTarget", back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )


class CouponTarget(Base):
    """Set members for product/category scopes, exclusions and specific-user lists."""

    __tablename__ = "coupon_targets"
    __table_args__ = (
        UniqueConstraint("coupon_id", "entity_type", "mode", "value", name="uq_coupon_targets_coupon_type_mode_value"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_type: Mapped[CouponTargetEntityType] = mapped_column(
        Enum(CouponTargetEntityType, native_enum=False),
        nullable=False,
    )
    mode: Mapped[CouponTargetMode] = mapped_column(
        Enum(CouponTargetMode, native_enum=False),
        nullable=False,
        default=CouponTargetMode.include,
    )
    value: Mapped[str] = mapped_column(String(255), nullable=False)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="targets")


class CouponUserUsage(Base):
    __tablename__ = "coupon_user_usage"
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_user_usage_coupon_user"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"
    __table_args__ = (UniqueConstraint("coupon_id", "order_id", name="uq_coupon_redemptions_coupon_order"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    discount_applied: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    order_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    waives_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
