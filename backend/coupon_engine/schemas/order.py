from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class OrderLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1, max_length=64)
    seller_id: str = Field(min_length=1, max_length=64)
    category: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderContext(BaseModel):
    """Checkout snapshot the engine evaluates a coupon against."""

    model_config = ConfigDict(frozen=True)

    items: list[OrderLine] = Field(default_factory=list)
    customer_id: str = Field(min_length=1, max_length=64)
    customer_email: str | None = Field(default=None, max_length=255)
    is_new_customer: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), start=Decimal("0.00"))
