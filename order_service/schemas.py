from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from order_service.order_state import OrderStatus, TransitionContext

Currency = Literal["CZK", "EUR", "USD"]
SortField = Literal["created_at", "updated_at", "order_number", "status", "total_amount"]
SortOrder = Literal["asc", "desc"]


class OrderItemIn(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=255)
    product_sku: str | None = Field(default=None, max_length=100)
    quantity: int = Field(..., ge=1, le=10000)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)


class OrderCreate(BaseModel):
    customer_id: UUID
    items: list[OrderItemIn] = Field(..., min_length=1, max_length=100)
    currency: Currency = "CZK"
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    notes: str | None = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def _discount_within_total(self) -> "OrderCreate":
        subtotal = sum((item.unit_price * item.quantity for item in self.items), Decimal("0"))
        if self.discount_amount > subtotal + self.tax_amount + self.shipping_amount:
            raise ValueError("discount_amount cannot exceed the order total")
        return self


class StatusUpdate(BaseModel):
    status: OrderStatus = Field(..., description="Requested next status")
    reason: str | None = Field(default=None, max_length=500, description="Audit reason; generated when omitted")
    context: TransitionContext = Field(default_factory=TransitionContext)
