"""Order and checkout Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace.models.order import FulfillmentMethod, OrderStatus, PaymentHoldStatus, ReleaseReason


class PlaceOrderRequest(BaseModel):
    """Schema for placing an order via POST /orders."""

    model_config = ConfigDict(from_attributes=True)

    seller_id: UUID = Field(description="Seller the buyer is purchasing from")
    subtotal_amount: int = Field(gt=0, description="Cart total before discounts, in cents")
    fulfillment_method: FulfillmentMethod = Field(description="pickup or shipping")
    payment_method: str = Field(min_length=1, description="Stripe PaymentMethod ID to hold funds on")
    discount_code: str | None = Field(default=None, max_length=50, description="Optional discount code")


class AuthorizeRequest(BaseModel):
    """Schema for retrying the hold via POST /orders/{id}/authorize.

    Must name the same PaymentMethod as the original attempt.
    """

    payment_method: str = Field(min_length=1, description="Stripe PaymentMethod ID to hold funds on")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order unique identifier")
    buyer_id: UUID
    seller_id: UUID
    status: OrderStatus = Field(description="Lifecycle status")
    payment_hold_status: PaymentHoldStatus = Field(description="Escrow hold status")
    fulfillment_method: FulfillmentMethod
    subtotal_amount: int = Field(description="Cart total before discounts, in cents")
    discount_amount: int = Field(default=0, description="Discount applied, in cents")
    total_amount: int = Field(description="Amount held and captured, in cents")
    commission_amount: int = Field(description="Platform commission, in cents")
    currency: str = Field(default="usd", description="Currency code")
    discount_code_id: UUID | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    release_reason: ReleaseReason | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    pickup_confirmed_at: datetime | None = None


class OrderListResponse(BaseModel):
    """Schema for listing a user's orders."""

    items: list[OrderResponse] = Field(description="Orders where the user is buyer or seller")


class StatusUpdateRequest(BaseModel):
    """Schema for a seller fulfillment event via POST /orders/{id}/status."""

    status: OrderStatus = Field(description="New lifecycle status")
    tracking_number: str | None = Field(default=None, max_length=100)
    carrier: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=1000, description="Seller notes")

    @model_validator(mode="after")
    def check_status(self) -> "StatusUpdateRequest":
        """Reject completion, which only escrow release can perform."""
        if self.status == OrderStatus.COMPLETED:
            raise ValueError("Orders are completed by releasing the payment hold")
        return self


class ReleaseRequest(BaseModel):
    """Schema for POST /orders/{id}/release."""

    reason: ReleaseReason = Field(description="seller_confirm or buyer_confirm")
