"""Discount code Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace.models.discount import DiscountRejection, DiscountType


class DiscountCodeCreate(BaseModel):
    """Schema for creating a discount code via POST /discounts."""

    model_config = ConfigDict(from_attributes=True)

    code: str = Field(min_length=3, max_length=50, description="Code buyers enter at checkout")
    discount_type: DiscountType = Field(description="percentage, fixed or free_shipping")
    value: int = Field(ge=0, description="Whole percent for percentage codes, cents for fixed codes")
    max_discount: int | None = Field(default=None, ge=0, description="Cap on the discount in cents")
    minimum_purchase_amount: int = Field(default=0, ge=0, description="Minimum cart total in cents")
    usage_limit: int | None = Field(default=None, gt=0, description="Total redemptions allowed (None = unlimited)")
    per_user_limit: int | None = Field(default=1, gt=0, description="Redemptions allowed per buyer")
    valid_from: datetime | None = Field(default=None, description="Start of validity window")
    valid_until: datetime | None = Field(default=None, description="End of validity window")

    @model_validator(mode="after")
    def check_value_and_window(self) -> "DiscountCodeCreate":
        """Validate percentage bounds and the validity window."""
        if self.discount_type == DiscountType.PERCENTAGE and not 0 < self.value <= 100:
            raise ValueError("Percentage discounts must be between 1 and 100")
        if self.discount_type == DiscountType.FIXED and self.value <= 0:
            raise ValueError("Fixed discounts must be greater than zero")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class DiscountCodeResponse(BaseModel):
    """Schema for discount code API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    seller_id: UUID
    discount_type: DiscountType
    value: int
    max_discount: int | None = None
    minimum_purchase_amount: int = 0
    usage_count: int = 0
    usage_limit: int | None = None
    per_user_limit: int | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool = True


class DiscountCodeListResponse(BaseModel):
    """Schema for discount code list responses."""

    items: list[DiscountCodeResponse] = Field(description="Seller's discount codes")


class DiscountValidateRequest(BaseModel):
    """Schema for POST /discounts/validate."""

    code: str = Field(min_length=1, max_length=50)
    seller_id: UUID = Field(description="Seller whose code is being applied")
    cart_total: int = Field(ge=0, description="Cart total in cents")


class DiscountValidation(BaseModel):
    """Outcome of validating a discount code against a cart."""

    model_config = ConfigDict(from_attributes=True)

    valid: bool = Field(description="Whether the code can be applied")
    discount_amount: int = Field(default=0, description="Discount in cents")
    free_shipping: bool = Field(default=False, description="Whether shipping is waived")
    reason: DiscountRejection | None = Field(default=None, description="Why the code was rejected")
    message: str | None = Field(default=None, description="User-displayable explanation")
    discount_code_id: UUID | None = Field(default=None, description="Matched code ID")


class DiscountStatsResponse(BaseModel):
    """Vendor-level discount code statistics."""

    total_codes: int = 0
    active_codes: int = 0
    expired_codes: int = 0
    total_uses: int = 0
    total_discount_given: int = Field(default=0, description="Total discount granted in cents")
