"""Discount code model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict
from uuid import UUID


class DiscountType(str, Enum):
    """Discount type values matching database check constraint."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class DiscountRejection(str, Enum):
    """Reasons a discount code cannot be applied."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_YET_ACTIVE = "not_yet_active"
    USAGE_EXCEEDED = "usage_exceeded"
    PER_USER_LIMIT = "per_user_limit"
    MINIMUM_NOT_MET = "minimum_not_met"


class DiscountCode(TypedDict):
    """Discount code table row representation.

    Percentage values are whole percents; fixed values and caps are cents.
    """

    id: UUID
    code: str
    seller_id: UUID
    discount_type: DiscountType
    value: int
    max_discount: int | None
    minimum_purchase_amount: int
    usage_count: int
    usage_limit: int | None
    per_user_limit: int | None
    valid_from: datetime | None
    valid_until: datetime | None
    is_active: bool
    created_at: datetime


class DiscountCodeUsage(TypedDict):
    """One redemption of a discount code against an order."""

    id: UUID
    discount_code_id: UUID
    order_id: UUID
    user_id: UUID
    discount_amount: int
    order_subtotal: int
    use_index: int | None
    used_at: datetime
