"""Database model type definitions."""

from marketplace.models.discount import DiscountCode, DiscountRejection, DiscountType
from marketplace.models.order import (
    ActorRole,
    FulfillmentMethod,
    Order,
    OrderStatus,
    PaymentHoldStatus,
    ReleaseReason,
)
from marketplace.models.pickup import AppointmentStatus, PickupAppointment, PickupSlot
from marketplace.models.revenue import PeriodType, PlatformRevenue

__all__ = [
    "ActorRole",
    "AppointmentStatus",
    "DiscountCode",
    "DiscountRejection",
    "DiscountType",
    "FulfillmentMethod",
    "Order",
    "OrderStatus",
    "PaymentHoldStatus",
    "PeriodType",
    "PickupAppointment",
    "PickupSlot",
    "PlatformRevenue",
    "ReleaseReason",
]
