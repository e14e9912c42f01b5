"""Pickup slot and appointment model type definitions."""

from datetime import date, datetime, time
from enum import Enum
from typing import TypedDict
from uuid import UUID


class AppointmentStatus(str, Enum):
    """Pickup appointment status values."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


class PickupSlot(TypedDict):
    """Seller-declared pickup availability window."""

    id: UUID
    seller_id: UUID
    date: date
    time_start: time
    time_end: time
    is_available: bool
    created_at: datetime


class PickupAppointment(TypedDict):
    """A buyer's claim on a pickup slot for one order."""

    id: UUID
    slot_id: UUID
    order_id: UUID
    buyer_id: UUID
    seller_id: UUID
    status: AppointmentStatus
    confirmed_at: datetime | None
    completed_at: datetime | None
    created_at: datetime


class ReminderStatus(str, Enum):
    """Order reminder delivery status."""

    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


class OrderReminder(TypedDict):
    """Scheduled reminder for an order participant."""

    id: UUID
    order_id: UUID
    reminder_type: str
    recipient_id: UUID
    scheduled_for: datetime
    status: ReminderStatus
    sent_at: datetime | None
