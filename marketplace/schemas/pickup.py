"""Pickup slot and appointment schemas."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace.models.pickup import AppointmentStatus


class PickupSlotCreate(BaseModel):
    """Schema for a seller opening a slot via POST /pickup/slots."""

    model_config = ConfigDict(populate_by_name=True)

    slot_date: date = Field(alias="date")
    time_start: time
    time_end: time

    @model_validator(mode="after")
    def check_window(self) -> "PickupSlotCreate":
        if self.time_end <= self.time_start:
            raise ValueError("time_end must be after time_start")
        return self


class PickupSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    seller_id: UUID
    slot_date: date = Field(alias="date")
    time_start: time
    time_end: time
    is_available: bool


class PickupSlotListResponse(BaseModel):
    items: list[PickupSlotResponse] = Field(description="Open slots, soonest first")


class ClaimSlotRequest(BaseModel):
    """Schema for POST /pickup/slots/{slot_id}/claim."""

    order_id: UUID = Field(description="Buyer's pickup order")


class AppointmentStatusRequest(BaseModel):
    """Schema for POST /pickup/appointments/{id}/status."""

    status: AppointmentStatus


class PickupAppointmentResponse(BaseModel):
    """Schema for appointment API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slot_id: UUID
    order_id: UUID
    buyer_id: UUID
    seller_id: UUID
    status: AppointmentStatus
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
