"""Pickup scheduling routes."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import CurrentUser
from marketplace.schemas.pickup import (
    AppointmentStatusRequest,
    ClaimSlotRequest,
    PickupAppointmentResponse,
    PickupSlotCreate,
    PickupSlotListResponse,
    PickupSlotResponse,
)
from marketplace.services.pickup_service import PickupService

router = APIRouter(prefix="/pickup", tags=["pickup"])


@router.get(
    "/slots",
    response_model=PickupSlotListResponse,
    summary="List open pickup slots",
    description="Returns a seller's unclaimed slots from today onwards.",
)
async def list_slots(
    user: CurrentUser,
    seller_id: UUID = Query(description="Seller whose slots to list"),
    from_date: date | None = Query(default=None, description="Earliest slot date"),
) -> PickupSlotListResponse:
    slots = await PickupService().list_available_slots(seller_id, from_date)
    return PickupSlotListResponse(items=[PickupSlotResponse(**slot) for slot in slots])


@router.post(
    "/slots",
    response_model=PickupSlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a pickup slot",
)
async def create_slot(data: PickupSlotCreate, user: CurrentUser) -> PickupSlotResponse:
    slot = await PickupService().create_slot(
        seller_id=user.user_id,
        slot_date=data.slot_date,
        time_start=data.time_start,
        time_end=data.time_end,
    )
    return PickupSlotResponse(**slot)


@router.post(
    "/slots/{slot_id}/claim",
    response_model=PickupAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slot already claimed"}},
    summary="Claim a pickup slot",
    description="Books the slot for the buyer's pickup order and confirms the order.",
)
async def claim_slot(slot_id: UUID, data: ClaimSlotRequest, user: CurrentUser) -> PickupAppointmentResponse:
    appointment = await PickupService().claim_slot(slot_id, data.order_id, user.user_id)
    return PickupAppointmentResponse(**appointment)


@router.post(
    "/appointments/{appointment_id}/status",
    response_model=PickupAppointmentResponse,
    summary="Update a pickup appointment",
    description="Seller confirms, completes or cancels the appointment. Completing releases the payment hold.",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentStatusRequest,
    user: CurrentUser,
) -> PickupAppointmentResponse:
    appointment = await PickupService().update_appointment_status(appointment_id, user.user_id, data.status)
    return PickupAppointmentResponse(**appointment)
