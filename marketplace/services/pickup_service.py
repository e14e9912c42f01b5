"""Pickup slot scheduling for orders fulfilled in person."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError

from marketplace.api.middleware.error_handler import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from marketplace.core.config import get_settings
from marketplace.core.supabase import get_supabase_client
from marketplace.models.order import FulfillmentMethod, OrderStatus, ReleaseReason
from marketplace.models.pickup import APPOINTMENT_TRANSITIONS, AppointmentStatus
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService, utc_now

logger = logging.getLogger(__name__)

CLAIMABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
LIVE_APPOINTMENT_STATUSES = [AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value]
UNIQUE_VIOLATION = "23505"


def slot_starts_at(slot: dict[str, Any]) -> datetime:
    """Combine a slot's date and start time into a UTC datetime."""
    slot_date = slot["date"] if isinstance(slot["date"], date) else date.fromisoformat(slot["date"])
    start = slot["time_start"] if isinstance(slot["time_start"], time) else time.fromisoformat(slot["time_start"])
    return datetime.combine(slot_date, start, tzinfo=timezone.utc)


class PickupService:
    """Service for pickup slots and the appointments that claim them."""

    SLOTS_TABLE = "pickup_slots"
    APPOINTMENTS_TABLE = "pickup_appointments"

    def __init__(self) -> None:
        """Initialize pickup service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.orders = OrderService()
        self.notifications = NotificationService()

    async def list_available_slots(self, seller_id: UUID, from_date: date | None = None) -> list[dict[str, Any]]:
        """List a seller's open slots from a date onwards, soonest first."""
        from_date = from_date or utc_now().date()
        response = (
            self.client.table(self.SLOTS_TABLE)
            .select("*")
            .eq("seller_id", str(seller_id))
            .eq("is_available", True)
            .gte("date", from_date.isoformat())
            .order("date")
            .order("time_start")
            .execute()
        )
        return response.data or []

    async def create_slot(
        self,
        seller_id: UUID,
        slot_date: date,
        time_start: time,
        time_end: time,
    ) -> dict[str, Any]:
        """Offer a new pickup window.

        Raises:
            ValidationError: If the window ends before it starts.
        """
        if time_end <= time_start:
            raise ValidationError("Pickup slot must end after it starts")

        response = self.client.table(self.SLOTS_TABLE).insert({
            "seller_id": str(seller_id),
            "date": slot_date.isoformat(),
            "time_start": time_start.isoformat(),
            "time_end": time_end.isoformat(),
            "is_available": True,
        }).execute()
        slot = response.data[0]
        logger.info("Seller %s opened pickup slot %s on %s", seller_id, slot["id"], slot_date)
        return slot

    async def get_slot(self, slot_id: UUID | str) -> dict[str, Any] | None:
        response = (
            self.client.table(self.SLOTS_TABLE)
            .select("*")
            .eq("id", str(slot_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_appointment(self, appointment_id: UUID | str) -> dict[str, Any] | None:
        response = (
            self.client.table(self.APPOINTMENTS_TABLE)
            .select("*")
            .eq("id", str(appointment_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    def _live_appointments(self, order_id: UUID | str) -> list[dict[str, Any]]:
        response = (
            self.client.table(self.APPOINTMENTS_TABLE)
            .select("*")
            .eq("order_id", str(order_id))
            .in_("status", LIVE_APPOINTMENT_STATUSES)
            .execute()
        )
        return response.data or []

    async def cancel_order_appointments(self, order_id: UUID | str) -> int:
        """Cancel an order's live appointments, reopen their slots and drop pending reminders.

        Returns:
            int: Number of appointments cancelled.
        """
        response = (
            self.client.table(self.APPOINTMENTS_TABLE)
            .update({"status": AppointmentStatus.CANCELLED.value})
            .eq("order_id", str(order_id))
            .in_("status", LIVE_APPOINTMENT_STATUSES)
            .execute()
        )
        cancelled = response.data or []
        for appointment in cancelled:
            self._set_slot_availability(appointment["slot_id"], True)
            logger.info(
                "Cancelled appointment %s of order %s, slot %s reopened",
                appointment["id"],
                order_id,
                appointment["slot_id"],
            )

        await self.notifications.cancel_reminders(order_id, "pickup_upcoming")
        return len(cancelled)

    def _set_slot_availability(self, slot_id: UUID | str, available: bool) -> dict[str, Any] | None:
        """Flip a slot's availability only if it currently holds the opposite value."""
        response = (
            self.client.table(self.SLOTS_TABLE)
            .update({"is_available": available})
            .eq("id", str(slot_id))
            .eq("is_available", not available)
            .execute()
        )
        return response.data[0] if response.data else None

    async def claim_slot(self, slot_id: UUID, order_id: UUID, buyer_id: UUID) -> dict[str, Any]:
        """Book a slot for a pickup order and confirm the order.

        The slot is taken by a single conditional UPDATE on is_available, so
        of two buyers claiming the same slot only one sees a changed row.
        An order holds at most one live appointment; the unique index on live
        appointments stops a second booking that races past the lookup.

        Args:
            slot_id: The slot to claim.
            order_id: The buyer's pickup order.
            buyer_id: The claiming buyer.

        Returns:
            dict: The created appointment.

        Raises:
            NotFoundError: If the order or slot does not exist.
            AuthorizationError: If the buyer does not own the order.
            InvalidStateError: If the order cannot be scheduled or already
                holds a live appointment.
            ValidationError: If the slot belongs to another seller.
            SlotUnavailableError: If the slot is already taken.
        """
        order = await self.orders.require_order(order_id)
        if order["buyer_id"] != str(buyer_id):
            raise AuthorizationError("Not authorized to schedule pickup for this order")
        if order["fulfillment_method"] != FulfillmentMethod.PICKUP.value:
            raise InvalidStateError("This order is not fulfilled by pickup")
        if OrderStatus(order["status"]) not in CLAIMABLE_ORDER_STATUSES:
            raise InvalidStateError(f"Pickup cannot be scheduled while the order is {order['status']}")

        slot = await self.get_slot(slot_id)
        if not slot:
            raise NotFoundError("Pickup slot not found")
        if slot["seller_id"] != order["seller_id"]:
            raise ValidationError("Pickup slot belongs to a different seller")
        if self._live_appointments(order_id):
            raise InvalidStateError("This order already has a pickup appointment")

        if self._set_slot_availability(slot_id, False) is None:
            logger.info("Slot %s already claimed, rejecting order %s", slot_id, order_id)
            raise SlotUnavailableError("This pickup slot is no longer available")

        appointment: dict[str, Any] | None = None
        try:
            response = self.client.table(self.APPOINTMENTS_TABLE).insert({
                "slot_id": str(slot_id),
                "order_id": str(order_id),
                "buyer_id": order["buyer_id"],
                "seller_id": order["seller_id"],
                "status": AppointmentStatus.SCHEDULED.value,
            }).execute()
            appointment = response.data[0]

            if order["status"] == OrderStatus.PENDING.value:
                await self.orders.transition_status(order_id, OrderStatus.CONFIRMED)
        except Exception as e:
            logger.warning("Claim of slot %s for order %s failed, reopening slot", slot_id, order_id)
            if appointment:
                self.client.table(self.APPOINTMENTS_TABLE).update(
                    {"status": AppointmentStatus.CANCELLED.value}
                ).eq("id", appointment["id"]).execute()
            self._set_slot_availability(slot_id, True)
            if isinstance(e, PostgrestAPIError) and e.code == UNIQUE_VIOLATION:
                raise InvalidStateError("This order already has a pickup appointment") from e
            raise

        logger.info("Order %s booked pickup slot %s", order_id, slot_id)

        remind_at = slot_starts_at(slot) - timedelta(hours=self.settings.pickup_reminder_lead_hours)
        await self.notifications.schedule_reminder(
            order_id=order_id,
            recipient_id=order["buyer_id"],
            reminder_type="pickup_upcoming",
            scheduled_for=max(remind_at, utc_now()),
        )
        await self.notifications.notify(
            recipient_id=order["seller_id"],
            notification_type="pickup_scheduled",
            title="Pickup Scheduled",
            body=f"A buyer scheduled a pickup on {slot['date']} at {slot['time_start']}.",
            link=f"/orders/{order_id}",
            related_id=order_id,
        )

        return appointment

    async def update_appointment_status(
        self,
        appointment_id: UUID,
        actor_id: UUID,
        new_status: AppointmentStatus,
    ) -> dict[str, Any]:
        """Move an appointment forward on behalf of the seller.

        Confirming marks the order ready for pickup. Completing is the
        seller's attestation that the buyer collected the goods and releases
        the hold. Cancelling reopens the slot.

        Raises:
            NotFoundError: If the appointment does not exist.
            AuthorizationError: If the actor is not the appointment's seller.
            InvalidStateError: If the transition is not allowed.
        """
        appointment = await self.get_appointment(appointment_id)
        if not appointment:
            raise NotFoundError("Pickup appointment not found")
        if appointment["seller_id"] != str(actor_id):
            raise AuthorizationError("Only the seller can update this pickup appointment")

        current = AppointmentStatus(appointment["status"])
        if new_status not in APPOINTMENT_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Invalid appointment transition from {current.value} to {new_status.value}"
            )

        order_id = appointment["order_id"]
        if new_status == AppointmentStatus.CONFIRMED:
            await self.orders.transition_status(order_id, OrderStatus.READY_FOR_PICKUP)
        elif new_status == AppointmentStatus.COMPLETED:
            from marketplace.services.escrow_service import EscrowService

            await EscrowService().release_hold(order_id, actor_id, ReleaseReason.SELLER_CONFIRM)

        now = utc_now().isoformat()
        changes: dict[str, Any] = {"status": new_status.value}
        if new_status == AppointmentStatus.CONFIRMED:
            changes["confirmed_at"] = now
        elif new_status == AppointmentStatus.COMPLETED:
            changes["completed_at"] = now

        response = (
            self.client.table(self.APPOINTMENTS_TABLE)
            .update(changes)
            .eq("id", str(appointment_id))
            .eq("status", current.value)
            .execute()
        )
        if not response.data:
            raise InvalidStateError("This appointment was updated by someone else, please refresh")

        if new_status == AppointmentStatus.CANCELLED:
            self._set_slot_availability(appointment["slot_id"], True)
            await self.notifications.cancel_reminders(order_id, "pickup_upcoming")
            await self.notifications.notify(
                recipient_id=appointment["buyer_id"],
                notification_type="pickup_cancelled",
                title="Pickup Cancelled",
                body="Your pickup appointment was cancelled. Please choose another time.",
                link=f"/orders/{order_id}",
                related_id=order_id,
            )

        logger.info("Appointment %s moved %s -> %s", appointment_id, current.value, new_status.value)
        return response.data[0]
