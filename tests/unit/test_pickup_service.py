"""Unit tests for PickupService."""

import asyncio
import threading
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID

import pytest

from fakes import BUYER_ID, OUTSIDER_ID, SELLER_ID, FakeSupabase, seed_order
from marketplace.api.middleware.error_handler import (
    AuthorizationError,
    InvalidStateError,
    SlotUnavailableError,
    ValidationError,
)
from marketplace.models.pickup import AppointmentStatus
from marketplace.services.pickup_service import PickupService, slot_starts_at


@pytest.fixture
def pickup_service(fake_db: FakeSupabase, mock_stripe: MagicMock, test_settings: Any) -> PickupService:
    """Create PickupService backed by the fake database."""
    return PickupService()


def seed_slot(db: FakeSupabase, **overrides: Any) -> dict[str, Any]:
    slot = {
        "seller_id": SELLER_ID,
        "date": (date.today() + timedelta(days=3)).isoformat(),
        "time_start": "10:00:00",
        "time_end": "11:00:00",
        "is_available": True,
    }
    slot.update(overrides)
    return db.seed("pickup_slots", slot)


def pickup_order(db: FakeSupabase, **overrides: Any) -> dict[str, Any]:
    fields = {"status": "pending", "fulfillment_method": "pickup"}
    fields.update(overrides)
    return seed_order(db, **fields)


class TestSlots:
    """Tests for slot creation and listing."""

    @pytest.mark.asyncio
    async def test_create_and_list_slot(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test a new slot is listed as available."""
        slot_date = date.today() + timedelta(days=1)
        await pickup_service.create_slot(UUID(SELLER_ID), slot_date, time(9, 0), time(9, 30))

        slots = await pickup_service.list_available_slots(UUID(SELLER_ID))

        assert len(slots) == 1
        assert slots[0]["date"] == slot_date.isoformat()
        assert slots[0]["is_available"] is True

    @pytest.mark.asyncio
    async def test_inverted_window_rejected(self, pickup_service: PickupService) -> None:
        """Test a slot must end after it starts."""
        with pytest.raises(ValidationError):
            await pickup_service.create_slot(UUID(SELLER_ID), date.today(), time(10, 0), time(9, 0))

    @pytest.mark.asyncio
    async def test_listing_excludes_taken_and_past_slots(
        self, pickup_service: PickupService, fake_db: FakeSupabase
    ) -> None:
        """Test claimed and past slots are not offered."""
        open_slot = seed_slot(fake_db)
        seed_slot(fake_db, is_available=False)
        seed_slot(fake_db, date=(date.today() - timedelta(days=2)).isoformat())

        slots = await pickup_service.list_available_slots(UUID(SELLER_ID))

        assert [slot["id"] for slot in slots] == [open_slot["id"]]

    def test_slot_start_is_utc(self) -> None:
        """Test slot date and start time combine into a UTC datetime."""
        start = slot_starts_at({"date": "2025-03-01", "time_start": "14:30:00"})
        assert start == datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)


class TestClaimSlot:
    """Tests for claiming a slot."""

    @pytest.mark.asyncio
    async def test_claim_books_slot_and_confirms_order(
        self, pickup_service: PickupService, fake_db: FakeSupabase
    ) -> None:
        """Test a claim creates the appointment, takes the slot and confirms the order."""
        slot = seed_slot(fake_db)
        order = pickup_order(fake_db)

        appointment = await pickup_service.claim_slot(slot["id"], order["id"], UUID(BUYER_ID))

        assert appointment["status"] == "scheduled"
        assert appointment["seller_id"] == SELLER_ID
        assert fake_db.row("pickup_slots", slot["id"])["is_available"] is False
        assert fake_db.row("orders", order["id"])["status"] == "confirmed"
        reminders = fake_db.rows("order_reminders")
        assert len(reminders) == 1
        assert reminders[0]["reminder_type"] == "pickup_upcoming"

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test an already claimed slot cannot be booked again."""
        slot = seed_slot(fake_db)
        first = pickup_order(fake_db)
        second = pickup_order(fake_db)
        await pickup_service.claim_slot(slot["id"], first["id"], UUID(BUYER_ID))

        with pytest.raises(SlotUnavailableError):
            await pickup_service.claim_slot(slot["id"], second["id"], UUID(BUYER_ID))

        assert fake_db.row("orders", second["id"])["status"] == "pending"

    def test_concurrent_claims_book_once(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test two buyers racing for one slot produce exactly one appointment."""
        slot = seed_slot(fake_db)
        orders = [pickup_order(fake_db), pickup_order(fake_db)]
        outcomes: list[str] = []
        barrier = threading.Barrier(2)

        def claim(order_id: str) -> None:
            barrier.wait()
            try:
                asyncio.run(pickup_service.claim_slot(slot["id"], order_id, UUID(BUYER_ID)))
                outcomes.append("booked")
            except SlotUnavailableError:
                outcomes.append("unavailable")

        threads = [threading.Thread(target=claim, args=(order["id"],)) for order in orders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["booked", "unavailable"]
        assert len(fake_db.rows("pickup_appointments")) == 1

    @pytest.mark.asyncio
    async def test_order_cannot_book_second_slot(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test an order with a live appointment cannot take another slot."""
        first_slot = seed_slot(fake_db)
        second_slot = seed_slot(fake_db, time_start="14:00:00", time_end="15:00:00")
        order = pickup_order(fake_db)
        await pickup_service.claim_slot(first_slot["id"], order["id"], UUID(BUYER_ID))

        with pytest.raises(InvalidStateError) as exc_info:
            await pickup_service.claim_slot(second_slot["id"], order["id"], UUID(BUYER_ID))

        assert "already has a pickup appointment" in exc_info.value.message
        assert fake_db.row("pickup_slots", second_slot["id"])["is_available"] is True
        assert len(fake_db.rows("pickup_appointments")) == 1

    def test_concurrent_claims_for_one_order_book_once(
        self, pickup_service: PickupService, fake_db: FakeSupabase
    ) -> None:
        """Test one order racing for two slots ends with one appointment and one slot taken."""
        slots = [seed_slot(fake_db), seed_slot(fake_db, time_start="14:00:00", time_end="15:00:00")]
        order = pickup_order(fake_db)
        outcomes: list[str] = []
        barrier = threading.Barrier(2)

        def claim(slot_id: str) -> None:
            barrier.wait()
            try:
                asyncio.run(pickup_service.claim_slot(slot_id, order["id"], UUID(BUYER_ID)))
                outcomes.append("booked")
            except InvalidStateError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=claim, args=(slot["id"],)) for slot in slots]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["booked", "rejected"]
        live = [a for a in fake_db.rows("pickup_appointments") if a["status"] == "scheduled"]
        assert len(live) == 1
        taken = [s for s in fake_db.rows("pickup_slots") if not s["is_available"]]
        assert [s["id"] for s in taken] == [live[0]["slot_id"]]

    @pytest.mark.asyncio
    async def test_cancelled_appointment_allows_rebooking(
        self, pickup_service: PickupService, fake_db: FakeSupabase
    ) -> None:
        """Test an order can book again once its appointment was cancelled."""
        first_slot = seed_slot(fake_db)
        second_slot = seed_slot(fake_db, time_start="14:00:00", time_end="15:00:00")
        order = pickup_order(fake_db)
        appointment = await pickup_service.claim_slot(first_slot["id"], order["id"], UUID(BUYER_ID))
        await pickup_service.update_appointment_status(
            appointment["id"], UUID(SELLER_ID), AppointmentStatus.CANCELLED
        )

        rebooked = await pickup_service.claim_slot(second_slot["id"], order["id"], UUID(BUYER_ID))

        assert rebooked["slot_id"] == second_slot["id"]
        assert fake_db.row("pickup_slots", first_slot["id"])["is_available"] is True

    @pytest.mark.asyncio
    async def test_other_buyer_cannot_claim(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test only the order's buyer schedules its pickup."""
        slot = seed_slot(fake_db)
        order = pickup_order(fake_db)

        with pytest.raises(AuthorizationError):
            await pickup_service.claim_slot(slot["id"], order["id"], UUID(OUTSIDER_ID))

        assert fake_db.row("pickup_slots", slot["id"])["is_available"] is True

    @pytest.mark.asyncio
    async def test_shipping_order_cannot_claim(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test shipped orders have no pickup."""
        slot = seed_slot(fake_db)
        order = pickup_order(fake_db, fulfillment_method="shipping")

        with pytest.raises(InvalidStateError):
            await pickup_service.claim_slot(slot["id"], order["id"], UUID(BUYER_ID))

    @pytest.mark.asyncio
    async def test_slot_of_other_seller_rejected(
        self, pickup_service: PickupService, fake_db: FakeSupabase
    ) -> None:
        """Test a buyer cannot book another seller's slot."""
        slot = seed_slot(fake_db, seller_id=OUTSIDER_ID)
        order = pickup_order(fake_db)

        with pytest.raises(ValidationError):
            await pickup_service.claim_slot(slot["id"], order["id"], UUID(BUYER_ID))

    @pytest.mark.asyncio
    async def test_failed_booking_reopens_slot(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test the slot is released again when the appointment cannot be written."""
        slot = seed_slot(fake_db)
        order = pickup_order(fake_db)
        fake_db.fail("pickup_appointments", "insert", RuntimeError("insert failed"))

        with pytest.raises(RuntimeError):
            await pickup_service.claim_slot(slot["id"], order["id"], UUID(BUYER_ID))

        assert fake_db.row("pickup_slots", slot["id"])["is_available"] is True
        assert fake_db.row("orders", order["id"])["status"] == "pending"


class TestAppointmentStatus:
    """Tests for seller appointment updates."""

    async def _book(self, pickup_service: PickupService, fake_db: FakeSupabase) -> tuple[dict, dict, dict]:
        slot = seed_slot(fake_db)
        order = pickup_order(fake_db)
        appointment = await pickup_service.claim_slot(slot["id"], order["id"], UUID(BUYER_ID))
        return slot, order, appointment

    @pytest.mark.asyncio
    async def test_confirm_marks_order_ready(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test confirming moves the order to ready_for_pickup."""
        _, order, appointment = await self._book(pickup_service, fake_db)

        result = await pickup_service.update_appointment_status(
            appointment["id"], UUID(SELLER_ID), AppointmentStatus.CONFIRMED
        )

        assert result["status"] == "confirmed"
        assert result["confirmed_at"] is not None
        assert fake_db.row("orders", order["id"])["status"] == "ready_for_pickup"

    @pytest.mark.asyncio
    async def test_complete_releases_hold(
        self, pickup_service: PickupService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test completing the pickup captures the payment."""
        _, order, appointment = await self._book(pickup_service, fake_db)
        await pickup_service.update_appointment_status(appointment["id"], UUID(SELLER_ID), AppointmentStatus.CONFIRMED)

        result = await pickup_service.update_appointment_status(
            appointment["id"], UUID(SELLER_ID), AppointmentStatus.COMPLETED
        )

        assert result["status"] == "completed"
        stored = fake_db.row("orders", order["id"])
        assert stored["status"] == "completed"
        assert stored["release_reason"] == "seller_confirm"
        assert stored["pickup_confirmed_at"] is not None
        mock_stripe.PaymentIntent.capture.assert_called_once()

    @pytest.mark.asyncio
    async def test_cannot_complete_unconfirmed(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test a scheduled appointment must be confirmed first."""
        _, _, appointment = await self._book(pickup_service, fake_db)

        with pytest.raises(InvalidStateError):
            await pickup_service.update_appointment_status(
                appointment["id"], UUID(SELLER_ID), AppointmentStatus.COMPLETED
            )

    @pytest.mark.asyncio
    async def test_buyer_cannot_update(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test only the seller changes appointment status."""
        _, _, appointment = await self._book(pickup_service, fake_db)

        with pytest.raises(AuthorizationError):
            await pickup_service.update_appointment_status(
                appointment["id"], UUID(BUYER_ID), AppointmentStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_cancel_reopens_slot(self, pickup_service: PickupService, fake_db: FakeSupabase) -> None:
        """Test cancelling frees the slot for another buyer."""
        slot, _, appointment = await self._book(pickup_service, fake_db)

        result = await pickup_service.update_appointment_status(
            appointment["id"], UUID(SELLER_ID), AppointmentStatus.CANCELLED
        )

        assert result["status"] == "cancelled"
        assert fake_db.row("pickup_slots", slot["id"])["is_available"] is True
        assert [r["status"] for r in fake_db.rows("order_reminders")] == ["cancelled"]
