"""Order record store and lifecycle state machine.

All writes to an order go through conditional_update, which filters the
UPDATE on the state the caller observed. PostgREST returns only the rows it
changed, so an empty result means another writer got there first.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from marketplace.api.middleware.error_handler import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
)
from marketplace.core.config import get_settings
from marketplace.core.supabase import get_supabase_client
from marketplace.models.order import (
    CANCELLABLE_HOLD_STATUSES,
    STATUS_TIMESTAMP_FIELDS,
    FulfillmentMethod,
    OrderStatus,
    PaymentHoldStatus,
    can_transition,
)
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Buyer-facing notification for each seller fulfillment event.
FULFILLMENT_NOTIFICATIONS: dict[OrderStatus, tuple[str, str, str]] = {
    OrderStatus.CONFIRMED: ("order_confirmed", "Order Confirmed", "Your order has been confirmed by the seller."),
    OrderStatus.SHIPPED: ("order_shipped", "Order Shipped", "Your order has been shipped."),
    OrderStatus.READY_FOR_PICKUP: ("order_ready_pickup", "Order Ready for Pickup", "Your order is ready for pickup."),
    OrderStatus.DELIVERED: ("order_delivered", "Order Delivered", "Your order has been marked as delivered."),
    OrderStatus.CANCELLED: ("order_cancelled", "Order Cancelled", "Your order has been cancelled by the seller."),
}


def settled_message(order: dict[str, Any] | None) -> str:
    """User-facing explanation for a transition that lost to a prior settlement."""
    if order and order.get("status") == OrderStatus.COMPLETED.value:
        return "This order has already been completed"
    if order and order.get("status") == OrderStatus.CANCELLED.value:
        return "This order has already been cancelled"
    return "This order was updated by someone else, please refresh"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """Service for reading orders and driving their lifecycle."""

    TABLE = "orders"

    def __init__(self) -> None:
        """Initialize order service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.notifications = NotificationService()

    def compute_commission(self, total_cents: int) -> int:
        """Platform commission on an order total, rounded half up to a cent."""
        commission = Decimal(total_cents) * self.settings.commission_rate
        return int(commission.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    async def create_order(
        self,
        buyer_id: UUID,
        seller_id: UUID,
        subtotal_cents: int,
        fulfillment_method: FulfillmentMethod,
    ) -> dict[str, Any]:
        """Insert a new pending order with no payment hold.

        Args:
            buyer_id: Buyer's profile ID.
            seller_id: Seller's profile ID.
            subtotal_cents: Cart total before discounts, in cents.
            fulfillment_method: Pickup or shipping.

        Returns:
            dict: The created order row.
        """
        order_data = {
            "buyer_id": str(buyer_id),
            "seller_id": str(seller_id),
            "subtotal_amount": subtotal_cents,
            "discount_amount": 0,
            "total_amount": subtotal_cents,
            "commission_amount": self.compute_commission(subtotal_cents),
            "currency": self.settings.currency,
            "fulfillment_method": fulfillment_method.value,
            "status": OrderStatus.PENDING.value,
            "payment_hold_status": PaymentHoldStatus.NONE.value,
        }

        response = self.client.table(self.TABLE).insert(order_data).execute()
        order = response.data[0]
        logger.info("Created order %s for buyer %s (%d cents)", order["id"], buyer_id, subtotal_cents)
        return order

    async def get_order(self, order_id: UUID | str) -> dict[str, Any] | None:
        """Get an order by ID.

        Returns:
            dict | None: The order data or None if not found.
        """
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("id", str(order_id))
            .maybe_single()
            .execute()
        )

        return response.data if response and response.data else None

    async def require_order(self, order_id: UUID | str) -> dict[str, Any]:
        """Get an order by ID or raise NotFoundError."""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def list_orders_for_user(self, user_id: UUID) -> list[dict[str, Any]]:
        """Get all orders where the user is the buyer or the seller.

        Returns:
            list[dict]: Orders, newest first.
        """
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .or_(f"buyer_id.eq.{user_id},seller_id.eq.{user_id}")
            .order("created_at", desc=True)
            .execute()
        )

        return response.data or []

    async def conditional_update(
        self,
        order_id: UUID | str,
        changes: dict[str, Any],
        expected: dict[str, Sequence[str | None]],
    ) -> dict[str, Any] | None:
        """Apply changes only if the row still matches the expected state.

        Args:
            order_id: The order's UUID.
            changes: Column values to write.
            expected: Column -> allowed current values. A sequence holding
                only None requires the column to be NULL.

        Returns:
            dict | None: The updated row, or None if the row no longer matched.
        """
        query = self.client.table(self.TABLE).update(changes).eq("id", str(order_id))
        for column, allowed in expected.items():
            if list(allowed) == [None]:
                query = query.is_(column, "null")
            else:
                query = query.in_(column, list(allowed))

        response = query.execute()
        return response.data[0] if response.data else None

    async def claim_settlement(self, order_id: UUID | str, claim: str) -> dict[str, Any] | None:
        """Reserve an authorized hold for one settlement attempt.

        The claim is taken by a single UPDATE filtered on the hold still being
        authorized and no live claim existing, so of two concurrent settlers
        only one reaches the payment gateway. A claim older than
        settlement_claim_ttl_seconds is treated as abandoned.

        Returns:
            dict | None: The claimed row, or None if the hold is settled or
                another settlement is in flight.
        """
        now = utc_now()
        stale_before = now - timedelta(seconds=self.settings.settlement_claim_ttl_seconds)
        response = (
            self.client.table(self.TABLE)
            .update({"settlement_claim": claim, "settlement_claimed_at": now.isoformat()})
            .eq("id", str(order_id))
            .eq("payment_hold_status", PaymentHoldStatus.AUTHORIZED.value)
            .or_(f"settlement_claim.is.null,settlement_claimed_at.lt.{stale_before.isoformat()}")
            .execute()
        )
        return response.data[0] if response.data else None

    async def release_settlement_claim(self, order_id: UUID | str, claim: str) -> None:
        """Drop a claim after a failed gateway call, leaving the hold authorized."""
        (
            self.client.table(self.TABLE)
            .update({"settlement_claim": None, "settlement_claimed_at": None})
            .eq("id", str(order_id))
            .eq("settlement_claim", claim)
            .execute()
        )

    async def transition_status(
        self,
        order_id: UUID | str,
        target: OrderStatus,
        extra: dict[str, Any] | None = None,
        hold_statuses: Sequence[PaymentHoldStatus] | None = None,
    ) -> dict[str, Any]:
        """Move an order along one lifecycle edge.

        Args:
            order_id: The order's UUID.
            target: Status to move to.
            extra: Additional columns to write with the transition.
            hold_statuses: If given, the hold must be in one of these.

        Returns:
            dict: The updated order.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidStateError: If no edge exists or the order changed underneath.
        """
        order = await self.require_order(order_id)
        current = OrderStatus(order["status"])

        if current.is_terminal:
            raise InvalidStateError(settled_message(order))
        if not can_transition(current, target):
            raise InvalidStateError(
                f"Invalid status transition from {current.value} to {target.value}"
            )
        if target == OrderStatus.COMPLETED:
            raise InvalidStateError("Orders are completed when the payment hold is released")
        if target == OrderStatus.CANCELLED:
            hold_statuses = list(CANCELLABLE_HOLD_STATUSES)

        now = utc_now().isoformat()
        changes: dict[str, Any] = {"status": target.value, "updated_at": now}
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(target)
        if timestamp_field:
            changes[timestamp_field] = now
        if extra:
            changes.update(extra)

        expected: dict[str, Sequence[str | None]] = {"status": [current.value]}
        if hold_statuses is not None:
            expected["payment_hold_status"] = [s.value for s in hold_statuses]

        updated = await self.conditional_update(order_id, changes, expected)
        if updated is None:
            latest = await self.get_order(order_id)
            raise InvalidStateError(settled_message(latest))

        logger.info("Order %s moved %s -> %s", order_id, current.value, target.value)
        return updated

    async def advance_status(
        self,
        order_id: UUID,
        actor_id: UUID,
        new_status: OrderStatus,
        tracking_number: str | None = None,
        carrier: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Record a seller fulfillment event.

        Completion is reserved for escrow capture, and cancellation here is
        only possible while no hold is authorized; held orders are cancelled
        by refunding the hold.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the actor is not the order's seller.
            InvalidStateError: If the transition is not allowed.
        """
        order = await self.require_order(order_id)
        if order["seller_id"] != str(actor_id):
            raise AuthorizationError("Only the seller can update fulfillment status")

        if new_status == OrderStatus.CANCELLED and (
            PaymentHoldStatus(order["payment_hold_status"]) not in CANCELLABLE_HOLD_STATUSES
        ):
            raise InvalidStateError("Refund the payment hold to cancel this order")

        extra: dict[str, Any] = {}
        if new_status == OrderStatus.SHIPPED and tracking_number:
            extra["tracking_number"] = tracking_number
            extra["carrier"] = carrier
        if notes:
            extra["seller_notes"] = notes

        updated = await self.transition_status(order_id, new_status, extra=extra)

        notification = FULFILLMENT_NOTIFICATIONS.get(new_status)
        if notification:
            notification_type, title, body = notification
            if new_status == OrderStatus.SHIPPED and tracking_number:
                body = f"{body} Tracking: {tracking_number}"
            await self.notifications.notify(
                recipient_id=order["buyer_id"],
                notification_type=notification_type,
                title=title,
                body=body,
                link=f"/orders/{order_id}",
                related_id=order_id,
            )

        return updated
