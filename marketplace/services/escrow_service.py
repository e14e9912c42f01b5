"""Escrow settlement: authorize, capture and refund payment holds.

Each settlement is checked in two independent steps. The actor's standing
for the requested reason is looked up first (AuthorizationError), then the
order's state (InvalidStateError). Only then does the caller claim the hold
with a single UPDATE filtered on payment_hold_status = 'authorized' and no
live claim. Whichever caller's claim lands first is the only one that calls
the gateway; the other sees no row and reports the order as already settled.
A failed gateway call drops the claim and leaves the hold authorized.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from marketplace.api.middleware.error_handler import (
    AuthorizationError,
    GatewayFailureError,
    InvalidStateError,
)
from marketplace.core.config import get_settings
from marketplace.models.order import (
    REFUND_AUTHORITY,
    RELEASE_AUTHORITY,
    ActorRole,
    FulfillmentMethod,
    OrderStatus,
    PaymentHoldStatus,
    ReleaseReason,
    can_transition_hold,
    statuses_leading_to,
)
from marketplace.services.notification_service import NotificationService
from marketplace.services.order_service import OrderService, settled_message, utc_now
from marketplace.services.payment_gateway import PaymentGateway
from marketplace.services.pickup_service import PickupService

logger = logging.getLogger(__name__)

# Statuses from which a captured hold may complete the order.
RELEASABLE_STATUSES = statuses_leading_to(OrderStatus.COMPLETED)
REFUNDABLE_STATUSES = statuses_leading_to(OrderStatus.CANCELLED)

# Once the seller has fulfilled, an expired hold is released to them;
# otherwise the buyer is refunded.
FULFILLED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.READY_FOR_PICKUP, OrderStatus.DELIVERED})


class EscrowService:
    """Service mediating every change to an order's payment hold."""

    def __init__(self) -> None:
        """Initialize escrow service with its collaborators."""
        self.settings = get_settings()
        self.orders = OrderService()
        self.gateway = PaymentGateway()
        self.notifications = NotificationService()

    def resolve_role(self, order: dict[str, Any], actor_id: UUID) -> ActorRole | None:
        """Determine the actor's standing on an order, if any."""
        if actor_id == self.settings.system_actor_id:
            return ActorRole.SYSTEM
        if order["seller_id"] == str(actor_id):
            return ActorRole.SELLER
        if order["buyer_id"] == str(actor_id):
            return ActorRole.BUYER
        return None

    def _require_authorized_hold(self, order: dict[str, Any], allowed_statuses: list[OrderStatus]) -> None:
        hold_status = PaymentHoldStatus(order["payment_hold_status"])
        if hold_status != PaymentHoldStatus.AUTHORIZED:
            if hold_status in (PaymentHoldStatus.CAPTURED, PaymentHoldStatus.REFUNDED):
                raise InvalidStateError(settled_message(order))
            raise InvalidStateError("No payment hold has been authorized for this order")
        if not order.get("payment_hold_ref"):
            raise InvalidStateError("Order has no payment hold reference")
        if OrderStatus(order["status"]) not in allowed_statuses:
            raise InvalidStateError(
                f"Payment cannot be settled while the order is {order['status']}"
            )

    async def _settle(
        self,
        order: dict[str, Any],
        gateway_call: Callable[[str], dict[str, Any]],
        changes: dict[str, Any],
        allowed_statuses: list[OrderStatus],
        operation: str,
    ) -> dict[str, Any]:
        """Claim the hold, call the gateway once, then commit the transition.

        Raises:
            InvalidStateError: If another settlement claimed or finished first.
            GatewayFailureError: If the gateway call fails; the claim is dropped.
        """
        order_id = order["id"]
        claim = str(uuid4())

        if await self.orders.claim_settlement(order_id, claim) is None:
            latest = await self.orders.get_order(order_id)
            logger.warning("%s of order %s lost to a concurrent settlement", operation, order_id)
            raise InvalidStateError(settled_message(latest))

        try:
            gateway_call(order["payment_hold_ref"])
        except GatewayFailureError:
            await self.orders.release_settlement_claim(order_id, claim)
            raise

        updated = await self.orders.conditional_update(
            order_id,
            {**changes, "settlement_claim": None, "settlement_claimed_at": None},
            {
                "payment_hold_status": [PaymentHoldStatus.AUTHORIZED.value],
                "settlement_claim": [claim],
                "status": [s.value for s in allowed_statuses],
            },
        )
        if updated is None:
            logger.error(
                "%s of order %s reached the gateway but the order changed before it was recorded",
                operation,
                order_id,
            )
            latest = await self.orders.get_order(order_id)
            raise InvalidStateError(settled_message(latest))

        return updated

    async def authorize_hold(self, order_id: UUID, payment_method: str) -> dict[str, Any]:
        """Place the escrow hold for an order's final total.

        Args:
            order_id: The order's UUID.
            payment_method: Buyer's Stripe PaymentMethod ID.

        Returns:
            dict: The updated order with payment_hold_status = authorized.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidStateError: If a hold was already placed.
            GatewayFailureError: If Stripe fails or declines.
        """
        order = await self.orders.require_order(order_id)
        if not can_transition_hold(PaymentHoldStatus(order["payment_hold_status"]), PaymentHoldStatus.AUTHORIZED):
            raise InvalidStateError("A payment hold has already been placed for this order")
        if OrderStatus(order["status"]).is_terminal:
            raise InvalidStateError(settled_message(order))

        hold_ref = self.gateway.authorize(
            order_id=order_id,
            amount_cents=order["total_amount"],
            payment_method=payment_method,
            metadata={"buyer_id": order["buyer_id"], "seller_id": order["seller_id"]},
        )

        now = utc_now().isoformat()
        updated = await self.orders.conditional_update(
            order_id,
            {
                "payment_hold_status": PaymentHoldStatus.AUTHORIZED.value,
                "payment_hold_ref": hold_ref,
                "hold_authorized_at": now,
                "updated_at": now,
            },
            {"payment_hold_status": [PaymentHoldStatus.NONE.value]},
        )
        if updated is None:
            raise InvalidStateError("A payment hold has already been placed for this order")

        logger.info("Order %s hold authorized (%s)", order_id, hold_ref)
        return updated

    async def release_hold(
        self,
        order_id: UUID,
        actor_id: UUID,
        reason: ReleaseReason,
    ) -> dict[str, Any]:
        """Capture the hold and complete the order.

        The buyer is asked for a review once review_request_delay_hours have
        passed.

        Args:
            order_id: The order's UUID.
            actor_id: Who is requesting release.
            reason: seller_confirm, buyer_confirm or auto_timeout.

        Returns:
            dict: The completed order.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the actor lacks standing for this reason.
            InvalidStateError: If the hold is not authorized, including when
                another party settled it first.
            GatewayFailureError: If the capture call fails; the hold stays authorized.
        """
        order = await self.orders.require_order(order_id)

        role = self.resolve_role(order, actor_id)
        if role is None or role not in RELEASE_AUTHORITY[reason]:
            logger.warning(
                "Rejected %s release of order %s by %s (role=%s)",
                reason.value,
                order_id,
                actor_id,
                role.value if role else None,
            )
            raise AuthorizationError(f"Not authorized to release payment with reason {reason.value}")

        self._require_authorized_hold(order, RELEASABLE_STATUSES)

        now = utc_now().isoformat()
        changes: dict[str, Any] = {
            "payment_hold_status": PaymentHoldStatus.CAPTURED.value,
            "status": OrderStatus.COMPLETED.value,
            "completed_at": now,
            "released_by": str(actor_id),
            "release_reason": reason.value,
            "updated_at": now,
        }
        if (
            reason == ReleaseReason.SELLER_CONFIRM
            and order["fulfillment_method"] == FulfillmentMethod.PICKUP.value
        ):
            changes["pickup_confirmed_at"] = now

        updated = await self._settle(order, self.gateway.capture, changes, RELEASABLE_STATUSES, "Release")
        logger.info("Order %s captured and completed (%s by %s)", order_id, reason.value, actor_id)

        link = f"/orders/{order_id}"
        await self.notifications.notify(
            recipient_id=order["buyer_id"],
            notification_type="order_completed",
            title="Order Completed",
            body="Your order has been completed. Please consider leaving a review.",
            link=link,
            related_id=order_id,
        )
        await self.notifications.notify(
            recipient_id=order["seller_id"],
            notification_type="payment_released",
            title="Payment Released",
            body="Payment for your order has been released.",
            link=link,
            related_id=order_id,
        )
        await self.notifications.schedule_reminder(
            order_id=order_id,
            recipient_id=order["buyer_id"],
            reminder_type="review_request",
            scheduled_for=utc_now() + timedelta(hours=self.settings.review_request_delay_hours),
        )

        return updated

    async def refund_hold(self, order_id: UUID, actor_id: UUID) -> dict[str, Any]:
        """Void the hold and cancel the order.

        A pickup order also gives up its live appointment, so the slot
        reopens and no pickup reminder goes out for a cancelled order.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the actor is neither buyer, seller nor system.
            InvalidStateError: If the hold is not authorized.
            GatewayFailureError: If the void call fails; the hold stays authorized.
        """
        order = await self.orders.require_order(order_id)

        role = self.resolve_role(order, actor_id)
        if role is None or role not in REFUND_AUTHORITY:
            logger.warning("Rejected refund of order %s by %s", order_id, actor_id)
            raise AuthorizationError("Not authorized to refund this order")

        self._require_authorized_hold(order, REFUNDABLE_STATUSES)

        now = utc_now().isoformat()
        changes = {
            "payment_hold_status": PaymentHoldStatus.REFUNDED.value,
            "status": OrderStatus.CANCELLED.value,
            "cancelled_at": now,
            "updated_at": now,
        }
        updated = await self._settle(order, self.gateway.refund, changes, REFUNDABLE_STATUSES, "Refund")
        logger.info("Order %s refunded and cancelled by %s (%s)", order_id, actor_id, role.value)

        if order["fulfillment_method"] == FulfillmentMethod.PICKUP.value:
            try:
                await PickupService().cancel_order_appointments(order_id)
            except Exception as e:
                logger.error("Failed to free pickup appointment of refunded order %s: %s", order_id, str(e))

        link = f"/orders/{order_id}"
        for recipient in (order["buyer_id"], order["seller_id"]):
            await self.notifications.notify(
                recipient_id=recipient,
                notification_type="order_cancelled",
                title="Order Cancelled",
                body="This order was cancelled and the payment hold has been released to the buyer.",
                link=link,
                related_id=order_id,
            )

        return updated

    async def expire_stale_holds(self, now: datetime | None = None) -> dict[str, int]:
        """Settle holds that stayed authorized past max_hold_hours.

        Runs as the system actor through release_hold / refund_hold, so a
        human settling the same order at the same moment still wins or loses
        cleanly. Lost races are counted as skipped.

        Returns:
            dict: Counts of released, refunded, skipped and failed orders.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=self.settings.max_hold_hours)

        response = (
            self.orders.client.table(OrderService.TABLE)
            .select("*")
            .eq("payment_hold_status", PaymentHoldStatus.AUTHORIZED.value)
            .lt("hold_authorized_at", cutoff.isoformat())
            .execute()
        )
        stale = response.data or []
        logger.info("Found %d holds authorized before %s", len(stale), cutoff.isoformat())

        summary = {"released": 0, "refunded": 0, "skipped": 0, "failed": 0}
        actor = self.settings.system_actor_id
        for order in stale:
            order_id = order["id"]
            try:
                if OrderStatus(order["status"]) in FULFILLED_STATUSES:
                    await self.release_hold(order_id, actor, ReleaseReason.AUTO_TIMEOUT)
                    summary["released"] += 1
                else:
                    await self.refund_hold(order_id, actor)
                    summary["refunded"] += 1
            except InvalidStateError as e:
                logger.info("Skipping expired hold on order %s: %s", order_id, e.message)
                summary["skipped"] += 1
            except GatewayFailureError as e:
                logger.error("Gateway failure expiring hold on order %s: %s", order_id, e.message)
                summary["failed"] += 1

        return summary
