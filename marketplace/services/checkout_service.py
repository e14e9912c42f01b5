"""Checkout business logic: order placement up to the escrow hold."""

import logging
from typing import Any
from uuid import UUID

from marketplace.api.middleware.error_handler import (
    APIError,
    GatewayFailureError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.config import get_settings
from marketplace.models.order import FulfillmentMethod, OrderStatus, PaymentHoldStatus
from marketplace.services.discount_service import DiscountService
from marketplace.services.escrow_service import EscrowService
from marketplace.services.order_service import OrderService, utc_now

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service placing orders and their payment holds."""

    def __init__(self) -> None:
        """Initialize checkout service with its collaborators."""
        self.settings = get_settings()
        self.orders = OrderService()
        self.discounts = DiscountService()
        self.escrow = EscrowService()

    async def place_order(
        self,
        buyer_id: UUID,
        seller_id: UUID,
        subtotal_cents: int,
        fulfillment_method: FulfillmentMethod,
        payment_method: str,
        discount_code: str | None = None,
    ) -> dict[str, Any]:
        """Create an order, fix its discounted total and authorize the hold.

        The discount is redeemed before the hold is placed, so the
        authorized amount is always the final total.

        Args:
            buyer_id: Buyer's profile ID.
            seller_id: Seller's profile ID.
            subtotal_cents: Cart total before discounts, in cents.
            fulfillment_method: Pickup or shipping.
            payment_method: Buyer's Stripe PaymentMethod ID.
            discount_code: Optional code to redeem.

        Returns:
            dict: The order with payment_hold_status = authorized.

        Raises:
            ValidationError: If the buyer is also the seller.
            DiscountError: If the discount code cannot be applied.
            GatewayFailureError: If the hold could not be placed. When the
                failure is retryable the order stays pending and its ID is in
                the error details; see retry_authorization.
        """
        if buyer_id == seller_id:
            raise ValidationError("You cannot purchase your own listing")

        order = await self.orders.create_order(
            buyer_id=buyer_id,
            seller_id=seller_id,
            subtotal_cents=subtotal_cents,
            fulfillment_method=fulfillment_method,
        )
        order_id = order["id"]

        if discount_code:
            try:
                order = await self.discounts.redeem(discount_code, order_id)
            except APIError as e:
                logger.error("Checkout for order %s failed: %s", order_id, e.message)
                await self._abandon(order_id)
                raise

        return await self._authorize(order_id, payment_method)

    async def retry_authorization(self, order_id: UUID, buyer_id: UUID, payment_method: str) -> dict[str, Any]:
        """Repeat the hold for an order whose first attempt failed transiently.

        The gateway call reuses the order's idempotency key, so a hold that
        Stripe created before the failure is returned rather than duplicated.

        Raises:
            NotFoundError: If the order does not exist or is not the buyer's.
            InvalidStateError: If the order is no longer awaiting its hold.
            GatewayFailureError: If the hold could not be placed.
        """
        order = await self.orders.get_order(order_id)
        if not order or order["buyer_id"] != str(buyer_id):
            raise NotFoundError("Order not found")
        if (
            order["status"] != OrderStatus.PENDING.value
            or order["payment_hold_status"] != PaymentHoldStatus.NONE.value
        ):
            raise InvalidStateError("This order is not awaiting payment authorization")

        return await self._authorize(order_id, payment_method)

    async def _authorize(self, order_id: UUID | str, payment_method: str) -> dict[str, Any]:
        """Authorize the hold, abandoning the order only on a definite failure.

        After a transient failure Stripe may already hold funds under the
        order's idempotency key, so the order is kept pending for a retry
        with the same key instead of being cancelled.
        """
        try:
            return await self.escrow.authorize_hold(order_id, payment_method)
        except GatewayFailureError as e:
            if e.retryable:
                logger.warning("Hold for order %s failed transiently, keeping order pending", order_id)
                e.details = [{"loc": ["order_id"], "msg": str(order_id), "type": "retry_authorization"}]
                raise
            logger.error("Checkout for order %s failed: %s", order_id, e.message)
            await self._abandon(order_id)
            raise
        except APIError as e:
            logger.error("Checkout for order %s failed: %s", order_id, e.message)
            await self._abandon(order_id)
            raise

    async def _abandon(self, order_id: UUID | str) -> None:
        """Cancel an order that never reached a hold and return its discount use."""
        now = utc_now().isoformat()
        cancelled = await self.orders.conditional_update(
            order_id,
            {"status": OrderStatus.CANCELLED.value, "cancelled_at": now, "updated_at": now},
            {
                "status": [OrderStatus.PENDING.value],
                "payment_hold_status": [PaymentHoldStatus.NONE.value],
            },
        )
        if cancelled:
            await self.discounts.release_redemption(cancelled)
