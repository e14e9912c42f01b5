"""Stripe-backed payment hold operations.

Holds are PaymentIntents created with manual capture. Every call carries an
idempotency key derived from the order or the hold reference, so repeating
an operation after a transient failure never moves money twice.
"""

import logging
from typing import Any
from uuid import UUID

import stripe

from marketplace.api.middleware.error_handler import GatewayFailureError
from marketplace.core.config import get_settings
from marketplace.core.stripe import get_stripe

logger = logging.getLogger(__name__)

TRANSIENT_STRIPE_ERRORS = (
    stripe.error.APIConnectionError,
    stripe.error.RateLimitError,
    stripe.error.APIError,
    stripe.error.IdempotencyError,
)


class PaymentGateway:
    """Authorize, capture and void payment holds through Stripe."""

    def __init__(self) -> None:
        """Initialize the gateway with the configured Stripe module."""
        self.stripe = get_stripe()
        self.settings = get_settings()

    def _ensure_configured(self) -> None:
        if not self.settings.stripe_secret_key:
            raise GatewayFailureError(
                "Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.",
                retryable=False,
            )

    def _translate(self, operation: str, reference: str, error: stripe.error.StripeError) -> GatewayFailureError:
        transient = isinstance(error, TRANSIENT_STRIPE_ERRORS)
        logger.error(
            "Stripe %s failed for %s (transient=%s): %s",
            operation,
            reference,
            transient,
            str(error),
        )
        if transient:
            return GatewayFailureError()
        return GatewayFailureError(
            f"Payment gateway rejected the {operation}: {error.user_message or str(error)}",
            retryable=False,
        )

    def authorize(
        self,
        order_id: UUID,
        amount_cents: int,
        payment_method: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Place a hold for the order total.

        Args:
            order_id: Order the hold belongs to; seeds the idempotency key.
            amount_cents: Amount to hold in minor units.
            payment_method: Stripe PaymentMethod ID supplied by the buyer.
            metadata: Extra metadata stored on the PaymentIntent.

        Returns:
            str: The PaymentIntent ID used as the hold reference.

        Raises:
            GatewayFailureError: If Stripe fails or declines the hold.
        """
        self._ensure_configured()
        try:
            intent = self.stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.settings.currency,
                payment_method=payment_method,
                capture_method="manual",
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"order_id": str(order_id), **(metadata or {})},
                idempotency_key=f"authorize-{order_id}",
            )
        except stripe.error.StripeError as e:
            raise self._translate("authorization", str(order_id), e) from e

        if intent.status != "requires_capture":
            logger.warning("Hold for order %s not approved (status=%s)", order_id, intent.status)
            self._cancel_unapproved(intent.id)
            raise GatewayFailureError("Payment authorization was not approved", retryable=False)

        logger.info("Authorized hold %s for order %s (%d cents)", intent.id, order_id, amount_cents)
        return intent.id

    def _cancel_unapproved(self, intent_id: str) -> None:
        """Cancel an intent left awaiting buyer action so it cannot be confirmed later."""
        try:
            self.stripe.PaymentIntent.cancel(intent_id, idempotency_key=f"void-{intent_id}")
        except stripe.error.StripeError as e:
            logger.error("Could not cancel unapproved intent %s: %s", intent_id, str(e))

    def capture(self, hold_ref: str) -> dict[str, Any]:
        """Capture a held payment, releasing escrow to the seller.

        Raises:
            GatewayFailureError: If Stripe fails to capture.
        """
        self._ensure_configured()
        try:
            intent = self.stripe.PaymentIntent.capture(hold_ref, idempotency_key=f"capture-{hold_ref}")
        except stripe.error.StripeError as e:
            raise self._translate("capture", hold_ref, e) from e

        logger.info("Captured hold %s", hold_ref)
        return {"hold_ref": hold_ref, "status": intent.status}

    def refund(self, hold_ref: str) -> dict[str, Any]:
        """Void an uncaptured hold, returning the funds to the buyer.

        Raises:
            GatewayFailureError: If Stripe fails to void.
        """
        self._ensure_configured()
        try:
            intent = self.stripe.PaymentIntent.cancel(hold_ref, idempotency_key=f"void-{hold_ref}")
        except stripe.error.StripeError as e:
            raise self._translate("refund", hold_ref, e) from e

        logger.info("Voided hold %s", hold_ref)
        return {"hold_ref": hold_ref, "status": intent.status}
