"""Unit tests for CheckoutService."""

from typing import Any
from unittest.mock import MagicMock
from uuid import UUID

import pytest
import stripe

from fakes import BUYER_ID, SELLER_ID, FakeSupabase, seed_discount
from marketplace.api.middleware.error_handler import (
    CodeExpiredError,
    GatewayFailureError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.models.order import FulfillmentMethod
from marketplace.services.checkout_service import CheckoutService


@pytest.fixture
def checkout_service(fake_db: FakeSupabase, mock_stripe: MagicMock, test_settings: Any) -> CheckoutService:
    """Create CheckoutService with the fake database and mocked Stripe."""
    return CheckoutService()


async def place(checkout_service: CheckoutService, discount_code: str | None = None) -> dict[str, Any]:
    return await checkout_service.place_order(
        buyer_id=UUID(BUYER_ID),
        seller_id=UUID(SELLER_ID),
        subtotal_cents=10000,
        fulfillment_method=FulfillmentMethod.SHIPPING,
        payment_method="pm_card_visa",
        discount_code=discount_code,
    )


class TestPlaceOrder:
    """Tests for placing an order through to the hold."""

    @pytest.mark.asyncio
    async def test_places_order_with_authorized_hold(
        self, checkout_service: CheckoutService, mock_stripe: MagicMock
    ) -> None:
        """Test a plain order ends up pending with an authorized hold."""
        order = await place(checkout_service)

        assert order["status"] == "pending"
        assert order["payment_hold_status"] == "authorized"
        assert order["payment_hold_ref"] == "pi_test_123"
        assert mock_stripe.PaymentIntent.create.call_args.kwargs["amount"] == 10000

    @pytest.mark.asyncio
    async def test_discount_applied_before_hold(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test the hold is placed for the discounted total."""
        seed_discount(fake_db, value=1500)

        order = await place(checkout_service, discount_code="save5")

        assert order["discount_amount"] == 1500
        assert order["total_amount"] == 8500
        assert order["commission_amount"] == 850
        assert mock_stripe.PaymentIntent.create.call_args.kwargs["amount"] == 8500

    @pytest.mark.asyncio
    async def test_self_purchase_rejected(self, checkout_service: CheckoutService, fake_db: FakeSupabase) -> None:
        """Test a seller cannot buy from themselves."""
        with pytest.raises(ValidationError):
            await checkout_service.place_order(
                buyer_id=UUID(SELLER_ID),
                seller_id=UUID(SELLER_ID),
                subtotal_cents=10000,
                fulfillment_method=FulfillmentMethod.PICKUP,
                payment_method="pm_card_visa",
            )

        assert fake_db.rows("orders") == []

    @pytest.mark.asyncio
    async def test_invalid_discount_cancels_order(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test a rejected code abandons the order without a hold."""
        seed_discount(fake_db, valid_until="2000-01-01T00:00:00+00:00")

        with pytest.raises(CodeExpiredError):
            await place(checkout_service, discount_code="SAVE5")

        orders = fake_db.rows("orders")
        assert len(orders) == 1
        assert orders[0]["status"] == "cancelled"
        mock_stripe.PaymentIntent.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_failure_returns_discount_use(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test a failed hold cancels the order and frees the redeemed use."""
        discount = seed_discount(fake_db, usage_limit=1)
        mock_stripe.PaymentIntent.create.side_effect = stripe.error.CardError(
            "Your card was declined.", param=None, code="card_declined"
        )

        with pytest.raises(GatewayFailureError):
            await place(checkout_service, discount_code="SAVE5")

        orders = fake_db.rows("orders")
        assert orders[0]["status"] == "cancelled"
        assert orders[0]["payment_hold_status"] == "none"
        assert fake_db.row("discount_codes", discount["id"])["usage_count"] == 0
        assert fake_db.rows("discount_code_usage") == []

    @pytest.mark.asyncio
    async def test_transient_gateway_failure_keeps_order_pending(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test a timed-out hold leaves the order and its discount in place for a retry."""
        discount = seed_discount(fake_db, usage_limit=1)
        mock_stripe.PaymentIntent.create.side_effect = stripe.error.APIConnectionError("Read timed out")

        with pytest.raises(GatewayFailureError) as exc_info:
            await place(checkout_service, discount_code="SAVE5")

        orders = fake_db.rows("orders")
        assert len(orders) == 1
        assert orders[0]["status"] == "pending"
        assert orders[0]["payment_hold_status"] == "none"
        assert orders[0]["discount_code_id"] == discount["id"]
        assert exc_info.value.retryable is True
        assert exc_info.value.details == [
            {"loc": ["order_id"], "msg": orders[0]["id"], "type": "retry_authorization"}
        ]
        assert fake_db.row("discount_codes", discount["id"])["usage_count"] == 1
        mock_stripe.PaymentIntent.cancel.assert_not_called()


class TestRetryAuthorization:
    """Tests for repeating a hold after a transient failure."""

    async def _failed_checkout(self, checkout_service: CheckoutService, mock_stripe: MagicMock) -> str:
        mock_stripe.PaymentIntent.create.side_effect = stripe.error.APIConnectionError("Read timed out")
        with pytest.raises(GatewayFailureError) as exc_info:
            await place(checkout_service)
        mock_stripe.PaymentIntent.create.side_effect = None
        return exc_info.value.details[0]["msg"]

    @pytest.mark.asyncio
    async def test_retry_reuses_idempotency_key(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test the retry asks Stripe for the same hold rather than a second one."""
        order_id = await self._failed_checkout(checkout_service, mock_stripe)

        order = await checkout_service.retry_authorization(UUID(order_id), UUID(BUYER_ID), "pm_card_visa")

        assert order["payment_hold_status"] == "authorized"
        keys = [c.kwargs["idempotency_key"] for c in mock_stripe.PaymentIntent.create.call_args_list]
        assert keys == [f"authorize-{order_id}", f"authorize-{order_id}"]
        assert len(fake_db.rows("orders")) == 1

    @pytest.mark.asyncio
    async def test_declined_retry_cancels_order(
        self, checkout_service: CheckoutService, fake_db: FakeSupabase, mock_stripe: MagicMock
    ) -> None:
        """Test a definite decline on retry abandons the order."""
        order_id = await self._failed_checkout(checkout_service, mock_stripe)
        mock_stripe.PaymentIntent.create.side_effect = stripe.error.CardError(
            "Your card was declined.", param=None, code="card_declined"
        )

        with pytest.raises(GatewayFailureError):
            await checkout_service.retry_authorization(UUID(order_id), UUID(BUYER_ID), "pm_card_visa")

        assert fake_db.row("orders", order_id)["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_retry_by_other_user_not_found(
        self, checkout_service: CheckoutService, mock_stripe: MagicMock
    ) -> None:
        order_id = await self._failed_checkout(checkout_service, mock_stripe)

        with pytest.raises(NotFoundError):
            await checkout_service.retry_authorization(UUID(order_id), UUID(SELLER_ID), "pm_card_visa")

    @pytest.mark.asyncio
    async def test_retry_after_hold_is_invalid(
        self, checkout_service: CheckoutService, mock_stripe: MagicMock
    ) -> None:
        """Test an order that already holds funds cannot be authorized again."""
        order = await place(checkout_service)

        with pytest.raises(InvalidStateError):
            await checkout_service.retry_authorization(UUID(order["id"]), UUID(BUYER_ID), "pm_card_visa")
