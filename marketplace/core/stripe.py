"""Stripe client configuration and singleton."""

import logging
from typing import Any

import stripe

from marketplace.core.config import get_settings

logger = logging.getLogger(__name__)


def configure_stripe() -> None:
    """Configure Stripe SDK with API key from settings.

    This should be called once at application startup.
    If Stripe keys are not configured, Stripe operations will fail with clear errors.
    """
    settings = get_settings()
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    else:
        logger.warning("Stripe secret key not configured. Payment holds will not work.")


def get_stripe() -> stripe:
    """Get the configured Stripe module.

    Returns:
        stripe: The Stripe module with API key configured.

    Note:
        Stripe SDK uses module-level configuration, so this returns
        the stripe module itself. Ensure configure_stripe() has been
        called before using Stripe API calls.
    """
    return stripe


async def check_gateway_configuration() -> dict[str, Any]:
    """Check that the payment gateway can be called.

    Returns:
        dict: Status with 'healthy' boolean and optional 'error' message.
    """
    settings = get_settings()
    if not settings.stripe_secret_key:
        return {"healthy": False, "error": "STRIPE_SECRET_KEY is not set"}
    try:
        stripe.Balance.retrieve()
        return {"healthy": True}
    except stripe.error.StripeError as e:
        return {"healthy": False, "error": str(e)}
