"""Pytest configuration and fixtures."""

import os
import time
from collections.abc import Generator
from contextlib import ExitStack
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("RESEND_API_KEY", "")

from fakes import BUYER_ID, OUTSIDER_ID, SELLER_ID, FakeSupabase  # noqa: E402

ADMIN_ID = "aa0e8400-e29b-41d4-a716-446655440000"

SUPABASE_CLIENT_TARGETS = (
    "marketplace.core.supabase.get_supabase_client",
    "marketplace.services.order_service.get_supabase_client",
    "marketplace.services.notification_service.get_supabase_client",
    "marketplace.services.discount_service.get_supabase_client",
    "marketplace.services.pickup_service.get_supabase_client",
    "marketplace.services.revenue_service.get_supabase_client",
)

# Bearer token -> (sub, role) accepted by the patched JWT decoder
TEST_TOKENS: dict[str, tuple[str, str]] = {
    "buyer-token": (BUYER_ID, "authenticated"),
    "seller-token": (SELLER_ID, "authenticated"),
    "outsider-token": (OUTSIDER_ID, "authenticated"),
    "admin-token": (ADMIN_ID, "service_role"),
}


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from marketplace.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> Generator[FakeSupabase, None, None]:
    """Provide an in-memory database patched into every service.

    Yields:
        FakeSupabase: The shared fake client.
    """
    db = FakeSupabase()
    with ExitStack() as stack:
        for target in SUPABASE_CLIENT_TARGETS:
            stack.enter_context(patch(target, return_value=db))
        yield db


@pytest.fixture
def mock_stripe() -> Generator[MagicMock, None, None]:
    """Provide a mocked Stripe module for the payment gateway.

    Holds are approved with reference pi_test_123 by default.

    Yields:
        MagicMock: Mocked stripe module.
    """
    stripe_mock = MagicMock()
    stripe_mock.PaymentIntent.create.return_value = MagicMock(id="pi_test_123", status="requires_capture")
    stripe_mock.PaymentIntent.capture.return_value = MagicMock(status="succeeded")
    stripe_mock.PaymentIntent.cancel.return_value = MagicMock(status="canceled")

    with patch("marketplace.services.payment_gateway.get_stripe", return_value=stripe_mock):
        yield stripe_mock


def _decode_test_token(token: str) -> Any:
    from marketplace.api.middleware.auth import AuthError, AuthErrorCode
    from marketplace.schemas.auth import TokenPayload

    if token not in TEST_TOKENS:
        raise AuthError("Invalid token", AuthErrorCode.INVALID_TOKEN)
    sub, role = TEST_TOKENS[token]
    now = int(time.time())
    return TokenPayload(sub=sub, role=role, email=f"{role}@example.com", exp=now + 3600, iat=now)


@pytest.fixture
def client(fake_db: FakeSupabase, mock_stripe: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client backed by the fake database and mocked Stripe.

    Bearer tokens listed in TEST_TOKENS authenticate as their user.

    Yields:
        TestClient: FastAPI test client.
    """
    from marketplace.main import app

    with patch("marketplace.api.deps.decode_jwt", side_effect=_decode_test_token):
        with TestClient(app) as test_client:
            yield test_client


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def buyer_headers() -> dict[str, str]:
    return auth_headers("buyer-token")


@pytest.fixture
def seller_headers() -> dict[str, str]:
    return auth_headers("seller-token")


@pytest.fixture
def outsider_headers() -> dict[str, str]:
    return auth_headers("outsider-token")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers("admin-token")
