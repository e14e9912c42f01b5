"""Unit tests for request middleware and error rendering."""

import json

from fastapi.testclient import TestClient

from marketplace.api.middleware.error_handler import (
    GatewayFailureError,
    ReconciliationError,
    create_error_response,
)
from marketplace.api.middleware.latency_logging import normalize_path


class TestNormalizePath:
    def test_replaces_uuids(self) -> None:
        """Test order IDs collapse so settlement routes log as one path."""
        path = "/api/v1/orders/550e8400-e29b-41d4-a716-446655440000/release"
        assert normalize_path(path) == "/api/v1/orders/{id}/release"

    def test_leaves_plain_paths(self) -> None:
        assert normalize_path("/health/ready") == "/health/ready"


class TestErrorResponses:
    """Tests for structured error bodies."""

    def test_gateway_failure_status_depends_on_retryability(self) -> None:
        """Test transient gateway failures are 503 and declines 502."""
        assert GatewayFailureError().status_code == 503
        assert GatewayFailureError("declined", retryable=False).status_code == 502

    def test_error_body_carries_details(self) -> None:
        error = ReconciliationError(details=[{"period_date": "2025-01-15"}])

        response = create_error_response(
            error_type=error.error_type,
            message=error.message,
            status_code=error.status_code,
            details=error.details,
            retryable=error.retryable,
        )

        body = json.loads(response.body)
        assert response.status_code == 503
        assert body["error"] == "reconciliation_failed"
        assert body["retryable"] is True
        assert body["details"][0]["type"] == "error"


class TestRequestSizeLimit:
    def test_oversized_body_rejected(self, client: TestClient, buyer_headers: dict) -> None:
        """Test bodies over the configured limit get 413."""
        response = client.post(
            "/api/v1/discounts/validate",
            content=b"x" * 2_000_000,
            headers={**buyer_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "request_too_large"
