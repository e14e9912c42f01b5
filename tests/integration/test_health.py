"""Integration tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from fakes import FakeSupabase


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        """Test that /health endpoint returns healthy status and version."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["timestamp"] is not None


class TestReadinessEndpoint:
    """Tests for /health/ready endpoint."""

    @patch("marketplace.api.routes.health.check_gateway_configuration", new_callable=AsyncMock)
    def test_readiness_healthy(self, mock_gateway: AsyncMock, client: TestClient) -> None:
        """Test that /health/ready returns 200 when every dependency answers."""
        mock_gateway.return_value = {"healthy": True}

        response = client.get("/health/ready")

        assert response.status_code == 200
        names = {check["name"]: check["healthy"] for check in response.json()["checks"]}
        assert names == {"database": True, "payment_gateway": True}

    @patch("marketplace.api.routes.health.check_gateway_configuration", new_callable=AsyncMock)
    def test_readiness_database_down(
        self, mock_gateway: AsyncMock, client: TestClient, fake_db: FakeSupabase
    ) -> None:
        """Test that an unreachable database makes the service unready."""
        mock_gateway.return_value = {"healthy": True}
        fake_db.fail("orders", "select", ConnectionError("connection refused"))

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestAuthenticatedHealth:
    """Tests for /health/auth endpoint."""

    def test_requires_token(self, client: TestClient) -> None:
        assert client.get("/health/auth").status_code == 401

    def test_reports_admin_role(self, client: TestClient, admin_headers: dict, buyer_headers: dict) -> None:
        assert client.get("/health/auth", headers=admin_headers).json()["is_admin"] is True
        assert client.get("/health/auth", headers=buyer_headers).json()["is_admin"] is False
