"""Health check endpoints for monitoring and deployment verification."""

import time
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Response, status

from marketplace.api.deps import CurrentUser, is_admin
from marketplace.core.stripe import check_gateway_configuration
from marketplace.core.supabase import check_database_connection
from marketplace.schemas.auth import AuthenticatedResponse
from marketplace.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness checks.",
)
async def health_check() -> HealthResponse:
    """Return basic health status without touching any dependency."""
    return HealthResponse(status=HealthStatus.HEALTHY)


async def _timed_check(name: str, check: Callable[[], Awaitable[dict[str, Any]]]) -> CheckResult:
    start_time = time.perf_counter()
    result = await check()
    latency_ms = (time.perf_counter() - start_time) * 1000
    return CheckResult(
        name=name,
        healthy=result["healthy"],
        latency_ms=round(latency_ms, 2),
        error=result.get("error"),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check that the order store and the payment gateway are reachable.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of the database and the payment gateway.

    Returns 503 if any dependency is unhealthy.
    """
    checks = [
        await _timed_check("database", check_database_connection),
        await _timed_check("payment_gateway", check_gateway_configuration),
    ]

    all_healthy = all(check.healthy for check in checks)
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status=HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY,
        checks=checks,
    )


@router.get(
    "/health/auth",
    response_model=AuthenticatedResponse,
    summary="Authenticated health check",
    description="Protected endpoint to verify authentication is working correctly.",
    responses={
        200: {"description": "Successfully authenticated"},
        401: {"description": "Authentication required or invalid token"},
    },
)
async def authenticated_check(user: CurrentUser) -> AuthenticatedResponse:
    return AuthenticatedResponse(
        authenticated=True,
        user_id=str(user.user_id),
        email=user.email,
        role=user.role,
        is_admin=is_admin(user),
    )
