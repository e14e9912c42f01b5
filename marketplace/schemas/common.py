"""Schemas shared by every route: health checks and error bodies."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness check response."""

    model_config = ConfigDict(from_attributes=True)

    status: HealthStatus = Field(description="Current health status")
    timestamp: datetime = Field(default_factory=_utc_now, description="Check timestamp")
    version: str = Field(default="0.1.0", description="API version")


class CheckResult(BaseModel):
    """Result of probing one dependency (database, payment gateway)."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(description="Dependency name")
    healthy: bool = Field(description="Whether the dependency answered")
    latency_ms: float | None = Field(default=None, description="Check round-trip time in milliseconds")
    error: str | None = Field(default=None, description="Failure reason if unhealthy")


class ReadinessResponse(BaseModel):
    """Readiness check response.

    The service is ready only when every dependency check passes.
    """

    model_config = ConfigDict(from_attributes=True)

    status: HealthStatus = Field(description="Overall readiness status")
    timestamp: datetime = Field(default_factory=_utc_now, description="Check timestamp")
    checks: list[CheckResult] = Field(default_factory=list, description="Individual check results")


class ErrorDetail(BaseModel):
    """One structured detail attached to an error (field error, period key)."""

    model_config = ConfigDict(from_attributes=True)

    loc: list[str] | None = Field(default=None, description="Location of error (e.g., field path)")
    msg: str = Field(description="Human-readable error message")
    type: str = Field(description="Error type identifier")


class ErrorResponse(BaseModel):
    """Body of every error response.

    `error` is the machine-readable category (not_found, invalid_state,
    discount_expired, gateway_failure...) and `message` is safe to show to
    the buyer or seller as-is.
    """

    model_config = ConfigDict(from_attributes=True)

    error: str = Field(description="Error type or category")
    message: str = Field(description="User-displayable error description")
    retryable: bool = Field(default=False, description="Whether repeating the identical request may succeed")
    details: list[ErrorDetail] | None = Field(default=None, description="Additional error details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=_utc_now, description="Error timestamp")

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
        retryable: bool = False,
    ) -> "ErrorResponse":
        """Build an ErrorResponse from an exception's parts.

        Detail dictionaries without a msg key are rendered whole.
        """
        error_details = None
        if details:
            error_details = [
                ErrorDetail(
                    loc=d.get("loc"),
                    msg=d.get("msg", str(d)),
                    type=d.get("type", "error"),
                )
                for d in details
            ]

        return cls(
            error=error_type,
            message=message,
            retryable=retryable,
            details=error_details,
            request_id=request_id,
        )
