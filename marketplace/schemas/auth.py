"""Authentication schemas for JWT tokens and the acting user."""

from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """The actor behind the current request.

    user_id is the identity checked against an order's buyer and seller
    when deciding who may release or refund a payment hold.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="Actor ID (from JWT sub claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="Supabase role claim (e.g. authenticated, service_role)")


class TokenPayload(BaseModel):
    """Claims of a Supabase-issued JWT."""

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's UUID")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="User's role")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")
    aud: str | None = Field(default=None, description="Audience - intended recipient")
    iss: str | None = Field(default=None, description="Issuer - token issuer URL")

    @property
    def expiration_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    def to_user_context(self) -> UserContext:
        """Convert token claims to the request's UserContext."""
        return UserContext(
            user_id=UUID(self.sub),
            email=self.email,
            role=self.role,
        )


class AuthenticatedResponse(BaseModel):
    """Response for GET /health/auth."""

    model_config = ConfigDict(from_attributes=True)

    authenticated: bool = Field(default=True, description="Authentication status")
    user_id: str = Field(description="Authenticated user ID")
    email: str | None = Field(default=None, description="User email if available")
    role: str | None = Field(default=None, description="User role if available")
    is_admin: bool = Field(default=False, description="Whether the role may call admin endpoints")
