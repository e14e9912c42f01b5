"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache
from uuid import UUID

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="marketplace-escrow", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_signing_key_jwk: str = Field(..., description="Supabase signing key JWK (JSON string) for JWT token verification")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")
    currency: str = Field(default="usd", description="Currency for payment holds")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Marketplace <orders@example.com>",
        description="From address for transactional emails",
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for notification links",
    )

    # Escrow and revenue
    commission_rate: Decimal = Field(default=Decimal("0.10"), description="Platform commission rate on order totals")
    gateway_fee_percent: Decimal = Field(default=Decimal("0.029"), description="Estimated gateway fee percentage per transaction")
    gateway_fee_fixed_cents: int = Field(default=30, description="Estimated fixed gateway fee per transaction in cents")
    max_hold_hours: int = Field(default=168, description="Hours a hold may stay authorized before the expiry job settles it")
    settlement_claim_ttl_seconds: int = Field(
        default=300,
        description="Seconds after which an unfinished settlement claim may be taken over",
    )
    system_actor_id: UUID = Field(
        default=UUID("00000000-0000-0000-0000-000000000000"),
        description="Actor ID recorded for scheduled settlement actions",
    )
    admin_roles: str = Field(default="service_role,admin", description="Comma-separated JWT roles allowed on admin routes")

    # Discounts
    discount_redeem_max_attempts: int = Field(default=10, description="Compare-and-swap attempts when consuming a discount use")

    # Pickup
    pickup_reminder_lead_hours: int = Field(default=24, description="Hours before a pickup slot to send the reminder")
    review_request_delay_hours: int = Field(default=72, description="Hours after completion to ask the buyer for a review")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_roles_list(self) -> list[str]:
        """Parse admin roles string into a list."""
        return [role.strip() for role in self.admin_roles.split(",") if role.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
