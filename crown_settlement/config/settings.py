"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# SHA-256 digest size in bytes
MIN_JWT_SECRET_LENGTH = 32
PLACEHOLDER_SECRETS = frozenset({"change-me", "changeme", "secret", "your-secret-key"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_api_version: str = Field(
        default="2025-02-24.acacia", description="Stripe API version"
    )

    # Database Configuration
    database_url: str = Field(..., description="PostgreSQL connection URL")
    database_pool_size: int = Field(default=5, description="Database connection pool size")
    database_max_overflow: int = Field(default=10, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Settlement
    settlement_timezone: str = Field(
        default="America/Chicago", description="Civil timezone used for date keys"
    )
    settlement_hour: int = Field(default=0, ge=0, le=23, description="Nightly run hour")
    settlement_minute: int = Field(default=5, ge=0, le=59, description="Nightly run minute")
    settlement_lock_stale_seconds: int = Field(
        default=600, gt=0, description="Age after which a settlement lock is abandoned"
    )
    candidate_pool_limit: int = Field(
        default=100, gt=0, description="Top N bidders loaded per settlement run"
    )
    min_charge_cents: int = Field(
        default=50, description="Smallest chargeable amount in minor units"
    )
    settlement_currency: str = Field(default="usd", description="Charge currency")

    # Security
    cron_secret: Optional[str] = Field(
        default=None, description="Shared secret expected in X-Cron-Secret"
    )
    operator_uids: str = Field(
        default="", description="Operator allow-list (comma-separated uids)"
    )
    auth_jwt_secret: str = Field(..., description="Secret used to verify bearer tokens")
    auth_jwt_algorithm: str = Field(default="HS256", description="Bearer token algorithm")

    # Application Configuration
    app_name: str = Field(default="crown-settlement", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=2, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate that Stripe secret key is a test or live secret key."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("auth_jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Reject short or placeholder HS256 secrets."""
        if v.strip().lower() in PLACEHOLDER_SECRETS:
            raise ValueError("auth_jwt_secret is a placeholder value")
        if len(v) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"auth_jwt_secret must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        return v

    @field_validator("min_charge_cents")
    @classmethod
    def validate_min_charge(cls, v: int) -> int:
        """Stripe refuses card charges below 50 minor units."""
        if v < 50:
            raise ValueError("min_charge_cents must be at least 50")
        return v

    @field_validator("settlement_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    def get_operator_uids_list(self) -> List[str]:
        """Parse the operator allow-list, ignoring blanks."""
        return [uid.strip() for uid in self.operator_uids.split(",") if uid.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
