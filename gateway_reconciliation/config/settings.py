"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

FIELD_DELIMITER = "|"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Gateway credentials and the database URL have no defaults: a missing value
    fails at startup instead of silently falling back to a demo merchant.
    """

    # Gateway Configuration
    merchant_id: str = Field(..., description="Merchant id issued by the gateway")
    signing_secret: str = Field(..., description="HMAC signing secret (provisioned out of band)")
    gateway_base_url: str = Field(..., description="Gateway API base URL")
    return_url: str = Field(..., description="URL the gateway posts the browser back to")
    payment_url: str = Field(
        default="", description="Checkout URL handed to the browser (defaults to the base URL)"
    )
    currency: str = Field(default="INR", description="Settlement currency")
    payment_mode: str = Field(default="DIRECT", description="Payment mode sent with every request")
    gateway_timeout_seconds: float = Field(
        default=10.0, description="Timeout for outbound gateway calls (seconds)"
    )
    gateway_register_orders: bool = Field(
        default=False, description="Register orders with the gateway before checkout"
    )

    # Frontend redirects
    frontend_url: str = Field(default="http://localhost:5173", description="Frontend base URL")
    success_path: str = Field(default="/thank-you", description="Payment success page")
    failure_path: str = Field(default="/payment/failed", description="Payment failure page")
    pending_path: str = Field(default="/payment/pending", description="Payment pending page")

    # Database Configuration
    database_url: str = Field(..., description="SQLAlchemy async connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for the outcome cache (disabled when unset)"
    )
    outcome_cache_ttl: int = Field(
        default=86400, description="Outcome cache TTL for redelivered payloads (seconds)"
    )

    # Reconciliation
    pending_followup_seconds: int = Field(
        default=900, description="Age after which pending transactions are queried"
    )
    sweeper_interval_seconds: int = Field(
        default=300, description="Interval between follow-up sweeps (seconds)"
    )
    sweeper_batch_size: int = Field(default=100, description="Records handled per sweep")
    notification_queue_size: int = Field(
        default=1000, description="Max queued notifications before dropping"
    )

    # Application Configuration
    app_name: str = Field(default="gateway-reconciliation", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("signing_secret")
    @classmethod
    def validate_signing_secret(cls, v: str) -> str:
        """Reject a blank signing secret."""
        if not v.strip():
            raise ValueError("signing_secret must not be blank")
        return v

    @field_validator("merchant_id")
    @classmethod
    def validate_merchant_id(cls, v: str) -> str:
        """Merchant id is embedded in every signed message."""
        if not v.strip():
            raise ValueError("merchant_id must not be blank")
        if FIELD_DELIMITER in v:
            raise ValueError(f"merchant_id must not contain '{FIELD_DELIMITER}'")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

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

    @property
    def checkout_url(self) -> str:
        """URL the browser submits the signed message to."""
        return self.payment_url or self.gateway_base_url

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Called once at process start; components receive the instance explicitly.
    """
    return Settings()
