"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. This ensures:
1. Type validation at startup
2. Centralized configuration
3. Documentation of available settings
4. Proper defaults
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/mesa_pos.db"

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # one service shift

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:5173,http://localhost:8000"

    # ==========================================================================
    # Order engine
    # ==========================================================================
    # Zero-decimal currency by default (COP); set to 2 for cent-based currencies
    currency_decimals: int = 0
    # Percent applied when a menu item has no tax rate of its own
    default_tax_rate: Decimal = Decimal("8")
    # Status new orders start in. "ready" skips the kitchen queue.
    order_initial_status: Literal["pending", "preparing", "ready", "delivered"] = "ready"
    # Which subtotal a tip percentage is applied to at settlement time
    tip_base: Literal["order_subtotal", "menu_base_price"] = "order_subtotal"
    # Hand the invoice to the printer collaborator after settlement
    print_invoices: bool = False

    @field_validator("currency_decimals")
    @classmethod
    def validate_currency_decimals(cls, v: int) -> int:
        if v < 0 or v > 4:
            raise ValueError(f"currency_decimals must be between 0 and 4, got {v}")
        return v

    @field_validator("default_tax_rate")
    @classmethod
    def validate_default_tax_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError(f"default_tax_rate must be between 0 and 100, got {v}")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == "change-me-in-production":
            import warnings
            warnings.warn(
                "Using default SECRET_KEY is insecure! Set SECRET_KEY environment variable.",
                UserWarning,
                stacklevel=2,
            )
        if len(v) < 32:
            import warnings
            warnings.warn(
                "SECRET_KEY should be at least 32 characters for security.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production safety."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Timezone used for business-day boundaries
    timezone: str = "America/Bogota"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 100  # requests per window
    rate_limit_window: int = 60  # window in seconds


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
