"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly, so values are type-checked once
at startup and every available option is documented in one place.
"""

import warnings
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Promotion service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - SQLite file for local dev, PostgreSQL URL in production
    database_url: str = "sqlite:///./promotions.db"
    sql_echo: bool = False

    # Security
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # Display of amounts and dates in customer-facing validation messages.
    # Dates are rendered in UTC, the same clock the validity windows use.
    currency: str = "VND"
    datetime_display_format: str = "%d/%m/%Y %H:%M"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == DEFAULT_SECRET_KEY:
            warnings.warn(
                "Using default SECRET_KEY is insecure! Set SECRET_KEY environment variable.",
                UserWarning,
                stacklevel=2,
            )
        elif len(v) < 32:
            warnings.warn(
                "SECRET_KEY should be at least 32 characters for security.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to start in production mode with a weak signing key."""
        if not self.debug:
            if self.secret_key == DEFAULT_SECRET_KEY:
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
        """Parse CORS origins into a list, filtering localhost in production."""
        if self.cors_origins == "*":
            return ["*"]

        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

        if not self.debug:
            localhost_patterns = ["localhost", "127.0.0.1", "0.0.0.0"]
            origins = [o for o in origins if not any(p in o for p in localhost_patterns)]

        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
