"""
Unified Cache Application Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for all settings.
"""

import re
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import APP_VERSION, ENCRYPTION_KEY_HEX_LENGTH, resolve_build_id

# Load environment variables from .env file
load_dotenv()

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class Settings(BaseSettings):
    """Application settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    SERVICE_NAME: str = Field(
        default="unified-cache-api", description="Service name for logs and traces"
    )
    SERVICE_VERSION: str = Field(default=APP_VERSION, description="Service version")

    # Redis configuration (optional - memory store is used when absent)
    REDIS_URL: Optional[str] = Field(
        default=None, description="Redis connection URL for the shared cache store"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=2.0, gt=0, le=60, description="Redis command timeout in seconds"
    )

    # Cache behaviour
    CACHE_KEY_PREFIX: str = Field(
        default="ucache", description="Prefix for every key written to Redis"
    )
    CACHE_MAX_SIZE: int = Field(
        default=1000, ge=1, le=1_000_000, description="Memory store entry limit"
    )
    CACHE_LOCK_TTL_MS: int = Field(
        default=10_000,
        ge=100,
        le=120_000,
        description="Lease for the cross-instance single-flight lock",
    )
    CACHE_LOCK_WAIT_SECONDS: float = Field(
        default=2.0,
        ge=0,
        le=30,
        description="How long a lock loser polls for the winner's result",
    )
    BUILD_ID: str = Field(
        default_factory=resolve_build_id,
        description="Deployment build identifier used for cache busting",
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=20, description="Circuit breaker failure threshold"
    )
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Circuit breaker recovery timeout in seconds",
    )

    # Security configuration
    MESSAGE_ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        description="64 hex character AES-256 key for direct message bodies",
    )
    CACHE_ADMIN_TOKEN: Optional[str] = Field(
        default=None, description="Token required by cache purge endpoints"
    )

    # CDN configuration
    CLOUDFLARE_ZONE_ID: Optional[str] = Field(
        default=None, description="Cloudflare zone for CDN purges"
    )
    CLOUDFLARE_API_TOKEN: Optional[str] = Field(
        default=None, description="Cloudflare API token for CDN purges"
    )
    SITE_URL: str = Field(
        default="http://localhost:3000", description="Public site base URL"
    )

    # Development and debugging
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL scheme when provided."""
        if v in (None, ""):
            return None
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis://, rediss:// or unix:// URL")
        return v

    @field_validator("MESSAGE_ENCRYPTION_KEY")
    @classmethod
    def validate_encryption_key(cls, v):
        """Reject malformed encryption keys at startup.

        A missing key is allowed here and reported on first use.
        """
        if v in (None, ""):
            return None
        if len(v) != ENCRYPTION_KEY_HEX_LENGTH or not _HEX_KEY_PATTERN.match(v):
            raise ValueError(
                f"MESSAGE_ENCRYPTION_KEY must be {ENCRYPTION_KEY_HEX_LENGTH} "
                "hexadecimal characters (32 bytes)"
            )
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def redis_enabled(self) -> bool:
        """Check if a shared Redis store is configured."""
        return bool(self.REDIS_URL)

    @property
    def cdn_purge_enabled(self) -> bool:
        """Check if Cloudflare purge credentials are configured."""
        return bool(self.CLOUDFLARE_ZONE_ID and self.CLOUDFLARE_API_TOKEN)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
