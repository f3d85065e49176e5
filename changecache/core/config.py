"""
Change Cache Configuration

Configuration management with environment variable support.
Covers the cache-consistency engine: TTL, admission control, store
endpoints, and the retry policies of each store path.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Engine settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Deployment environment"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(
        default=True, description="Render logs as JSON instead of console lines"
    )

    # Cache Store behaviour
    CACHE_ENABLED: bool = Field(
        default=True, description="Route reads and writes through the Cache Store"
    )
    CACHE_TTL_DAYS: int = Field(
        default=90, ge=1, le=3650, description="Cache entry time-to-live in days"
    )
    CACHE_REQUESTS_PER_SECOND: int = Field(
        default=100,
        ge=1,
        le=100000,
        description="Token bucket capacity and refill rate for Cache Store calls",
    )
    CACHE_BACKEND: str = Field(default="redis", description="redis or memory")
    CACHE_KEY_PREFIX: str = Field(
        default="changecache", min_length=1, description="Redis key namespace"
    )
    CACHE_QUERY_PAGE_SIZE: int = Field(
        default=100, ge=1, le=1000, description="Entries fetched per index page"
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=20, ge=1, le=200, description="Redis connection pool size"
    )
    REDIS_SOCKET_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Per-command socket timeout"
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=50, description="Circuit breaker failure threshold"
    )
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: float = Field(
        default=30.0,
        ge=1.0,
        le=600.0,
        description="Circuit breaker recovery timeout in seconds",
    )

    # Primary Store configuration
    PRIMARY_BACKEND: str = Field(default="s3", description="s3 or local")
    PRIMARY_BUCKET: str = Field(
        default="change-metadata", min_length=1, description="Primary Store bucket"
    )
    PRIMARY_KEY_PREFIX: str = Field(
        default="archive/", description="Key prefix of canonical document objects"
    )
    PRIMARY_LOCAL_ROOT: Path = Field(
        default=Path("./primary-store"),
        description="Root directory of the local Primary Store backend",
    )
    AWS_REGION: Optional[str] = Field(default=None, description="AWS region")
    S3_ENDPOINT_URL: Optional[str] = Field(
        default=None, description="Custom endpoint for S3-compatible storage"
    )

    # Retry policies
    CACHE_THROTTLE_BASE_DELAY: float = Field(default=0.1, gt=0, le=10.0)
    CACHE_THROTTLE_MAX_ATTEMPTS: int = Field(default=5, ge=1, le=20)
    CACHE_NETWORK_BASE_DELAY: float = Field(default=1.0, gt=0, le=60.0)
    CACHE_NETWORK_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=20)
    PRIMARY_RETRY_BASE_DELAY: float = Field(default=1.0, gt=0, le=60.0)
    PRIMARY_RETRY_MAX_ATTEMPTS: int = Field(default=5, ge=1, le=20)
    PRIMARY_RETRY_MAX_DELAY: float = Field(default=30.0, gt=0, le=600.0)

    # Fan-out
    FANOUT_MAX_CONCURRENCY: int = Field(
        default=10, ge=1, le=500, description="Default worker count for fan-out"
    )

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

    @field_validator("CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, v):
        allowed = ["redis", "memory"]
        if v.lower() not in allowed:
            raise ValueError(f"CACHE_BACKEND must be one of: {allowed}")
        return v.lower()

    @field_validator("PRIMARY_BACKEND")
    @classmethod
    def validate_primary_backend(cls, v):
        allowed = ["s3", "local"]
        if v.lower() not in allowed:
            raise ValueError(f"PRIMARY_BACKEND must be one of: {allowed}")
        return v.lower()

    @field_validator("PRIMARY_KEY_PREFIX")
    @classmethod
    def normalize_key_prefix(cls, v):
        """Keys are joined as '{prefix}{id}.json'; keep a single trailing slash."""
        v = v.strip("/")
        return f"{v}/" if v else ""

    @property
    def cache_ttl_seconds(self) -> int:
        """TTL expressed in seconds."""
        return self.CACHE_TTL_DAYS * 86400


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
