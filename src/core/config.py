"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: PostgresDsn = Field(
        default=...,
        description="PostgreSQL connection URL with asyncpg driver",
    )
    database_pool_size: int = Field(
        default=5,
        ge=1,
        description="Connections kept open in the pool",
    )
    database_max_overflow: int = Field(
        default=10,
        ge=0,
        description="Extra connections allowed under load",
    )

    # MinIO (S3-compatible blob store for ciphertext)
    minio_endpoint: str = Field(
        default=...,
        description="MinIO server endpoint (host:port)",
    )
    minio_access_key: str = Field(
        default=...,
        description="MinIO access key",
    )
    minio_secret_key: str = Field(
        default=...,
        description="MinIO secret key",
    )
    minio_bucket: str = Field(
        default="medvault-records",
        description="MinIO bucket for storing encrypted records",
    )
    minio_secure: bool = Field(
        default=False,
        description="Use HTTPS for MinIO connections",
    )

    # Key service (seal / reseal)
    key_service_url: str = Field(
        default=...,
        description="Base URL of the threshold key service",
    )
    key_service_api_key: str = Field(
        default=...,
        description="Bearer token for the key service",
    )
    key_service_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-call deadline for key service requests",
    )
    key_service_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per key service call before giving up",
    )

    # Gateway credentials
    api_key_hash_secret: str = Field(
        default="medvault-api-key-hash-v1",
        min_length=16,
        description="HMAC secret for stored API key hashes (rotating it voids all keys)",
    )

    # Access control
    policy_update_max_retries: int = Field(
        default=5,
        ge=1,
        description="Compare-and-set attempts for a record policy update",
    )
    min_purpose_length: int = Field(
        default=10,
        ge=1,
        description="Minimum length of an access request purpose",
    )
    transfer_request_ttl_days: int = Field(
        default=30,
        ge=1,
        description="Days until a transfer request expires",
    )

    # Identity registry cache
    identity_cache_ttl_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Principal lookup cache TTL (0 disables caching)",
    )
    identity_cache_max_entries: int = Field(
        default=1024,
        ge=1,
        description="Maximum cached principal lookups",
    )

    # Application
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment",
    )
    app_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    app_log_format: Literal["json", "text"] = Field(
        default="json",
        description="json for log shippers, text for local development",
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # File upload
    max_upload_size: int = Field(
        default=104857600,  # 100MB
        description="Maximum upload file size in bytes",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    return Settings()
