"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Settings are only read at the edges. The core receives the immutable
Credentials and OffloadConfig values built from them here.

Mock mode enables local development without an R2 bucket.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.media.models import (
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    Credentials,
    OffloadConfig,
    SyncMode,
    UploadMode,
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "R2 Media Offload API"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
    )

    # R2 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="",
        description="R2 bucket holding offloaded media"
    )
    r2_public_url: Optional[str] = Field(
        default=None,
        description="Custom public base URL (CDN domain). Without it, path-style endpoint URLs are used."
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Offload Policy
    upload_mode: UploadMode = Field(
        default=UploadMode.ALL_SIZES,
        description="full_only uploads just the original file, all_sizes also uploads image variants"
    )
    delete_local_after_upload: bool = Field(
        default=False,
        description="Remove local files once their upload succeeded. Saves disk, but R2 becomes the only copy."
    )
    enable_url_rewrite: bool = Field(
        default=True,
        description="Serve media URLs from R2 instead of the local uploads directory"
    )
    auto_offload: bool = Field(
        default=True,
        description="Upload new media as soon as it is ingested"
    )

    # Media Library
    uploads_base_url: str = Field(
        default="http://localhost:8000/uploads",
        description="Public URL of the local uploads directory. Content rewriting only touches URLs under it."
    )
    uploads_dir: str = Field(
        default="./uploads",
        description="Local uploads directory. Relative record paths are resolved against it."
    )

    # Bulk Sync
    sync_default_batch_size: int = Field(
        default=10,
        description="Records per batch when the client doesn't say. Clamped to 1..50."
    )
    sync_batch_delay_ms: int = Field(
        default=500,
        description="Pause between batches for the client loop. Clamped to 100..5000 ms."
    )
    auto_sync_enabled: bool = Field(
        default=False,
        description="Allow the scheduled sync endpoint to run"
    )
    auto_sync_batch_size: int = Field(
        default=10,
        description="Records per scheduled sync run. Clamped to 1..50."
    )
    auto_sync_mode: SyncMode = Field(
        default=SyncMode.FULL,
        description="Sync mode of scheduled runs"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("sync_default_batch_size", "auto_sync_batch_size")
    @classmethod
    def clamp_batch_size(cls, value: int) -> int:
        return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, value))

    @field_validator("sync_batch_delay_ms")
    @classmethod
    def clamp_batch_delay(cls, value: int) -> int:
        return max(100, min(5000, value))

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def credentials(self) -> Credentials:
        return Credentials(
            account_id=self.r2_account_id,
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            custom_public_base_url=self.r2_public_url or None,
            endpoint_url=self.r2_endpoint_url or None,
        )

    @property
    def offload_config(self) -> OffloadConfig:
        return OffloadConfig(
            upload_mode=self.upload_mode,
            delete_local_after_upload=self.delete_local_after_upload,
            enable_url_rewrite=self.enable_url_rewrite,
            auto_offload=self.auto_offload,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because the app should
        still start without credentials: the health and status endpoints
        are how an operator finds out what is missing.
        """
        missing = []

        # R2 only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id:
                missing.append("R2_ACCOUNT_ID")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")
            if not self.r2_bucket_name:
                missing.append("R2_BUCKET_NAME")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
