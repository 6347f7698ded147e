"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Storage backend selection happens here too: when both the bucket name and
the project id are set, uploads go to cloud object storage; otherwise they
are written to the local uploads directory and served from /uploads.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.media.models import StorageMode
from ..infrastructure.storage.client import StorageConfig, is_google_key_file


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "Association Media API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated admin API keys. Using a list enables key rotation without downtime."
    )

    # Cloud Storage Configuration
    gcs_bucket_name: str = Field(
        default="",
        description="Bucket for uploaded files. Cloud mode needs this and GCS_PROJECT_ID."
    )
    gcs_project_id: str = Field(
        default="",
        description="Project that owns the bucket"
    )
    gcs_key_file: Optional[str] = Field(
        default=None,
        description="Path to a credentials file for the storage client"
    )
    google_application_credentials: Optional[str] = Field(
        default=None,
        description="Fallback credentials file path when GCS_KEY_FILE is not set"
    )
    gcs_hmac_access_key_id: Optional[str] = Field(
        default=None,
        description="HMAC interoperability access key. Takes precedence over the credentials file."
    )
    gcs_hmac_secret: Optional[str] = Field(
        default=None,
        description="HMAC interoperability secret"
    )
    gcs_endpoint_url: str = Field(
        default="https://storage.googleapis.com",
        description="S3-compatible endpoint of the object store"
    )
    gcs_public_base_url: str = Field(
        default="https://storage.googleapis.com",
        description="Base of unsigned public object URLs (used when signing fails)"
    )
    signed_url_expiry_seconds: int = Field(
        default=3600,
        description="Lifetime of signed read URLs. One hour covers a page view comfortably."
    )
    upload_cache_control: str = Field(
        default="public, max-age=31536000",
        description="Cache-Control stored on uploaded objects. Keys are never reused, so a year is safe."
    )

    # Local Storage Configuration
    uploads_dir: str = Field(
        default="uploads",
        description="Directory for local-mode uploads, relative to the working directory"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

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
    def storage_mode(self) -> StorageMode:
        """Cloud only when both the bucket and the project are configured."""
        if self.gcs_bucket_name and self.gcs_project_id:
            return StorageMode.CLOUD
        return StorageMode.LOCAL

    @property
    def credentials_file(self) -> Optional[str]:
        return self.gcs_key_file or self.google_application_credentials or None

    def storage_config(self) -> StorageConfig:
        """Build the storage configuration the gateway is created from."""
        return StorageConfig(
            bucket_name=self.gcs_bucket_name or None,
            project_id=self.gcs_project_id or None,
            credentials_file=self.credentials_file,
            access_key_id=self.gcs_hmac_access_key_id,
            secret_access_key=self.gcs_hmac_secret,
            endpoint_url=self.gcs_endpoint_url,
            public_base_url=self.gcs_public_base_url,
            uploads_dir=Path(self.uploads_dir),
            signed_url_expiry_seconds=self.signed_url_expiry_seconds,
            cache_control=self.upload_cache_control,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set for the selected storage mode.

        Returns list of missing or inconsistent settings.
        This is separate from Pydantic validation because requirements
        depend on which backend is active.
        """
        missing = []

        if not self.api_keys_list:
            missing.append("API_KEYS")

        # Exactly one of the pair set
        if bool(self.gcs_bucket_name) != bool(self.gcs_project_id):
            missing.append("GCS_PROJECT_ID" if self.gcs_bucket_name else "GCS_BUCKET_NAME")

        if self.storage_mode is StorageMode.CLOUD:
            if bool(self.gcs_hmac_access_key_id) != bool(self.gcs_hmac_secret):
                missing.append("GCS_HMAC_ACCESS_KEY_ID and GCS_HMAC_SECRET")
            if self.credentials_file and not Path(self.credentials_file).exists():
                missing.append(f"credentials file {self.credentials_file}")
            elif (
                self.credentials_file
                and not (self.gcs_hmac_access_key_id and self.gcs_hmac_secret)
                and is_google_key_file(self.credentials_file)
            ):
                # JSON key files cannot sign S3-compatible requests
                missing.append("GCS_HMAC_ACCESS_KEY_ID and GCS_HMAC_SECRET (JSON key file cannot sign)")

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
