"""Runtime configuration from environment variables."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with SANDBOX_PERSIST_ prefix.
    Example: SANDBOX_PERSIST_S3_BUCKET=chat-snapshots
    """

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_PERSIST_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Object store
    s3_bucket: str | None = None  # required for any store operation
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None  # Custom S3 endpoint (MinIO, tests)
    s3_access_key_id: str | None = None  # None = default boto credential chain
    s3_secret_access_key: str | None = None

    # Cloudflare R2: derives endpoint_url and region when set
    r2_account_id: str | None = None

    @property
    def effective_endpoint_url(self) -> str | None:
        if self.s3_endpoint_url:
            return self.s3_endpoint_url
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None

    @property
    def effective_region(self) -> str:
        # R2 only accepts "auto"
        if self.r2_account_id and not self.s3_endpoint_url:
            return "auto"
        return self.s3_region
