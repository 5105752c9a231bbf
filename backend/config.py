"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """AssetVault server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/assetvault.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Rate limits (requests per window, keyed by API key)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    rate_limit_manifest: int = Field(default=120, ge=1)
    rate_limit_sync_report: int = Field(default=120, ge=1)
    rate_limit_content_read: int = Field(default=60, ge=1)
    rate_limit_content_write: int = Field(default=30, ge=1)
    rate_limit_whoami: int = Field(default=60, ge=1)
    rate_limit_create_asset: int = Field(default=20, ge=1)
    rate_limit_register: int = Field(default=10, ge=1)
    rate_limit_register_window_seconds: int = Field(default=300, ge=1)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        if not self.trusted_hosts:
            raise ValueError(
                "Insecure production configuration: TRUSTED_HOSTS must be configured in production"
            )
