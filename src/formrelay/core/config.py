"""
Configuration management for formrelay.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketoSettings(BaseSettings):
    """Marketo instance and REST credentials."""

    model_config = SettingsConfigDict(
        env_prefix="MARKETO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = ""
    client_id: str | None = None
    client_secret: SecretStr | None = None

    # Asset folder that receives uploaded files
    upload_folder: int = 99

    # Lead field that stores the uploaded file names
    lead_field: str = "fVuploadedfiles"
    lookup_field: str = "email"

    request_timeout: float = 30.0

    # Refresh the token this many seconds before Marketo expires it
    token_expiry_margin: float = 60.0

    @field_validator("host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_configured(self) -> bool:
        """Check if Marketo credentials are present."""
        return bool(self.host and self.client_id and self.client_secret)


class RelaySettings(BaseSettings):
    """Upload relay and admission queue settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORMRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Admission queue
    concurrency: int = Field(default=3, ge=1)
    max_pending: int | None = Field(default=100, ge=1)
    task_timeout: float | None = Field(default=120.0, gt=0)

    # Upload limits
    max_files: int = Field(default=3, ge=1)
    max_file_size: int = 10 * 1024 * 1024
    allowed_extensions: list[str] = Field(
        default_factory=lambda: [".png", ".pdf", ".jpeg", ".jpg"]
    )

    # Retries for token and lead calls
    max_retries: int = 3
    retry_delay: float = 1.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v


class ServerSettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORMRELAY_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 3000
    workers: int = 1
    reload: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Relay base URL used by the upload client
    public_url: str = "http://localhost:3000"


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    marketo: MarketoSettings = Field(default_factory=MarketoSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    # Environment
    environment: str = "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
