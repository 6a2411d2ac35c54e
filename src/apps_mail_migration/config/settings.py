"""Configuration and environment settings for the migration tool."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOGIN_URL = "https://www.google.com/accounts/ClientLogin"
DEFAULT_MIGRATION_BASE_URL = "https://apps-apis.google.com/a/feeds/migration/2.0/"
DEFAULT_USER_AGENT = "Python-EmailMigrationAPI/0.1"


class ServiceSettings(BaseSettings):
    """Login and migration endpoint settings."""

    model_config = SettingsConfigDict(extra="forbid")

    login_url: Annotated[str, Field(pattern=r"^https?://")] = DEFAULT_LOGIN_URL
    migration_base_url: Annotated[str, Field(pattern=r"^https?://")] = DEFAULT_MIGRATION_BASE_URL

    account_type: Annotated[str, Field(min_length=1)] = "HOSTED"
    service: Annotated[str, Field(min_length=1)] = "apps"
    user_agent: Annotated[str, Field(min_length=1)] = DEFAULT_USER_AGENT

    max_redirects: Annotated[int, Field(ge=1, le=50)] = 10
    timeout_seconds: Annotated[float, Field(gt=0)] = 120.0
    verify_tls: bool = True
    ca_file: Path | None = None

    debug_protocol: bool = False

    @field_validator("migration_base_url")
    @classmethod
    def _base_url_trailing_slash(cls, value: str) -> str:
        """Ensure the migration base URL ends with a slash.

        Args:
            value: Raw base URL.

        Returns:
            Base URL suitable for appending `<domain>/<user>/mail/batch`.
        """
        return value if value.endswith("/") else value + "/"

    @field_validator("ca_file")
    @classmethod
    def _ca_file_must_exist(cls, value: Path | None) -> Path | None:
        """Ensure a configured CA bundle exists.

        Args:
            value: Optional path to a PEM bundle.

        Returns:
            The resolved path, or None.

        Raises:
            ValueError: If the path does not exist or is not a file.
        """
        if value is None:
            return None
        resolved = value.expanduser().resolve()
        if not resolved.is_file():
            raise ValueError(f"ca_file is not a file: {resolved}")
        return resolved


class UploadSettings(BaseSettings):
    """Retry, throttling and labelling settings for uploads."""

    model_config = SettingsConfigDict(extra="forbid")

    max_attempts: Annotated[int, Field(ge=1, le=20)] = 5
    retry_backoff_seconds: Annotated[float, Field(ge=0)] = 30.0
    throttle_seconds: Annotated[float, Field(ge=0)] = 0.5
    default_label: Annotated[str, Field(min_length=1)] = "Migrated-POP"
    default_recipient: Annotated[str, Field(pattern=r".+@.+")] = "unknown@unknown.com"
    placeholder_domain: Annotated[str, Field(min_length=1)] = "unknown.com"


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "INFO"
    json_logs: bool = False


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MAILMIG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(*, env_file: Path | None) -> AppSettings:
    """Load validated settings from environment and optional file.

    Args:
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]
