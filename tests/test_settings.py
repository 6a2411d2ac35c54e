"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from apps_mail_migration.config.settings import (
    DEFAULT_LOGIN_URL,
    DEFAULT_MIGRATION_BASE_URL,
    ServiceSettings,
    load_settings,
)


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)


def test_defaults() -> None:
    """Out of the box the tool targets the hosted endpoints with fixed retry policy."""
    settings = load_settings(env_file=None)
    assert settings.service.login_url == DEFAULT_LOGIN_URL
    assert settings.service.migration_base_url == DEFAULT_MIGRATION_BASE_URL
    assert settings.service.account_type == "HOSTED"
    assert settings.upload.max_attempts == 5
    assert settings.upload.retry_backoff_seconds == 30.0
    assert settings.upload.throttle_seconds == 0.5
    assert settings.upload.default_label == "Migrated-POP"


def test_nested_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Nested values are read from MAILMIG_<SECTION>__<FIELD>."""
    monkeypatch.setenv("MAILMIG_UPLOAD__MAX_ATTEMPTS", "3")
    monkeypatch.setenv("MAILMIG_SERVICE__MIGRATION_BASE_URL", "https://migration.test/feeds")
    settings = load_settings(env_file=None)
    assert settings.upload.max_attempts == 3
    assert settings.service.migration_base_url == "https://migration.test/feeds/"


def test_env_file(tmp_path: Path) -> None:
    """Values can come from an explicit .env file."""
    env_file = tmp_path / "custom.env"
    env_file.write_text("MAILMIG_LOGGING__LEVEL=DEBUG\n", encoding="utf-8")
    assert load_settings(env_file=env_file).logging.level == "DEBUG"


def test_missing_ca_file_is_rejected(tmp_path: Path) -> None:
    """A configured CA bundle must exist."""
    with pytest.raises(ValidationError):
        ServiceSettings(ca_file=tmp_path / "missing.pem")
