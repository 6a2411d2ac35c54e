"""Logging setup for CLI runs, with secrets kept out of log output."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from apps_mail_migration.config.settings import LoggingSettings

PROTOCOL_LOGGER = "apps_mail_migration.transport"
REDACTED = "<redacted>"

_SECRET_NAMES = frozenset({"authorization", "passwd", "password", "token"})

_RESERVED_LOG_RECORD_KEYS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__,
) | {"message", "asctime"}


def redact_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Return header pairs with credential values masked.

    Args:
        headers: (name, value) pairs, e.g. `request.headers.items()`.

    Returns:
        The same pairs, with Authorization-like values replaced.
    """
    return [(name, REDACTED if name.lower() in _SECRET_NAMES else value) for name, value in headers]


def _json_field(key: str, value: object) -> Any:
    """Make an extra record field safe to emit as JSON."""
    if key.lower() in _SECRET_NAMES:
        return REDACTED
    try:
        json.dumps(value)
    except TypeError:
        return str(value)
    return value


class JsonLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Extra fields passed via `extra=` are included, except that values
        under credential-like keys are masked.

        Args:
            record: Log record to format.

        Returns:
            JSON string representation.
        """
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, _json_field(key, value))
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_KEYS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def configure_logging(*, settings: LoggingSettings, debug_protocol: bool = False) -> None:
    """Configure stderr logging for CLI runs.

    Args:
        settings: Logging settings (level and JSON/human output).
        debug_protocol: Also show HTTP request/response dumps, whatever the level.
    """
    level = logging.getLevelNamesMapping().get(settings.level.strip().upper(), logging.INFO)

    handler = logging.StreamHandler()
    if settings.json_logs:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ),
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)

    logging.getLogger(PROTOCOL_LOGGER).setLevel(logging.DEBUG if debug_protocol else logging.NOTSET)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
