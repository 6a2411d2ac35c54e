"""Validated domain models (Pydantic)."""

from __future__ import annotations

from apps_mail_migration.models.types import (
    MailItemProperty,
    Placement,
    RunOptions,
    SourceType,
    SummaryReport,
    UploadState,
)

__all__ = [
    "MailItemProperty",
    "Placement",
    "RunOptions",
    "SourceType",
    "SummaryReport",
    "UploadState",
]
