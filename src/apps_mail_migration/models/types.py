"""Shared enums and lightweight Pydantic models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import Field

from apps_mail_migration.models.base import AppModel


class SourceType(StrEnum):
    """Supported local mailbox layouts."""

    apple = "apple"
    maildir = "maildir"
    mbox = "mbox"
    file = "file"


class Placement(StrEnum):
    """Mutually exclusive destination folders for migrated mail."""

    inbox = "inbox"
    sent = "sent"
    draft = "draft"
    trash = "trash"


class MailItemProperty(StrEnum):
    """Property markers understood by the migration feed."""

    is_draft = "IS_DRAFT"
    is_inbox = "IS_INBOX"
    is_sent = "IS_SENT"
    is_trash = "IS_TRASH"
    is_starred = "IS_STARRED"
    is_unread = "IS_UNREAD"


PLACEMENT_PROPERTIES: dict[Placement, MailItemProperty] = {
    Placement.inbox: MailItemProperty.is_inbox,
    Placement.sent: MailItemProperty.is_sent,
    Placement.draft: MailItemProperty.is_draft,
    Placement.trash: MailItemProperty.is_trash,
}


class UploadState(StrEnum):
    """Per-message upload lifecycle."""

    pending = "pending"
    submitted = "submitted"
    retrying = "retrying"
    success = "success"
    rejected = "rejected"


class SummaryReport(AppModel):
    """Summarized migration report emitted by the CLI."""

    created_at: datetime
    source: str
    dry_run: bool = False
    uploaded: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    retries: int = Field(default=0, ge=0)


def collect_properties(
    *,
    placements: list[Placement],
    starred: bool = False,
    unread: bool = False,
) -> list[MailItemProperty]:
    """Build the property list for an upload session.

    Only one placement is sent; when several were requested the last one wins.

    Args:
        placements: Placements in the order they were requested.
        starred: Whether to star migrated messages.
        unread: Whether to mark migrated messages unread.

    Returns:
        Property markers, placement last.
    """
    props: list[MailItemProperty] = []
    if starred:
        props.append(MailItemProperty.is_starred)
    if unread:
        props.append(MailItemProperty.is_unread)
    if placements:
        props.append(PLACEMENT_PROPERTIES[placements[-1]])
    return props


def collect_labels(default_label: str, extra: list[str] | None = None) -> list[str]:
    """Return the default label followed by extra labels, without duplicates."""
    labels: list[str] = []
    for label in [default_label, *(extra or [])]:
        stripped = label.strip()
        if stripped and stripped not in labels:
            labels.append(stripped)
    return labels


class RunOptions(AppModel):
    """Validated per-run choices collected from the command line."""

    domain: str = Field(min_length=1, pattern=r"^[^@\s/]+$")
    admin_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+$")
    user: str = Field(min_length=1, pattern=r"^[^@\s/]+$")
    source: Path
    source_type: SourceType = SourceType.apple
    sender: str = Field(pattern=r"^.+@.+$")
    properties: tuple[MailItemProperty, ...] = ()
    labels: tuple[str, ...] = ()
    dry_run: bool = False

    @property
    def target(self) -> str:
        """Return the target mailbox address."""
        return f"{self.user}@{self.domain}"
