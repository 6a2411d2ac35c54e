"""Mail sources and the values flowing through the upload pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from apps_mail_migration.models.types import SourceType


@dataclass(frozen=True)
class SingleMboxFile:
    """One UNIX mbox container."""

    path: Path


@dataclass(frozen=True)
class MboxTree:
    """Directory tree whose regular files are all mbox containers."""

    root: Path


@dataclass(frozen=True)
class MaildirTree:
    """Directory tree holding one message per file."""

    root: Path


@dataclass(frozen=True)
class AppleMailTree:
    """Apple Mail mailbox folder holding `.emlx` wrapped messages."""

    root: Path


@dataclass(frozen=True)
class SingleMessageFile:
    """A single RFC822 message stored in one file."""

    path: Path


type MailSource = SingleMboxFile | MboxTree | MaildirTree | AppleMailTree | SingleMessageFile


def mail_source_for(source_type: SourceType, path: Path) -> MailSource:
    """Build the MailSource variant for a user-selected type and path.

    Args:
        source_type: Layout selected on the command line.
        path: Path given on the command line.

    Returns:
        The matching MailSource.

    Raises:
        ValueError: If the path does not exist or has the wrong kind.
    """
    if not path.exists():
        raise ValueError(f"Source does not exist: {path}")

    match source_type:
        case SourceType.mbox:
            return SingleMboxFile(path) if path.is_file() else MboxTree(path)
        case SourceType.file:
            if not path.is_file():
                raise ValueError(f"Source is not a file: {path}")
            return SingleMessageFile(path)
        case SourceType.maildir:
            if not path.is_dir():
                raise ValueError(f"Source is not a directory: {path}")
            return MaildirTree(path)
        case SourceType.apple:
            if not path.is_dir():
                raise ValueError(f"Source is not a directory: {path}")
            # Apple Mail keeps the .emlx files in a Messages sub-folder.
            messages_dir = path / "Messages"
            return AppleMailTree(messages_dir if messages_dir.is_dir() else path)


@dataclass(frozen=True)
class RawMessage:
    """Candidate message bytes plus where they came from."""

    data: bytes = field(repr=False)
    path: Path
    index: int | None = None
    timestamp: datetime | None = None

    @property
    def label(self) -> str:
        """Return a human-readable location, e.g. `INBOX.mbox#3`."""
        return f"{self.path}#{self.index}" if self.index is not None else str(self.path)


@dataclass(frozen=True)
class Skip:
    """A traversal or normalization result that is not uploaded."""

    path: Path
    reason: str
    index: int | None = None

    @property
    def label(self) -> str:
        """Return a human-readable location."""
        return f"{self.path}#{self.index}" if self.index is not None else str(self.path)


@dataclass(frozen=True)
class NormalizedMessage:
    """Message bytes ready for upload."""

    data: bytes = field(repr=False)
    source: RawMessage
    rebuilt: bool = False
    repairs: tuple[str, ...] = ()
