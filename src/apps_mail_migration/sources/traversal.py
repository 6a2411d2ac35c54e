"""Walk local mailbox layouts and yield candidate messages."""

from __future__ import annotations

import logging
import mailbox
import re
from collections.abc import Iterator
from contextlib import closing
from datetime import datetime
from pathlib import Path

from apps_mail_migration.sources.emlx import is_emlx, read_emlx
from apps_mail_migration.sources.models import (
    AppleMailTree,
    MailSource,
    MaildirTree,
    MboxTree,
    RawMessage,
    SingleMboxFile,
    SingleMessageFile,
    Skip,
)

logger = logging.getLogger(__name__)

_HEADER_LINE_RE = re.compile(rb"^[-A-Za-z0-9]+: ")
_ENVELOPE_DATE_FORMAT = "%a %b %d %H:%M:%S %Y"

type Candidate = RawMessage | Skip


def looks_like_mail(data: bytes | None) -> bool:
    """Return True if the bytes start with an RFC822 header line."""
    return bool(data) and _HEADER_LINE_RE.match(data) is not None


def envelope_timestamp(from_line: bytes) -> datetime | None:
    """Parse the date out of an mbox `From ` envelope line.

    Args:
        from_line: Line such as `From ???@??? Mon Oct 13 07:26:26 2003`.

    Returns:
        Local-time aware datetime, or None if the line carries no usable date.
    """
    parts = from_line.decode("ascii", errors="replace").split()
    if len(parts) < 6 or parts[0] != "From":
        return None
    try:
        parsed = datetime.strptime(" ".join(parts[-5:]), _ENVELOPE_DATE_FORMAT)
    except ValueError:
        return None
    return parsed.astimezone()


def file_timestamp(path: Path) -> datetime:
    """Return the file's modification time as a local-time aware datetime."""
    return datetime.fromtimestamp(path.stat().st_mtime).astimezone()


def iter_candidates(source: MailSource) -> Iterator[Candidate]:
    """Yield candidate messages (or skips) for any mail source.

    Args:
        source: Source selected by the user.

    Yields:
        RawMessage for each message that passes the header sniff test, Skip
        for everything else.
    """
    match source:
        case SingleMboxFile(path=path):
            yield from iter_mbox_file(path)
        case MboxTree(root=root):
            yield from iter_mbox_tree(root)
        case MaildirTree(root=root):
            yield from iter_maildir_tree(root)
        case AppleMailTree(root=root):
            yield from iter_apple_mail(root)
        case SingleMessageFile(path=path):
            yield _read_message_file(path)


def iter_mbox_file(path: Path) -> Iterator[Candidate]:
    """Yield each message of a UNIX mbox container in file order.

    Args:
        path: Path to the mbox file.

    Yields:
        Candidates tagged with the file path and a 1-based ordinal.
    """
    try:
        fallback = file_timestamp(path)
        box = mailbox.mbox(path, create=False)
    except (OSError, mailbox.Error) as exc:
        yield Skip(path=path, reason=f"not a readable mbox file: {exc!r}")
        return

    with closing(box):
        try:
            keys = box.keys()
        except (OSError, mailbox.Error) as exc:
            yield Skip(path=path, reason=f"not a readable mbox file: {exc!r}")
            return
        logger.info("Opened mbox file %s (%d messages)", path, len(keys))
        if not keys:
            yield Skip(path=path, reason="no messages found; not a UNIX mbox file?")
            return

        for index, key in enumerate(keys, start=1):
            try:
                chunk = box.get_bytes(key, from_=True)
            except OSError as exc:
                yield Skip(path=path, index=index, reason=f"unreadable message: {exc!r}")
                continue

            from_line, _, data = chunk.partition(b"\n")
            if not from_line.startswith(b"From "):
                data = chunk
                from_line = b""

            if not looks_like_mail(data):
                yield Skip(path=path, index=index, reason="not a mail message")
                continue
            yield RawMessage(
                data=data,
                path=path,
                index=index,
                timestamp=envelope_timestamp(from_line.rstrip(b"\r")) or fallback,
            )


def iter_mbox_tree(root: Path) -> Iterator[Candidate]:
    """Treat every regular file under `root` as an mbox container."""
    if root.is_file():
        yield from iter_mbox_file(root)
        return
    for path in root.iterdir():
        if path.is_file():
            yield from iter_mbox_file(path)
        elif path.is_dir():
            yield from iter_mbox_tree(path)


def iter_maildir_tree(root: Path) -> Iterator[Candidate]:
    """Yield every regular file under `root` as one message."""
    for path in root.iterdir():
        if path.is_file():
            yield _read_message_file(path)
        elif path.is_dir():
            yield from iter_maildir_tree(path)


def iter_apple_mail(root: Path) -> Iterator[Candidate]:
    """Yield unwrapped `.emlx` messages directly inside an Apple Mail folder.

    Sub-folders hold per-mailbox metadata and are not visited.
    """
    for path in root.iterdir():
        if not path.is_file():
            continue
        if not is_emlx(path):
            yield Skip(path=path, reason="not an .emlx file")
            continue
        try:
            data = read_emlx(path)
            timestamp = file_timestamp(path)
        except OSError as exc:
            yield Skip(path=path, reason=f"unreadable file: {exc!r}")
            continue
        if data is None:
            yield Skip(path=path, reason="empty .emlx wrapper")
        elif not looks_like_mail(data):
            yield Skip(path=path, reason="not a mail message")
        else:
            yield RawMessage(data=data, path=path, timestamp=timestamp)


def _read_message_file(path: Path) -> Candidate:
    """Read one whole file as a candidate message."""
    try:
        data = path.read_bytes()
        timestamp = file_timestamp(path)
    except OSError as exc:
        return Skip(path=path, reason=f"unreadable file: {exc!r}")
    if not looks_like_mail(data):
        return Skip(path=path, reason="not a mail message")
    return RawMessage(data=data, path=path, timestamp=timestamp)
