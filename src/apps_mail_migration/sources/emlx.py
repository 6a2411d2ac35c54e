"""Apple Mail `.emlx` wrapper handling."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

EMLX_SUFFIX = ".emlx"


def is_emlx(path: Path) -> bool:
    """Return True for `.emlx` (and `.partial.emlx`) files."""
    return path.name.lower().endswith(EMLX_SUFFIX)


def unwrap_emlx_bytes(data: bytes) -> bytes | None:
    """Extract the RFC822 message from `.emlx` wrapper bytes.

    The wrapper is a decimal byte count on the first line, followed by that
    many bytes of message, followed by a plist of metadata.

    Args:
        data: Whole wrapper file contents.

    Returns:
        The message bytes, or None when the length line is zero or unreadable.
    """
    first_line, sep, rest = data.partition(b"\n")
    if not sep:
        return None
    try:
        size = int(first_line.strip())
    except ValueError:
        return None
    if size <= 0:
        return None
    return rest[:size]


def read_emlx(path: Path) -> bytes | None:
    """Read an `.emlx` file and return the wrapped message, if any.

    Args:
        path: Path to the wrapper file.

    Returns:
        The message bytes, or None if the file wraps no message.
    """
    with path.open("rb") as handle:
        data = handle.read()
    message = unwrap_emlx_bytes(data)
    if message is None:
        logger.debug("No message length in %s", path)
    return message
