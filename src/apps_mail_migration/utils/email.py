"""Email address parsing helpers used when repairing headers."""

from __future__ import annotations

import logging
import re
from email.utils import getaddresses, parseaddr

logger = logging.getLogger(__name__)

_ADDR_SPEC_RE = re.compile(r"^[^@\s<>()\[\],;:\"]+@[^@\s<>()\[\],;:\"]+$")
_EDGE_QUOTES_RE = re.compile(r"^['\"]|['\"]$")
_PLACEHOLDER_UNSAFE_RE = re.compile(r"[^a-z0-9_]+")


class AddressParseError(ValueError):
    """Raised when text cannot be read as a single mailbox address."""


def extract_email_addresses(value: str | None) -> set[str]:
    """Extract normalized email addresses from a header value.

    Args:
        value: Raw header value, potentially including display names.

    Returns:
        A set of lowercased addresses that contain an `@`.
    """
    if not value:
        return set()
    return {
        addr.strip().lower()
        for _, addr in getaddresses([value])
        if addr and "@" in addr and addr.strip()
    }


def parse_address(text: str) -> tuple[str, str]:
    """Parse one mailbox such as `Name <user@host>` or `user@host`.

    Args:
        text: Address text.

    Returns:
        (display name, addr-spec) pair.

    Raises:
        AddressParseError: If the text is not a well-formed single address.
    """
    if text.count("<") != text.count(">"):
        raise AddressParseError(f"Unbalanced angle brackets: {text!r}")
    name, addr = parseaddr(text)
    if not addr or not _ADDR_SPEC_RE.match(addr):
        raise AddressParseError(f"Not an address: {text!r}")
    return name, addr


def placeholder_address(text: str, *, domain: str) -> str:
    """Build a syntactically valid stand-in address from arbitrary text.

    Args:
        text: Unparseable address text, e.g. `Bad Name <not an address`.
        domain: Domain for the synthesized address.

    Returns:
        Address such as `bad.name.not.an.address@unknown.com`.
    """
    local = _PLACEHOLDER_UNSAFE_RE.sub(".", text.lower()).strip(".")
    return f"{local or 'unknown'}@{domain}"


def parse_address_list(value: str, *, placeholder_domain: str) -> list[tuple[str, str]]:
    """Permissively parse a semicolon-separated recipient list.

    Entries that fail to parse are kept as a placeholder address whose
    display name is the original text.

    Args:
        value: Raw list such as `a@b.com; "Bob" <bob@c.com>`.
        placeholder_domain: Domain used for synthesized addresses.

    Returns:
        (display name, addr-spec) pairs in input order.
    """
    out: list[tuple[str, str]] = []
    for part in value.split(";"):
        text = _EDGE_QUOTES_RE.sub("", part.strip())
        if not text:
            continue
        try:
            out.append(parse_address(text))
        except AddressParseError:
            fake = placeholder_address(text, domain=placeholder_domain)
            logger.warning("Cannot parse address %r; using %s", text, fake)
            out.append((text, fake))
    return out
