"""Best-effort header repair for messages the server would reject."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from email import errors, policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.headerregistry import Address
from email.utils import format_datetime

from apps_mail_migration.sources.models import NormalizedMessage, RawMessage
from apps_mail_migration.utils.email import (
    extract_email_addresses,
    parse_address_list,
    placeholder_address,
)

logger = logging.getLogger(__name__)

_HEADER_BODY_SPLIT_RE = re.compile(rb"\r?\n\r?\n")
_RAW_TO_RE = re.compile(rb"^To: (.+?)\r?$", re.MULTILINE)
_HTML_START_RE = re.compile(rb"^\s*<html[\s>]", re.IGNORECASE)


class MalformedMessageError(RuntimeError):
    """Raised when a candidate cannot be turned into an uploadable message."""


class MessageNormalizer:
    """Synthesize missing To/From/Date headers and fix HTML content types.

    Messages that need no repair are passed through byte-for-byte; repaired
    messages are re-serialized from the parsed structure.
    """

    def __init__(
        self,
        *,
        default_sender: str,
        default_recipient: str = "unknown@unknown.com",
        placeholder_domain: str = "unknown.com",
    ) -> None:
        """Initialize the normalizer.

        Args:
            default_sender: From address used when a message has none.
            default_recipient: To address used when no To line exists at all.
            placeholder_domain: Domain for addresses synthesized from bad text.
        """
        self._default_sender = default_sender
        self._default_recipient = default_recipient
        self._placeholder_domain = placeholder_domain

    def normalize(self, raw: RawMessage) -> NormalizedMessage:
        """Repair a raw message if needed.

        Args:
            raw: Candidate message from traversal.

        Returns:
            NormalizedMessage, flagged `rebuilt` if any repair happened.

        Raises:
            MalformedMessageError: If the message cannot be parsed or re-serialized.
        """
        try:
            msg = BytesParser(policy=policy.default).parsebytes(raw.data)
            repairs = self._repair(msg, raw)
            if not repairs:
                return NormalizedMessage(data=raw.data, source=raw)
            data = msg.as_bytes()
        except (errors.MessageError, ValueError, TypeError, LookupError) as exc:
            raise MalformedMessageError(f"Could not parse mail message {raw.label}: {exc!r}") from exc

        return NormalizedMessage(data=data, source=raw, rebuilt=True, repairs=tuple(repairs))

    def _repair(self, msg: EmailMessage, raw: RawMessage) -> list[str]:
        """Apply header repairs in place and return their names."""
        repairs: list[str] = []

        if not _has_addresses(msg, "To", strict=True):
            recipients = self._recover_recipients(raw.data)
            del msg["To"]
            msg["To"] = recipients
            logger.info("Patching To addresses for %s: %s", raw.label, msg["To"])
            repairs.append("to")

        if not _has_addresses(msg, "From"):
            del msg["From"]
            msg["From"] = self._default_sender
            logger.info("Patching From address for %s: %s", raw.label, self._default_sender)
            repairs.append("from")

        date_header = msg.get("Date")
        if date_header is None or getattr(date_header, "datetime", None) is None:
            # Some exporters keep the date only in the mbox envelope line.
            when = raw.timestamp or datetime.now().astimezone()
            del msg["Date"]
            msg["Date"] = format_datetime(when)
            logger.info("Patching Date for %s: %s", raw.label, msg["Date"])
            repairs.append("date")

        if _needs_html_content_type(msg):
            msg.set_type("text/html")
            logger.info("Patching content type for %s: text/html", raw.label)
            repairs.append("content_type")

        return repairs

    def _recover_recipients(self, data: bytes) -> list[Address]:
        """Read recipients from the raw `To:` line, or fall back to a placeholder.

        Args:
            data: Raw message bytes.

        Returns:
            Addresses for a rebuilt To header; quoting and encoding of display
            names is left to the email policy.
        """
        match = _HEADER_BODY_SPLIT_RE.search(data)
        header_block = data[: match.start()] if match else data
        to_line = _RAW_TO_RE.search(header_block)
        if to_line is not None:
            text = _decode_header_bytes(to_line.group(1))
            pairs = parse_address_list(text, placeholder_domain=self._placeholder_domain)
            if pairs:
                return [self._address(name, addr) for name, addr in pairs]
        return [Address(addr_spec=self._default_recipient)]

    def _address(self, name: str, addr: str) -> Address:
        """Build an Address, replacing an addr-spec the policy refuses."""
        try:
            return Address(display_name=name, addr_spec=addr)
        except (errors.HeaderDefect, ValueError, IndexError):
            fake = placeholder_address(name or addr, domain=self._placeholder_domain)
            logger.warning("Unusable address %r; using %s", addr, fake)
            return Address(display_name=name or addr, addr_spec=fake)


def _decode_header_bytes(value: bytes) -> str:
    """Decode raw header bytes as UTF-8, falling back to Latin-1."""
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


def _has_addresses(msg: EmailMessage, name: str, *, strict: bool = False) -> bool:
    """Return True if an address header is present and usable.

    Args:
        msg: Parsed message.
        name: Header name, e.g. "To".
        strict: Also reject headers the parser flagged as invalid, even when
            some addresses could be read from them.

    Returns:
        False when the header is absent, unparseable or holds no address.
    """
    try:
        value = msg.get(name)
        text = None if value is None else str(value)
    except (errors.HeaderDefect, ValueError, IndexError) as exc:
        # Some malformed values crash the stdlib header parser.
        logger.debug("Cannot parse %s header: %r", name, exc)
        return False
    if value is None:
        return False
    if strict and any(
        isinstance(d, errors.InvalidHeaderDefect) for d in getattr(value, "defects", ())
    ):
        return False
    return bool(extract_email_addresses(text))


def _needs_html_content_type(msg: EmailMessage) -> bool:
    """Return True for a non-HTML single-part message whose body is an HTML page."""
    if msg.is_multipart() or "html" in msg.get_content_type():
        return False
    body = msg.get_payload(decode=True)
    return isinstance(body, bytes) and _HTML_START_RE.match(body) is not None
