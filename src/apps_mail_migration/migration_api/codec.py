"""Atom batch feed encoding and decoding for the migration endpoint."""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

import httpx

from apps_mail_migration.models.types import MailItemProperty

logger = logging.getLogger(__name__)

NS_ATOM = "http://www.w3.org/2005/Atom"
NS_APPS = "http://schemas.google.com/apps/2006"
NS_BATCH = "http://schemas.google.com/gdata/batch"

KIND_SCHEME = "http://schemas.google.com/g/2005#kind"
MAIL_ITEM_TERM = "http://schemas.google.com/apps/2006#mailItem"

FEED_CONTENT_TYPE = "application/atom+xml"

_NAMESPACES = {"atom": NS_ATOM, "apps": NS_APPS, "batch": NS_BATCH}

for _prefix, _uri in _NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)


class ProtocolError(RuntimeError):
    """Raised when a response body is not a decodable batch feed."""


@dataclass(frozen=True)
class BatchEntry:
    """One mail item in a batch request."""

    batch_id: int
    rfc822: bytes
    properties: tuple[MailItemProperty, ...] = ()
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class ItemStatus:
    """Outcome reported for one batch entry (or for the whole request)."""

    code: int
    message: str
    message_id: str | None = None

    @property
    def created(self) -> bool:
        """Return True when the item was migrated."""
        return self.code == 201


@dataclass(frozen=True)
class BatchResult:
    """Decoded batch response: request-level status plus per-item statuses."""

    request: ItemStatus
    items: dict[int, ItemStatus] = field(default_factory=dict)

    def get(self, batch_id: int) -> ItemStatus | None:
        """Return the status for a batch id, if the server reported one."""
        return self.items.get(batch_id)


def _tag(prefix: str, name: str) -> str:
    return f"{{{_NAMESPACES[prefix]}}}{name}"


def build_entries(
    messages: Iterable[bytes],
    *,
    properties: Sequence[MailItemProperty] = (),
    labels: Sequence[str] = (),
) -> list[BatchEntry]:
    """Number messages densely from 1 and attach shared properties/labels.

    Args:
        messages: Raw RFC822 payloads.
        properties: Property markers applied to every entry.
        labels: Label names applied to every entry.

    Returns:
        Batch entries with ids 1..n.
    """
    return [
        BatchEntry(batch_id=idx, rfc822=raw, properties=tuple(properties), labels=tuple(labels))
        for idx, raw in enumerate(messages, start=1)
    ]


def encode_feed(entries: Sequence[BatchEntry]) -> bytes:
    """Encode batch entries as an Atom feed document.

    Args:
        entries: Entries to encode; ids must be unique.

    Returns:
        UTF-8 XML document bytes, including the XML declaration.

    Raises:
        ValueError: If batch ids are duplicated.
    """
    ids = [entry.batch_id for entry in entries]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Duplicate batch ids in feed: {ids!r}")

    feed = ET.Element(_tag("atom", "feed"))
    for entry in entries:
        node = ET.SubElement(feed, _tag("atom", "entry"))
        ET.SubElement(
            node,
            _tag("atom", "category"),
            {"scheme": KIND_SCHEME, "term": MAIL_ITEM_TERM},
        )
        msg = ET.SubElement(node, _tag("apps", "rfc822Msg"), {"encoding": "base64"})
        msg.text = base64.b64encode(entry.rfc822).decode("ascii")
        for prop in entry.properties:
            ET.SubElement(node, _tag("apps", "mailItemProperty"), {"value": str(prop)})
        for label in entry.labels:
            ET.SubElement(node, _tag("apps", "label"), {"labelName": label})
        ET.SubElement(node, _tag("batch", "id")).text = str(entry.batch_id)

    return ET.tostring(feed, encoding="utf-8", xml_declaration=True)


def decode_entries(document: bytes) -> list[BatchEntry]:
    """Parse an encoded request feed back into entries.

    Args:
        document: Feed produced by `encode_feed`.

    Returns:
        Entries in document order.

    Raises:
        ProtocolError: If the document is not a feed of mail items.
    """
    root = _parse(document)
    out: list[BatchEntry] = []
    for node in root.iterfind("atom:entry", _NAMESPACES):
        batch_id = node.findtext("batch:id", namespaces=_NAMESPACES)
        payload = node.findtext("apps:rfc822Msg", namespaces=_NAMESPACES)
        if batch_id is None or payload is None:
            raise ProtocolError("Feed entry lacks batch:id or apps:rfc822Msg")
        out.append(
            BatchEntry(
                batch_id=int(batch_id),
                rfc822=base64.b64decode(payload),
                properties=tuple(
                    MailItemProperty(prop.get("value", ""))
                    for prop in node.iterfind("apps:mailItemProperty", _NAMESPACES)
                ),
                labels=tuple(
                    label.get("labelName", "")
                    for label in node.iterfind("apps:label", _NAMESPACES)
                ),
            ),
        )
    return out


def request_status(response: httpx.Response) -> ItemStatus:
    """Return the request-level status taken from the HTTP status line."""
    return ItemStatus(code=response.status_code, message=response.reason_phrase)


def decode_response(response: httpx.Response) -> BatchResult:
    """Decode a batch response into per-item statuses.

    Args:
        response: HTTP response to the batch POST.

    Returns:
        BatchResult keyed by batch id.

    Raises:
        ProtocolError: If the body cannot be parsed as a feed.
    """
    root = _parse(response.content)
    items: dict[int, ItemStatus] = {}
    for entry in root.iterfind("atom:entry", _NAMESPACES):
        batch_id = entry.findtext("batch:id", namespaces=_NAMESPACES)
        status = entry.find("batch:status", _NAMESPACES)
        # Entries without batch markup are ordinary feed content.
        if batch_id is None or status is None:
            continue
        try:
            key = int(batch_id.strip())
            code = int(status.get("code", ""))
        except ValueError as exc:
            raise ProtocolError(f"Malformed batch entry (id={batch_id!r}): {exc}") from exc
        items[key] = ItemStatus(
            code=code,
            message=status.get("reason", ""),
            message_id=entry.findtext("atom:id", namespaces=_NAMESPACES),
        )
    return BatchResult(request=request_status(response), items=items)


def _parse(document: bytes) -> ET.Element:
    """Parse an XML document, mapping syntax errors to ProtocolError."""
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise ProtocolError(f"Response is not an XML document: {exc}") from exc
    if root.tag != _tag("atom", "feed"):
        raise ProtocolError(f"Expected an Atom feed, got {root.tag!r}")
    return root
