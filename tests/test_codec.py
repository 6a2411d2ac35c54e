"""Tests for the batch feed codec and migration client."""

from __future__ import annotations

import base64
from xml.etree import ElementTree as ET

import httpx
import pytest

from apps_mail_migration.migration_api.client import MigrationClient
from apps_mail_migration.migration_api.codec import (
    NS_APPS,
    NS_ATOM,
    NS_BATCH,
    BatchEntry,
    ProtocolError,
    build_entries,
    decode_entries,
    decode_response,
    encode_feed,
)
from apps_mail_migration.models.types import MailItemProperty
from apps_mail_migration.transport.connection import Transport

MSG_A = b"From: a@example.com\r\nTo: b@example.com\r\nSubject: A\r\n\r\nHello"
MSG_B = b"From: c@example.com\r\nTo: d@example.com\r\nSubject: B\r\n\r\nWorld"


def _response_feed(*entries: str) -> str:
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<feed xmlns="{NS_ATOM}" xmlns:batch="{NS_BATCH}">{"".join(entries)}</feed>'
    )


def _response(status: int, body: str) -> httpx.Response:
    return httpx.Response(status, text=body, request=httpx.Request("POST", "https://m.test/"))


def test_encode_feed_structure() -> None:
    """Each entry carries category, base64 payload, properties, labels and id."""
    entries = build_entries(
        [MSG_A, MSG_B],
        properties=[MailItemProperty.is_starred, MailItemProperty.is_inbox],
        labels=["Migrated-POP", "Work"],
    )
    root = ET.fromstring(encode_feed(entries))

    assert root.tag == f"{{{NS_ATOM}}}feed"
    nodes = root.findall(f"{{{NS_ATOM}}}entry")
    assert len(nodes) == 2

    first = nodes[0]
    category = first.find(f"{{{NS_ATOM}}}category")
    assert category is not None
    assert category.get("term") == "http://schemas.google.com/apps/2006#mailItem"
    payload = first.find(f"{{{NS_APPS}}}rfc822Msg")
    assert payload is not None
    assert payload.get("encoding") == "base64"
    assert base64.b64decode(payload.text or "") == MSG_A
    assert [p.get("value") for p in first.findall(f"{{{NS_APPS}}}mailItemProperty")] == [
        "IS_STARRED",
        "IS_INBOX",
    ]
    assert [lbl.get("labelName") for lbl in first.findall(f"{{{NS_APPS}}}label")] == [
        "Migrated-POP",
        "Work",
    ]
    assert [n.findtext(f"{{{NS_BATCH}}}id") for n in nodes] == ["1", "2"]


def test_encoded_feed_parses_back_to_entries() -> None:
    """Ids, payloads, properties and labels survive encoding."""
    entries = build_entries(
        [MSG_A, MSG_B],
        properties=[MailItemProperty.is_unread],
        labels=["Migrated-POP"],
    )
    assert decode_entries(encode_feed(entries)) == entries


def test_duplicate_batch_ids_are_refused() -> None:
    """Batch ids must be unique within a request."""
    entries = [BatchEntry(batch_id=1, rfc822=MSG_A), BatchEntry(batch_id=1, rfc822=MSG_B)]
    with pytest.raises(ValueError):
        encode_feed(entries)


def test_decode_response_per_item_status() -> None:
    """Batch entries map to their status; plain feed entries are ignored."""
    body = _response_feed(
        "<entry><id>msg-1</id><batch:id>1</batch:id>"
        '<batch:status code="201" reason="Created"/></entry>',
        '<entry><batch:id>2</batch:id><batch:status code="503" reason="Service Unavailable"/>'
        "</entry>",
        "<entry><id>unrelated</id></entry>",
    )
    result = decode_response(_response(200, body))

    assert result.request.code == 200
    assert result.request.message == "OK"
    assert set(result.items) == {1, 2}
    assert result.items[1].code == 201
    assert result.items[1].created is True
    assert result.items[1].message_id == "msg-1"
    assert result.items[2].code == 503
    assert result.items[2].message == "Service Unavailable"
    assert result.get(3) is None


def test_decode_response_rejects_non_xml() -> None:
    """An unparseable body is a protocol error, not an empty result."""
    with pytest.raises(ProtocolError):
        decode_response(_response(200, "<html><body>oops"))
    with pytest.raises(ProtocolError):
        decode_response(_response(200, ""))


def test_client_posts_feed_to_batch_url() -> None:
    """The client POSTs Atom XML to <base><domain>/<user>/mail/batch."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            201,
            text=_response_feed(
                '<entry><batch:id>1</batch:id><batch:status code="201" reason="Created"/></entry>',
            ),
        )

    transport = Transport(
        base_url="https://m.test/",
        user_agent="t",
        http_transport=httpx.MockTransport(handler),
    )
    client = MigrationClient(
        transport=transport,
        base_url="https://m.test/a/feeds/migration/2.0/",
        domain="example.com",
        username="jdoe",
    )
    result = client.upload_single(MSG_A, [MailItemProperty.is_sent], ["Migrated-POP"])

    request = seen[0]
    assert str(request.url) == "https://m.test/a/feeds/migration/2.0/example.com/jdoe/mail/batch"
    assert request.headers["Content-Type"] == "application/atom+xml"
    sent = decode_entries(request.content)
    assert [e.batch_id for e in sent] == [1]
    assert sent[0].rfc822 == MSG_A
    assert result.items[1].created is True


def test_client_turns_overall_400_into_request_status() -> None:
    """A malformed overall request yields only the request-level status."""
    transport = Transport(
        base_url="https://m.test/",
        user_agent="t",
        http_transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad feed")),
    )
    client = MigrationClient(
        transport=transport,
        base_url="https://m.test/",
        domain="example.com",
        username="jdoe",
    )
    result = client.upload_batch([MSG_A, MSG_B])

    assert result.request.code == 400
    assert result.items == {}
