"""Tests for header repair and address recovery."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email import policy
from email.parser import BytesParser
from pathlib import Path

import pytest

from apps_mail_migration.sources.models import RawMessage
from apps_mail_migration.sources.normalize import MalformedMessageError, MessageNormalizer
from apps_mail_migration.utils.email import (
    AddressParseError,
    extract_email_addresses,
    parse_address,
    parse_address_list,
    placeholder_address,
)

WHEN = datetime(2003, 10, 13, 7, 26, 26, tzinfo=timezone(timedelta(hours=-7)))


def _raw(data: bytes) -> RawMessage:
    return RawMessage(data=data, path=Path("/mail/INBOX.mbox"), index=3, timestamp=WHEN)


def _parse(data: bytes):  # type: ignore[no-untyped-def]
    return BytesParser(policy=policy.default).parsebytes(data)


@pytest.fixture
def normalizer() -> MessageNormalizer:
    return MessageNormalizer(default_sender="jdoe@example.com")


def test_complete_message_passes_through_unchanged(normalizer: MessageNormalizer) -> None:
    """A message with To, From, Date and plain text keeps its exact bytes."""
    data = (
        b"From: Alice <alice@example.com>\r\n"
        b"To:   bob@example.com\r\n"
        b"Date: Tue, 1 Jan 2019 10:00:00 +0000\r\n"
        b"Subject:    odd   spacing\r\n"
        b"\r\n"
        b"Hello   there\r\n"
    )
    result = normalizer.normalize(_raw(data))
    assert result.data == data
    assert result.rebuilt is False
    assert result.repairs == ()


def test_missing_from_uses_default_sender(normalizer: MessageNormalizer) -> None:
    """Without a From header the configured sender is substituted."""
    data = b"To: bob@example.com\nDate: Tue, 1 Jan 2019 10:00:00 +0000\nSubject: x\n\nbody\n"
    result = normalizer.normalize(_raw(data))

    assert result.rebuilt is True
    assert result.repairs == ("from",)
    assert extract_email_addresses(str(_parse(result.data)["From"])) == {"jdoe@example.com"}


def test_missing_date_uses_source_timestamp(normalizer: MessageNormalizer) -> None:
    """Without a Date header the provenance timestamp is used."""
    data = b"From: a@example.com\nTo: bob@example.com\nSubject: x\n\nbody\n"
    result = normalizer.normalize(_raw(data))

    assert result.repairs == ("date",)
    assert _parse(result.data)["Date"].datetime == WHEN


def test_missing_to_without_line_uses_placeholder(normalizer: MessageNormalizer) -> None:
    """No To line at all yields the fixed placeholder recipient."""
    data = b"From: a@example.com\nDate: Tue, 1 Jan 2019 10:00:00 +0000\n\nbody\n"
    result = normalizer.normalize(_raw(data))

    assert result.repairs == ("to",)
    assert extract_email_addresses(str(_parse(result.data)["To"])) == {"unknown@unknown.com"}


def test_unparseable_to_is_recovered_from_raw_line(normalizer: MessageNormalizer) -> None:
    """A broken To header is rebuilt from the raw line, entry by entry."""
    data = (
        b"From: a@example.com\n"
        b"To: Bad Name <not an address\n"
        b"Date: Tue, 1 Jan 2019 10:00:00 +0000\n"
        b"\n"
        b"body\n"
    )
    result = normalizer.normalize(_raw(data))

    assert "to" in result.repairs
    to = _parse(result.data)["To"]
    assert [a.addr_spec for a in to.addresses] == ["bad.name.not.an.address@unknown.com"]
    assert to.addresses[0].display_name == "Bad Name <not an address"


@pytest.mark.parametrize("to_line", [b"To: Ren\xc3\xa9 <broken", b"To: Ren\xe9 <broken"])
def test_non_ascii_recovered_name_gives_well_formed_to(
    normalizer: MessageNormalizer,
    to_line: bytes,
) -> None:
    """Accented names (UTF-8 or Latin-1) are kept and the rebuilt To header parses cleanly."""
    data = (
        b"From: a@example.com\n"
        + to_line
        + b"\nDate: Tue, 1 Jan 2019 10:00:00 +0000\n\nbody\n"
    )
    result = normalizer.normalize(_raw(data))

    assert "to" in result.repairs
    to = _parse(result.data)["To"]
    assert [a.addr_spec for a in to.addresses] == ["ren.broken@unknown.com"]
    assert "René" in to.addresses[0].display_name
    assert "�" not in to.addresses[0].display_name


def test_partly_broken_to_is_rebuilt(normalizer: MessageNormalizer) -> None:
    """A To list with one bad entry keeps the good one and replaces the bad one."""
    data = (
        b"From: a@b.com\n"
        b"To: a@b.com; Bad Name <not an address\n"
        b"Date: Tue, 1 Jan 2019 10:00:00 +0000\n"
        b"\n"
        b"body\n"
    )
    result = normalizer.normalize(_raw(data))

    assert result.repairs == ("to",)
    to = _parse(result.data)["To"]
    assert [a.addr_spec for a in to.addresses] == [
        "a@b.com",
        "bad.name.not.an.address@unknown.com",
    ]
    assert to.addresses[1].display_name == "Bad Name <not an address"
    assert not to.defects


def test_unreadable_from_is_replaced(normalizer: MessageNormalizer) -> None:
    """A From value the header parser chokes on is treated as missing."""
    data = b'From: "a"@\nTo: b@example.com\nDate: Tue, 1 Jan 2019 10:00:00 +0000\n\nbody\n'
    result = normalizer.normalize(_raw(data))

    assert result.repairs == ("from",)
    assert extract_email_addresses(str(_parse(result.data)["From"])) == {"jdoe@example.com"}


def test_html_body_forces_html_content_type(normalizer: MessageNormalizer) -> None:
    """A plain-typed body that is an HTML page is retyped as text/html."""
    data = (
        b"From: a@example.com\n"
        b"To: bob@example.com\n"
        b"Date: Tue, 1 Jan 2019 10:00:00 +0000\n"
        b"\n"
        b"  <html><body>Hi</body></html>\n"
    )
    result = normalizer.normalize(_raw(data))

    assert result.repairs == ("content_type",)
    assert _parse(result.data).get_content_type() == "text/html"


def test_html_message_is_left_alone(normalizer: MessageNormalizer) -> None:
    """Messages already typed as HTML are not rebuilt."""
    data = (
        b"From: a@example.com\n"
        b"To: bob@example.com\n"
        b"Date: Tue, 1 Jan 2019 10:00:00 +0000\n"
        b"Content-Type: text/html; charset=utf-8\n"
        b"\n"
        b"<html><body>Hi</body></html>\n"
    )
    assert normalizer.normalize(_raw(data)).data == data


def test_repairs_apply_in_order(normalizer: MessageNormalizer) -> None:
    """All repairs can trigger together and are reported in order."""
    data = b"Subject: bare\n\n<html>hello</html>\n"
    result = normalizer.normalize(_raw(data))
    assert result.repairs == ("to", "from", "date", "content_type")


def test_unusable_message_raises() -> None:
    """Parsing problems surface as MalformedMessageError."""

    class Exploding(MessageNormalizer):
        def _repair(self, msg, raw):  # type: ignore[no-untyped-def]
            raise ValueError("boom")

    with pytest.raises(MalformedMessageError):
        Exploding(default_sender="x@example.com").normalize(_raw(b"Subject: x\n\n"))


def test_parse_address_list_falls_back_per_entry() -> None:
    """Good entries parse normally; bad ones become placeholders named after the text."""
    pairs = parse_address_list("a@b.com; Bad Name <not an address", placeholder_domain="unknown.com")
    assert pairs == [
        ("", "a@b.com"),
        ("Bad Name <not an address", "bad.name.not.an.address@unknown.com"),
    ]


def test_parse_address_list_strips_quotes_and_blanks() -> None:
    """Surrounding quotes and empty entries are dropped."""
    pairs = parse_address_list("'Alice <alice@x.org>'; ;bob@y.org", placeholder_domain="u.com")
    assert pairs == [("Alice", "alice@x.org"), ("", "bob@y.org")]


def test_parse_address_rejects_garbage() -> None:
    """Single-address parsing is strict."""
    with pytest.raises(AddressParseError):
        parse_address("not an address")
    with pytest.raises(AddressParseError):
        parse_address("Name <a@b.com")
    assert parse_address("Name <a@b.com>") == ("Name", "a@b.com")


def test_placeholder_address() -> None:
    """Placeholders are lowercase, dot-separated and never empty."""
    assert placeholder_address("John SMITH (Sales)", domain="unknown.com") == (
        "john.smith.sales@unknown.com"
    )
    assert placeholder_address("<<>>", domain="unknown.com") == "unknown@unknown.com"
