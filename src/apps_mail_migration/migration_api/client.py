"""Migration endpoint client: feed encoding over the authenticated transport."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import quote

from apps_mail_migration.migration_api.codec import (
    FEED_CONTENT_TYPE,
    BatchEntry,
    BatchResult,
    build_entries,
    decode_response,
    encode_feed,
    request_status,
)
from apps_mail_migration.models.types import MailItemProperty
from apps_mail_migration.transport.connection import HttpResponseError, Transport

logger = logging.getLogger(__name__)


class MigrationClient:
    """Upload RFC822 messages into one target mailbox."""

    def __init__(self, *, transport: Transport, base_url: str, domain: str, username: str) -> None:
        """Initialize the client.

        Args:
            transport: Authenticated transport.
            base_url: Migration feed base URL (ending with a slash).
            domain: Hosted domain of the target mailbox.
            username: Target user name, without the domain.
        """
        self._transport = transport
        self._batch_url = f"{base_url}{quote(domain)}/{quote(username)}/mail/batch"

    @property
    def batch_url(self) -> str:
        """Return the batch endpoint URL for the target mailbox."""
        return self._batch_url

    def submit(self, entries: Sequence[BatchEntry]) -> BatchResult:
        """POST a batch feed and decode the per-item outcome.

        Args:
            entries: Entries with unique batch ids.

        Returns:
            Decoded BatchResult. A non-2xx response to the POST yields a result
            carrying only the request-level status.

        Raises:
            TransportError: If the request could not be delivered.
            ProtocolError: If a 2xx response body is not a batch feed.
        """
        document = encode_feed(entries)
        try:
            resp = self._transport.send("POST", self._batch_url, document, FEED_CONTENT_TYPE)
        except HttpResponseError as exc:
            logger.error("%s POSTing to %s", exc, self._batch_url)
            return BatchResult(request=request_status(exc.response))
        return decode_response(resp)

    def upload_batch(
        self,
        messages: Sequence[bytes],
        properties: Sequence[MailItemProperty] = (),
        labels: Sequence[str] = (),
    ) -> BatchResult:
        """Upload several messages in one feed, numbered 1..n.

        Args:
            messages: Raw RFC822 payloads.
            properties: Property markers applied to every message.
            labels: Labels applied to every message.

        Returns:
            Decoded BatchResult.
        """
        return self.submit(build_entries(messages, properties=properties, labels=labels))

    def upload_single(
        self,
        message: bytes,
        properties: Sequence[MailItemProperty] = (),
        labels: Sequence[str] = (),
    ) -> BatchResult:
        """Upload one message as a batch of one (batch id 1)."""
        return self.upload_batch([message], properties, labels)
