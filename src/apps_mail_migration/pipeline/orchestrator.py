"""Sequential orchestration of local mailbox → migration feed uploads."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from rich.console import Console

from apps_mail_migration.config.settings import UploadSettings
from apps_mail_migration.migration_api.codec import BatchResult, ItemStatus, ProtocolError
from apps_mail_migration.models.types import MailItemProperty, SummaryReport, UploadState
from apps_mail_migration.sources.models import NormalizedMessage, RawMessage, Skip
from apps_mail_migration.sources.normalize import MalformedMessageError, MessageNormalizer
from apps_mail_migration.transport.connection import HttpResponseError, TransportError

logger = logging.getLogger(__name__)

OVERLOAD_CODE = 503

# Failures confined to one message; anything else aborts the run.
PER_MESSAGE_ERRORS: tuple[type[BaseException], ...] = (
    MalformedMessageError,
    TransportError,
    HttpResponseError,
    ProtocolError,
)


class Uploader(Protocol):
    """Anything that can upload one message as a batch of one."""

    def upload_single(
        self,
        message: bytes,
        properties: Sequence[MailItemProperty] = (),
        labels: Sequence[str] = (),
    ) -> BatchResult: ...


@dataclass
class UploadTally:
    """Counters for one orchestrator run."""

    uploaded: int = 0
    rejected: int = 0
    skipped: int = 0
    retries: int = 0

    def to_report(self, *, source: str, dry_run: bool) -> SummaryReport:
        """Build the JSON-serializable summary for this run."""
        return SummaryReport(
            created_at=datetime.now(tz=UTC),
            source=source,
            dry_run=dry_run,
            uploaded=self.uploaded,
            rejected=self.rejected,
            skipped=self.skipped,
            retries=self.retries,
        )


@dataclass(frozen=True)
class UploadOutcome:
    """Final state of one message's upload attempts."""

    state: UploadState
    attempts: int
    status: ItemStatus | None = None
    request: ItemStatus | None = None
    transitions: tuple[UploadState, ...] = ()


def upload_with_retries(
    uploader: Uploader,
    message: bytes,
    *,
    properties: Sequence[MailItemProperty],
    labels: Sequence[str],
    max_attempts: int,
    backoff_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> UploadOutcome:
    """Submit one message, resubmitting the same bytes while the server says 503.

    Args:
        uploader: Migration client.
        message: RFC822 bytes to upload.
        properties: Property markers for the entry.
        labels: Labels for the entry.
        max_attempts: Total submissions allowed.
        backoff_seconds: Fixed wait between overloaded attempts.
        sleep: Blocking sleep function.

    Returns:
        UploadOutcome in state `success` or `rejected`, with every state the
        message passed through (pending, submitted, retrying, ...).
    """
    result: BatchResult | None = None
    status: ItemStatus | None = None
    states = [UploadState.pending]

    def finish(state: UploadState, attempts: int) -> UploadOutcome:
        states.append(state)
        request = result.request if result is not None else None
        return UploadOutcome(state, attempts, status, request, tuple(states))

    for attempt in range(1, max_attempts + 1):
        states.append(UploadState.submitted)
        result = uploader.upload_single(message, properties, labels)
        status = result.get(1)

        if status is None:
            return finish(UploadState.rejected, attempt)
        if status.created:
            return finish(UploadState.success, attempt)
        if status.code != OVERLOAD_CODE:
            return finish(UploadState.rejected, attempt)

        if attempt < max_attempts:
            states.append(UploadState.retrying)
            logger.warning(
                "Server overloaded (%s %s); retrying in %ss (attempt %d/%d)",
                status.code,
                status.message,
                backoff_seconds,
                attempt,
                max_attempts,
            )
            sleep(backoff_seconds)

    return finish(UploadState.rejected, max_attempts)


class UploadOrchestrator:
    """Drive traversal → normalization → upload and keep the tally."""

    def __init__(
        self,
        *,
        settings: UploadSettings,
        normalizer: MessageNormalizer,
        uploader: Uploader | None,
        properties: Sequence[MailItemProperty],
        labels: Sequence[str],
        console: Console | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Retry and throttling settings.
            normalizer: Header repair step.
            uploader: Migration client; None for a dry run.
            properties: Property markers applied to every message.
            labels: Labels applied to every message.
            console: Rich console for status output.
            sleep: Blocking sleep function.
        """
        self._s = settings
        self._normalizer = normalizer
        self._uploader = uploader
        self._properties = tuple(properties)
        self._labels = tuple(labels)
        self._console = console or Console(stderr=True)
        self._sleep = sleep
        self.tally = UploadTally()

    @property
    def dry_run(self) -> bool:
        """Return True when nothing is sent to the server."""
        return self._uploader is None

    def run(self, candidates: Iterable[RawMessage | Skip]) -> UploadTally:
        """Process every candidate in order.

        Args:
            candidates: Output of mailbox traversal.

        Returns:
            The final tally.
        """
        first = True
        with self._console.status("[bold green]Migrating messages...[/bold green]") as status:
            for candidate in candidates:
                if isinstance(candidate, Skip):
                    self.tally.skipped += 1
                    logger.info("Skipping %s: %s", candidate.label, candidate.reason)
                    continue

                if not first and not self.dry_run:
                    self._sleep(self._s.throttle_seconds)
                first = False

                status.update(f"[bold green]Migrating[/bold green] {candidate.label}")
                self.process(candidate)

        return self.tally

    def process(self, raw: RawMessage) -> UploadState:
        """Normalize and upload one message, containing any per-message failure.

        Args:
            raw: Candidate message.

        Returns:
            Final state for the message.
        """
        try:
            normalized = self._normalizer.normalize(raw)
            if self._uploader is None:
                return self._record_dry_run(normalized)
            outcome = upload_with_retries(
                self._uploader,
                normalized.data,
                properties=self._properties,
                labels=self._labels,
                max_attempts=self._s.max_attempts,
                backoff_seconds=self._s.retry_backoff_seconds,
                sleep=self._sleep,
            )
        except PER_MESSAGE_ERRORS as exc:
            self.tally.rejected += 1
            logger.error("Could not read/upload %s: %s", raw.label, exc)
            return UploadState.rejected

        self.tally.retries += outcome.attempts - 1
        logger.debug("Upload states for %s: %s", raw.label, " -> ".join(outcome.transitions))
        if outcome.state is UploadState.success:
            self.tally.uploaded += 1
            logger.info(
                "Uploaded %s (rebuilt=%s, message_id=%s)",
                raw.label,
                normalized.rebuilt,
                outcome.status.message_id if outcome.status else None,
            )
        else:
            self.tally.rejected += 1
            logger.error(
                "Not uploaded %s after %d attempt(s): item=%s request=%s",
                raw.label,
                outcome.attempts,
                _describe(outcome.status),
                _describe(outcome.request),
            )
        return outcome.state

    def _record_dry_run(self, normalized: NormalizedMessage) -> UploadState:
        """Count a message that would have been uploaded."""
        self.tally.uploaded += 1
        logger.info(
            "Dry run: would upload %s (%d bytes, repairs=%s)",
            normalized.source.label,
            len(normalized.data),
            ",".join(normalized.repairs) or "none",
        )
        return UploadState.success


def _describe(status: ItemStatus | None) -> str:
    """Format a status for log lines."""
    if status is None:
        return "none"
    return f"{status.code} {status.message}".strip()
