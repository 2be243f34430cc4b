"""
Webhook ledger.

Stripe delivers events at least once and retries anything that did not get a
2xx. The ledger keeps one row per event so redeliveries are recognised, a
delivery that is already being handled elsewhere can be turned away, and a
failed delivery keeps its error until the retry succeeds. A claim whose worker
crashed expires after the processing timeout.
"""

from __future__ import annotations

from datetime import timedelta
import time
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import MAX_WEBHOOK_ERROR_LENGTH
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import utc_now
from ..models.webhook_event import WebhookEvent
from ..repositories.webhook_event_repository import WebhookEventRepository
from .base import BaseService

REDACTED = "***"
REDACTED_HEADERS = frozenset({"authorization", "cookie", "stripe-signature", "x-api-key"})


def sanitize_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``headers`` with credentials and signatures masked."""
    return {
        name: REDACTED if name.lower() in REDACTED_HEADERS else value
        for name, value in headers.items()
    }


class WebhookLedgerService(BaseService):
    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = WebhookEventRepository(db)

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        headers: Mapping[str, Any] | None = None,
        event_id: str | None = None,
    ) -> WebhookEvent:
        """
        Record a verified delivery.

        Returns the existing row, with ``retry_count`` bumped, when the event
        id was seen before (including when a concurrent delivery inserted it
        a moment earlier).
        """
        safe_headers = sanitize_headers(headers) if headers else None

        if event_id:
            known = self.repository.find_by_source_and_event_id(source, event_id)
            if known is not None:
                return self._record_redelivery(known, safe_headers)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                headers=safe_headers,
                status="received",
                received_at=utc_now(),
                retry_count=0,
            )
        except RepositoryException as exc:
            if not event_id or not isinstance(exc.__cause__, IntegrityError):
                raise
            self.db.rollback()
            known = self.repository.find_by_source_and_event_id(source, event_id)
            if known is None:
                raise
            return self._record_redelivery(known, safe_headers)

    @BaseService.measure_operation("webhook_ledger.mark_processing")
    def mark_processing(self, event: WebhookEvent) -> bool:
        """
        Claim the event; False when another worker holds it or it is already done.

        A claim older than ``webhook_processing_timeout_seconds`` is treated as
        abandoned by a crashed worker and taken over.
        """
        now = utc_now()
        stale_before = now - timedelta(seconds=settings.webhook_processing_timeout_seconds)
        previous_status = event.status
        if not self.repository.claim_for_processing(
            event.id, claimed_at=now, stale_before=stale_before
        ):
            return False
        if previous_status == "processing":
            self.logger.warning(
                f"Reclaimed webhook event {event.event_id} left in processing since "
                f"{event.processing_started_at or event.received_at}"
            )
        event.status = "processing"
        event.processing_started_at = now
        event.processing_error = None
        event.processed_at = None
        return True

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
        status: str = "processed",
    ) -> WebhookEvent:
        """Close the event as ``processed`` (or ``ignored`` for events we do not act on)."""
        event.related_entity_type = related_entity_type
        event.related_entity_id = related_entity_id
        return self._finish(event, status, duration_ms)

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self, event: WebhookEvent, *, error: str, duration_ms: int | None = None
    ) -> WebhookEvent:
        event.processing_error = error[:MAX_WEBHOOK_ERROR_LENGTH]
        return self._finish(event, "failed", duration_ms)

    @staticmethod
    def elapsed_ms(started: float) -> int:
        """Milliseconds since a ``time.monotonic()`` reading."""
        return int((time.monotonic() - started) * 1000)

    def _record_redelivery(
        self, event: WebhookEvent, headers: dict[str, Any] | None
    ) -> WebhookEvent:
        event.retry_count = (event.retry_count or 0) + 1
        event.last_retry_at = utc_now()
        if headers is not None:
            event.headers = headers
        self.repository.flush()
        return event

    def _finish(self, event: WebhookEvent, status: str, duration_ms: int | None) -> WebhookEvent:
        event.status = status
        event.processed_at = utc_now()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event
