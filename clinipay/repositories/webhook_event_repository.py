"""Webhook ledger rows: lookup by provider event id and the processing claim."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository

# a failed delivery may be claimed again when the provider retries it
CLAIMABLE_STATUSES = ("received", "failed")


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> Optional[WebhookEvent]:
        stmt = select(WebhookEvent).where(
            WebhookEvent.source == source, WebhookEvent.event_id == event_id
        )
        with self._guard("load"):
            return self.db.scalars(stmt).first()

    def claim_for_processing(
        self, webhook_event_id: str, *, claimed_at: datetime, stale_before: datetime
    ) -> bool:
        """
        Conditionally flip the row to ``processing``.

        Exactly one concurrent caller sees True; everybody else finds the row
        already ``processing`` or finished and gets False. A ``processing``
        claim taken before ``stale_before`` belongs to a worker that died and
        is handed to the caller.
        """
        stale_claim = and_(
            WebhookEvent.status == "processing",
            or_(
                WebhookEvent.processing_started_at < stale_before,
                and_(
                    WebhookEvent.processing_started_at.is_(None),
                    WebhookEvent.received_at < stale_before,
                ),
            ),
        )
        stmt = (
            update(WebhookEvent)
            .where(
                WebhookEvent.id == webhook_event_id,
                or_(WebhookEvent.status.in_(CLAIMABLE_STATUSES), stale_claim),
            )
            .values(status="processing", processing_started_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        with self._guard("claim"):
            self.db.flush()
            return self.db.execute(stmt).rowcount == 1
