from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from clinipay.core.config import settings
from clinipay.core.timezone_utils import ensure_utc, utc_now
from clinipay.models.webhook_event import WebhookEvent
from clinipay.services.webhook_ledger_service import WebhookLedgerService


def test_log_received_creates_event(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="stripe",
        event_type="payment_intent.succeeded",
        payload={"id": "evt_1"},
        headers={"Stripe-Signature": "t=1,v1=abc", "X-Request-Id": "req"},
        event_id="evt_1",
    )

    assert event.id is not None
    assert event.status == "received"
    assert event.retry_count == 0
    assert event.headers.get("Stripe-Signature") == "***"
    assert event.headers.get("X-Request-Id") == "req"

    fetched = db.query(WebhookEvent).filter(WebhookEvent.id == event.id).first()
    assert fetched is not None
    assert fetched.event_id == "evt_1"


def test_redelivery_bumps_retry_count(db):
    service = WebhookLedgerService(db)
    first = service.log_received(
        source="stripe", event_type="charge.refunded", payload={"id": "evt_2"}, event_id="evt_2"
    )
    second = service.log_received(
        source="stripe", event_type="charge.refunded", payload={"id": "evt_2"}, event_id="evt_2"
    )

    assert second.id == first.id
    assert second.retry_count == 1
    assert second.last_retry_at is not None
    assert db.query(WebhookEvent).count() == 1


def test_claim_is_exclusive_until_failure(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="stripe", event_type="transfer.created", payload={"id": "evt_3"}, event_id="evt_3"
    )

    assert service.mark_processing(event) is True
    assert service.mark_processing(event) is False

    service.mark_failed(event, error="boom" * 1000, duration_ms=12)
    assert event.status == "failed"
    assert len(event.processing_error) == 2000

    assert service.mark_processing(event) is True


def test_processed_event_cannot_be_reclaimed(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="stripe", event_type="account.updated", payload={"id": "evt_4"}, event_id="evt_4"
    )
    service.mark_processing(event)

    service.mark_processed(event, related_entity_type="payment_account", related_entity_id="pa_1")

    assert event.status == "processed"
    assert event.processed_at is not None
    assert event.related_entity_id == "pa_1"
    assert service.mark_processing(event) is False


def test_abandoned_claim_expires_after_processing_timeout(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="stripe", event_type="charge.refunded", payload={"id": "evt_5"}, event_id="evt_5"
    )
    assert service.mark_processing(event) is True
    assert service.mark_processing(event) is False

    event.processing_started_at = utc_now() - timedelta(seconds=121)
    db.flush()

    with patch.object(settings, "webhook_processing_timeout_seconds", 120):
        assert service.mark_processing(event) is True
        assert service.mark_processing(event) is False

    assert event.status == "processing"
    assert ensure_utc(event.processing_started_at) > utc_now() - timedelta(seconds=60)


def test_claim_without_start_time_ages_from_receipt(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        source="stripe", event_type="charge.refunded", payload={"id": "evt_6"}, event_id="evt_6"
    )
    event.status = "processing"
    event.received_at = utc_now() - timedelta(hours=1)
    db.flush()

    assert service.mark_processing(event) is True
