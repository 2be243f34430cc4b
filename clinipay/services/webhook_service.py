"""
Stripe webhook ingestion for clinipay.

Verifies the signature, records the delivery in the webhook ledger, then
dispatches by event type. Every handler is idempotent: Stripe redelivers on
any non-2xx response and may deliver events out of order.

Transaction boundaries are explicit here. The ledger row and its claim are
committed before any handler runs, so a handler failure can roll back its
own work and still leave the ledger row marked ``failed``.
"""

from dataclasses import dataclass
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import WEBHOOK_SOURCE_STRIPE
from ..core.exceptions import NotFoundException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .connect_account_service import ConnectAccountService
from .payment_service import PaymentService
from .payout_service import PayoutService
from .refund_service import RefundService
from .stripe_gateway import StripeGateway, WebhookSignatureError, stripe_object_id
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

# (handled, related_entity_type, related_entity_id)
HandlerResult = Tuple[bool, Optional[str], Optional[str]]

DONE_STATUSES = ("processed", "ignored")


class WebhookInProgressError(Exception):
    """Another worker holds the claim on this event; the sender should retry shortly."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} is already being processed")


@dataclass(frozen=True)
class WebhookOutcome:
    event_type: str
    handled: bool
    duplicate: bool = False


class WebhookService(BaseService):
    """Verify, log and dispatch Stripe webhook events."""

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        super().__init__(db)
        self.gateway = gateway or StripeGateway()
        self.ledger = WebhookLedgerService(db)
        self.payout_service = PayoutService(db, self.gateway)
        self.refund_service = RefundService(db, self.gateway, self.payout_service)
        self.payment_service = PaymentService(
            db,
            gateway=self.gateway,
            payout_service=self.payout_service,
            refund_service=self.refund_service,
        )
        self.connect_service = ConnectAccountService(db, self.gateway)

        self._handlers: Dict[str, Callable[[Dict[str, Any]], HandlerResult]] = {
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "charge.refunded": self._handle_charge_refunded,
            "charge.refund.updated": self._handle_refund_updated,
            "transfer.created": self._handle_transfer_created,
            "transfer.reversed": self._handle_transfer_reversed,
            "account.updated": self._handle_account_updated,
        }

    @BaseService.measure_operation("process_stripe_webhook")
    def process(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: Optional[Mapping[str, Any]] = None,
    ) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Raises:
            WebhookSignatureError: missing or invalid signature (nothing is written)
            ServiceException: webhook secret not configured
            WebhookInProgressError: a concurrent delivery is processing the same event
            Exception: a handler failed; the ledger row is marked failed first
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        self.gateway.verify_webhook_signature(payload, signature)

        try:
            event: Dict[str, Any] = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Invalid webhook payload") from exc

        event_type = str(event.get("type") or "unknown")
        event_id = event.get("id")

        record = self.ledger.log_received(
            source=WEBHOOK_SOURCE_STRIPE,
            event_type=event_type,
            payload=event,
            headers=dict(headers) if headers else None,
            event_id=event_id,
        )
        self.db.commit()

        if record.status in DONE_STATUSES:
            self.logger.info(f"Stripe event {event_id} already processed; acknowledging")
            prometheus_metrics.inc_webhook_event(event_type, "duplicate")
            return WebhookOutcome(event_type=event_type, handled=True, duplicate=True)

        claimed = self.ledger.mark_processing(record)
        self.db.commit()
        if not claimed:
            self.db.refresh(record)
            if record.status in DONE_STATUSES:
                prometheus_metrics.inc_webhook_event(event_type, "duplicate")
                return WebhookOutcome(event_type=event_type, handled=True, duplicate=True)
            prometheus_metrics.inc_webhook_event(event_type, "in_progress")
            raise WebhookInProgressError(record.id)

        start = time.monotonic()
        try:
            handled, entity_type, entity_id = self._dispatch(event_type, event)
        except Exception as exc:
            self.db.rollback()
            self.logger.error(f"Stripe event {event_id} ({event_type}) failed: {str(exc)}")
            self.ledger.mark_failed(
                record, error=str(exc), duration_ms=self.ledger.elapsed_ms(start)
            )
            self.db.commit()
            prometheus_metrics.inc_webhook_event(event_type, "failed")
            raise

        self.ledger.mark_processed(
            record,
            related_entity_type=entity_type,
            related_entity_id=entity_id,
            duration_ms=self.ledger.elapsed_ms(start),
            status="processed" if handled else "ignored",
        )
        self.db.commit()
        prometheus_metrics.inc_webhook_event(event_type, "processed" if handled else "ignored")
        return WebhookOutcome(event_type=event_type, handled=handled)

    def _dispatch(self, event_type: str, event: Dict[str, Any]) -> HandlerResult:
        handler = self._handlers.get(event_type)
        if handler is None:
            self.logger.info(f"Unhandled Stripe event type: {event_type}")
            return False, None, None
        obj = (event.get("data") or {}).get("object") or {}
        return handler(obj)

    # ========== Handlers ==========

    def _handle_payment_succeeded(self, intent: Dict[str, Any]) -> HandlerResult:
        metadata = intent.get("metadata") or {}
        try:
            result = self.payment_service.confirm_payment(
                intent["id"],
                stripe_object_id(intent.get("latest_charge")),
                metadata.get("appointmentId"),
            )
        except NotFoundException:
            self.logger.warning(f"payment_intent.succeeded for unknown intent {intent.get('id')}")
            return False, None, None
        return True, "payment", result.payment.id

    def _handle_payment_failed(self, intent: Dict[str, Any]) -> HandlerResult:
        metadata = intent.get("metadata") or {}
        try:
            self.payment_service.mark_payment_failed(intent["id"], metadata.get("appointmentId"))
        except NotFoundException:
            self.logger.warning(f"payment_intent.payment_failed for unknown intent {intent.get('id')}")
            return False, None, None
        return True, "appointment", metadata.get("appointmentId")

    def _handle_charge_refunded(self, charge: Dict[str, Any]) -> HandlerResult:
        payment = self.refund_service.apply_charge_refund(charge)
        if payment is None:
            return False, None, None
        return True, "payment", payment.id

    def _handle_refund_updated(self, refund: Dict[str, Any]) -> HandlerResult:
        return self.refund_service.update_refund_status(refund), None, None

    def _handle_transfer_created(self, transfer: Dict[str, Any]) -> HandlerResult:
        payment_id = (transfer.get("metadata") or {}).get("paymentId")
        self.payout_service.confirm_transfer(transfer["id"], payment_id)
        payment = self.payout_service.payment_repository.get_by_transfer_id(transfer["id"])
        return True, "payment", payment.id if payment is not None else payment_id

    def _handle_transfer_reversed(self, transfer: Dict[str, Any]) -> HandlerResult:
        self.payout_service.mark_transfer_reversed(transfer["id"])
        return True, "payment", (transfer.get("metadata") or {}).get("paymentId")

    def _handle_account_updated(self, account: Dict[str, Any]) -> HandlerResult:
        record = self.connect_service.sync_account(account)
        if record is None:
            return False, None, None
        return True, "payment_account", record.id
