"""
Payout Service for clinipay

Holds doctor payouts until after the appointment, releases due payouts to the
doctor's Stripe Connect account, and reconciles transfer webhooks.

The sweep is meant to be triggered on a fixed cadence (cron endpoint or
Celery beat). Each run processes a bounded batch and keeps going when a
single payout fails.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import List, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AccountNotReadyException,
    BusinessRuleException,
    NotFoundException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import AppointmentPayment
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.doctor_repository import DoctorRepository
from ..repositories.payment_repository import PAYOUT_ELIGIBLE_STATUSES, PaymentRepository
from .base import BaseService
from .commission import to_minor_units
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutResult:
    payment_id: str
    status: str  # processed | skipped
    transfer_id: Optional[str] = None
    reason: Optional[str] = None


class PayoutError(TypedDict):
    payment_id: str
    code: str
    message: str


class PayoutSweepResult(TypedDict):
    processed: int
    skipped: int
    failed: int
    total: int
    errors: List[PayoutError]


class PayoutService(BaseService):
    """Doctor payout scheduling, release and reconciliation."""

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        super().__init__(db)
        self.payment_repository = PaymentRepository(db)
        self.doctor_repository = DoctorRepository(db)
        self.gateway = gateway or StripeGateway()

    # ========== Scheduling ==========

    def compute_payout_time(self, appointment_end: datetime) -> datetime:
        """Earliest release time: the appointment end plus the configured hold."""
        end = ensure_utc(appointment_end)
        assert end is not None
        return end + timedelta(hours=settings.payout_hold_hours)

    @BaseService.measure_operation("hold_doctor_payout")
    def hold_doctor_payout(
        self,
        payment_id: str,
        appointment_end: datetime,
        *,
        scheduled_at: Optional[datetime] = None,
        admin_override: bool = False,
    ) -> datetime:
        """
        Persist ``payout_scheduled_at`` for a payment and return the effective value.

        Re-invocation never moves an existing schedule earlier. An admin
        override may set any explicit time that is still after the appointment end.
        """
        end = ensure_utc(appointment_end)
        assert end is not None
        if scheduled_at is not None:
            if not admin_override:
                raise ValidationException(
                    "An explicit payout time requires an administrative override",
                    code="PAYOUT_OVERRIDE_REQUIRED",
                )
            target = ensure_utc(scheduled_at)
            assert target is not None
            if target <= end:
                raise ValidationException(
                    "Payout cannot be scheduled before the appointment ends",
                    code="PAYOUT_BEFORE_APPOINTMENT",
                    details={"appointment_end": end.isoformat(), "scheduled_at": target.isoformat()},
                )
        else:
            target = self.compute_payout_time(end)

        with self.transaction():
            updated = self.payment_repository.set_payout_schedule(
                payment_id, target, allow_earlier=admin_override
            )

        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found")

        effective = ensure_utc(payment.payout_scheduled_at)
        assert effective is not None
        if updated:
            self.logger.info(f"Payout for payment {payment_id} scheduled at {effective.isoformat()}")
        else:
            self.logger.info(
                f"Payout for payment {payment_id} already scheduled at {effective.isoformat()}; kept"
            )
        return effective

    # ========== Processing ==========

    @BaseService.measure_operation("get_pending_payouts")
    def get_pending_payouts(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[AppointmentPayment]:
        """Payments whose hold has elapsed and that still owe the doctor a transfer."""
        return self.payment_repository.get_pending_payouts(
            now or utc_now(), limit or settings.payout_batch_size
        )

    @BaseService.measure_operation("create_payout")
    def create_payout(self, payment_id: str) -> PayoutResult:
        """
        Transfer the doctor's share for one payment.

        A payment that already has a transfer is a successful no-op.

        Raises:
            NotFoundException: unknown payment
            BusinessRuleException: patient payment not confirmed, payment not payable,
                or the appointment was cancelled without a settled refund
            AccountNotReadyException: doctor account missing or not payout-enabled
            ProviderException: Stripe transfer failed
        """
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found")

        if payment.doctor_paid or payment.stripe_transfer_id:
            self.logger.info(f"Payout for payment {payment_id} already made; skipping")
            return PayoutResult(
                payment_id=payment_id,
                status="skipped",
                transfer_id=payment.stripe_transfer_id,
                reason="already_paid",
            )

        if not payment.patient_paid:
            raise BusinessRuleException(
                "Patient payment not confirmed", code="PAYMENT_NOT_CONFIRMED"
            )
        if payment.status not in PAYOUT_ELIGIBLE_STATUSES:
            raise BusinessRuleException(
                f"Payment in status {payment.status} cannot be paid out",
                code="PAYOUT_NOT_ALLOWED",
                details={"status": payment.status},
            )
        appointment = payment.appointment
        if appointment is not None and appointment.is_cancelled and payment.refund_type is None:
            raise BusinessRuleException(
                "Appointment was cancelled without a settled refund",
                code="APPOINTMENT_CANCELLED",
                details={"appointment_id": payment.appointment_id},
            )

        amount_cents = to_minor_units(payment.doctor_payout_amount)
        if amount_cents <= 0:
            raise BusinessRuleException(
                "Payout amount must be greater than zero", code="INVALID_PAYOUT_AMOUNT"
            )

        account = self.doctor_repository.get_payment_account(payment.doctor_id)
        if account is None or not account.is_payout_ready:
            raise AccountNotReadyException(
                payment.doctor_id, account.account_status if account else None
            )

        transfer = self.gateway.create_transfer(
            amount_cents=amount_cents,
            currency=payment.currency,
            destination=account.stripe_account_id,
            metadata={
                "paymentId": payment.id,
                "appointmentId": payment.appointment_id,
                "doctorId": payment.doctor_id,
                "refunded": "true" if payment.refunded else "false",
                "originalCommission": str(payment.commission_amount),
            },
            idempotency_key=f"payout-{payment.id}",
        )
        transfer_id = transfer.id

        with self.transaction():
            recorded = self.payment_repository.record_transfer(payment.id, transfer_id, utc_now())

        if not recorded:
            # Another sweep recorded the same (idempotent) transfer first.
            self.logger.info(f"Transfer for payment {payment_id} was recorded concurrently")
            prometheus_metrics.inc_payout("skipped")
            return PayoutResult(
                payment_id=payment_id, status="skipped", transfer_id=transfer_id, reason="already_paid"
            )

        prometheus_metrics.inc_payout("processed")
        self.logger.info(
            f"Created transfer {transfer_id} of {amount_cents} cents for payment {payment_id}"
        )
        return PayoutResult(payment_id=payment_id, status="processed", transfer_id=transfer_id)

    @BaseService.measure_operation("process_due_payouts")
    def process_due_payouts(self, limit: Optional[int] = None) -> PayoutSweepResult:
        """
        Release every due payout in one bounded batch.

        Accounts that are not ready are skipped and picked up again by a later
        sweep; other failures are counted and reported without stopping the batch.
        """
        payment_ids = [p.id for p in self.get_pending_payouts(limit=limit)]
        results: PayoutSweepResult = {
            "processed": 0,
            "skipped": 0,
            "failed": 0,
            "total": len(payment_ids),
            "errors": [],
        }

        for payment_id in payment_ids:
            try:
                outcome = self.create_payout(payment_id)
                results["processed" if outcome.status == "processed" else "skipped"] += 1
            except AccountNotReadyException as exc:
                self.logger.info(f"Payout for payment {payment_id} deferred: {exc.message}")
                prometheus_metrics.inc_payout("skipped")
                results["skipped"] += 1
            except Exception as exc:
                self.db.rollback()
                self.logger.error(f"Payout for payment {payment_id} failed: {str(exc)}")
                prometheus_metrics.inc_payout("failed")
                results["failed"] += 1
                results["errors"].append(
                    {
                        "payment_id": payment_id,
                        "code": getattr(exc, "code", type(exc).__name__),
                        "message": str(exc),
                    }
                )

        self.logger.info(
            f"Payout sweep finished: {results['processed']} processed, "
            f"{results['skipped']} skipped, {results['failed']} failed of {results['total']}"
        )
        return results

    # ========== Transfer Reconciliation ==========

    @BaseService.measure_operation("confirm_transfer")
    def confirm_transfer(self, transfer_id: str, payment_id: Optional[str] = None) -> bool:
        """
        Mark the payout for ``transfer_id`` as confirmed by Stripe.

        ``transfer.created`` can arrive before the sweep has stored the
        transfer id. The payment named in the transfer metadata then takes the
        transfer id and the confirmation in one update.

        Raises:
            ServiceException: no payment can be matched yet, so Stripe should retry
        """
        with self.transaction():
            updated = self.payment_repository.mark_transfer_confirmed(transfer_id)
        if updated:
            self.logger.info(f"Transfer {transfer_id} confirmed")
            return True

        if self.payment_repository.get_by_transfer_id(transfer_id) is not None:
            self.logger.info(f"Transfer {transfer_id} already confirmed")
            return False

        if not payment_id:
            raise ServiceException(
                f"No payment recorded for transfer {transfer_id}",
                code="TRANSFER_NOT_RECORDED",
                details={"transfer_id": transfer_id},
            )

        with self.transaction():
            attached = self.payment_repository.confirm_transfer_for_payment(
                payment_id, transfer_id, utc_now()
            )
        if attached:
            self.logger.info(f"Transfer {transfer_id} confirmed before the sweep recorded it")
            return True

        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise ServiceException(
                f"Payment {payment_id} for transfer {transfer_id} not found",
                code="TRANSFER_NOT_RECORDED",
                details={"transfer_id": transfer_id, "payment_id": payment_id},
            )
        self.logger.error(
            f"Transfer {transfer_id} names payment {payment_id}, which already holds "
            f"transfer {payment.stripe_transfer_id}; needs manual reconciliation"
        )
        return False

    @BaseService.measure_operation("mark_transfer_reversed")
    def mark_transfer_reversed(self, transfer_id: str) -> bool:
        """
        Flag a reversed transfer (clawback of funds already sent to the doctor).

        ``doctor_paid`` and the transfer id are kept so the payout history stays
        intact for audit; follow-up is manual.
        """
        with self.transaction():
            updated = self.payment_repository.mark_transfer_reversed(transfer_id, utc_now())

        payment = self.payment_repository.get_by_transfer_id(transfer_id)
        if payment is None:
            self.logger.error(f"Payment record not found for reversed transfer {transfer_id}")
            return False
        if updated:
            self.logger.error(
                f"Payout reversed for transfer {transfer_id}: payment={payment.id} "
                f"appointment={payment.appointment_id} doctor={payment.doctor_id} "
                f"amount={payment.doctor_payout_amount}"
            )
        return bool(updated)

    def handle_refund_after_payout(self, payment_id: str, commission_refund: object) -> None:
        """
        A refund landed after the doctor was already paid.

        No automatic clawback is attempted; the case is logged for manual review.
        """
        self.logger.warning(
            f"Refund after payout for payment {payment_id}: commission refund {commission_refund} "
            f"requires manual reconciliation"
        )

