"""
Refund Service for clinipay

Applies the cancellation refund policy and reconciles refunds reported by
Stripe.

Policy, measured in whole hours before the appointment starts:

- 24h or more: FULL refund of the price; the platform returns its whole commission
- 1h or more: PARTIAL refund of half the price and half the commission
- less than 1h: NO_REFUND

The doctor's payout shrinks by whatever the patient gets back, net of the
commission the platform gives up.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
import math
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.constants import FULL_REFUND_HOURS, PARTIAL_REFUND_HOURS
from ..core.enums import PaymentStatus, RefundStatus, RefundType
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.appointment import Appointment
from ..models.payment import AppointmentPayment
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService
from .commission import from_minor_units, quantize_money, to_minor_units, truncate_to_cent
from .payout_service import PayoutService
from .stripe_gateway import StripeGateway, stripe_object_id

logger = logging.getLogger(__name__)

PARTIAL_REFUND_RATIO = Decimal("0.5")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class RefundCalculation:
    refund_type: RefundType
    refund_amount: Decimal
    commission_refund: Decimal
    hours_before_appointment: int


@dataclass(frozen=True)
class CancellationResult:
    appointment_id: str
    refund_type: Optional[str]
    refund_amount: Decimal
    commission_refund: Decimal
    payment_status: Optional[str]
    already_cancelled: bool = False


def whole_hours_between(start: datetime, now: datetime) -> int:
    """Whole hours from ``now`` until ``start``; negative once the start has passed."""
    start_utc = ensure_utc(start)
    now_utc = ensure_utc(now)
    assert start_utc is not None and now_utc is not None
    return math.floor((start_utc - now_utc).total_seconds() / 3600)


def calculate_refund(
    price: Any, commission: Any, appointment_start: datetime, now: datetime
) -> RefundCalculation:
    hours = whole_hours_between(appointment_start, now)
    price_dec = quantize_money(price)
    commission_dec = quantize_money(commission)

    if hours >= FULL_REFUND_HOURS:
        return RefundCalculation(RefundType.FULL, price_dec, commission_dec, hours)
    if hours >= PARTIAL_REFUND_HOURS:
        return RefundCalculation(
            RefundType.PARTIAL,
            truncate_to_cent(price_dec * PARTIAL_REFUND_RATIO),
            truncate_to_cent(commission_dec * PARTIAL_REFUND_RATIO),
            hours,
        )
    return RefundCalculation(RefundType.NO_REFUND, ZERO, ZERO, hours)


class RefundService(BaseService):
    """Cancellation refunds and Stripe refund reconciliation."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        payout_service: Optional[PayoutService] = None,
    ):
        super().__init__(db)
        self.payment_repository = PaymentRepository(db)
        self.appointment_repository = AppointmentRepository(db)
        self.gateway = gateway or StripeGateway()
        self.payout_service = payout_service or PayoutService(db, self.gateway)

    def calculate_refund(
        self, price: Any, commission: Any, appointment_start: datetime, now: Optional[datetime] = None
    ) -> RefundCalculation:
        return calculate_refund(price, commission, appointment_start, now or utc_now())

    def _can_cancel(self, appointment: Appointment, user: User) -> bool:
        if user.is_admin or appointment.patient_id == user.id:
            return True
        doctor = appointment.doctor
        return doctor is not None and doctor.user_id == user.id

    @BaseService.measure_operation("handle_cancellation")
    def handle_cancellation(
        self, appointment_id: str, reason: Optional[str], user: User
    ) -> CancellationResult:
        """
        Cancel an appointment and refund the patient according to policy.

        An unpaid booking has its live payment intent cancelled at Stripe.
        Cancelling twice returns the stored outcome.

        Raises:
            NotFoundException: unknown appointment
            ForbiddenException: caller is not the patient, the doctor or an admin
            BusinessRuleException: the paid charge cannot be refunded
            ConflictException: the unpaid intent is still processing at Stripe
            ProviderException: Stripe refund or intent cancellation failed
        """
        appointment = self.appointment_repository.get_for_update(appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found", details={"appointment_id": appointment_id})
        if not self._can_cancel(appointment, user):
            raise ForbiddenException("You cannot cancel this appointment")

        payment = self.payment_repository.get_by_appointment_id(appointment_id)

        if appointment.is_cancelled:
            self.logger.info(f"Appointment {appointment_id} already cancelled; returning stored outcome")
            return self._stored_outcome(appointment_id, payment)

        if payment is not None and payment.status == PaymentStatus.PENDING.value:
            payment = self._settle_pending_intent(payment, appointment)

        if payment is None or not payment.patient_paid or payment.status != PaymentStatus.COMPLETED.value:
            with self.transaction():
                self.appointment_repository.mark_cancelled(appointment, reason, utc_now())
            self.logger.info(f"Cancelled unpaid appointment {appointment_id}")
            return CancellationResult(
                appointment_id=appointment_id,
                refund_type=None,
                refund_amount=ZERO,
                commission_refund=ZERO,
                payment_status=payment.status if payment else None,
            )

        start = appointment.starts_at
        assert start is not None
        now = utc_now()
        calc = calculate_refund(payment.appointment_price, payment.commission_amount, start, now)

        stripe_refund_id: Optional[str] = None
        if calc.refund_amount > 0:
            if not payment.stripe_charge_id:
                raise BusinessRuleException(
                    "Payment has no charge to refund", code="REFUND_NOT_POSSIBLE"
                )
            refund = self.gateway.create_refund(
                charge_id=payment.stripe_charge_id,
                amount_cents=to_minor_units(calc.refund_amount),
                metadata={
                    "paymentId": payment.id,
                    "appointmentId": appointment_id,
                    "refundType": calc.refund_type.value,
                },
                idempotency_key=f"refund-{payment.id}",
            )
            stripe_refund_id = refund.id

        with self.transaction():
            if calc.refund_type != RefundType.NO_REFUND:
                self._apply_cancellation_refund(payment, calc, reason, stripe_refund_id, now)
            else:
                # the doctor keeps the payout; refund_type marks the booking as settled
                self.payment_repository.apply_refund(
                    payment, refund_type=calc.refund_type.value, refund_reason=reason
                )
            self.payment_repository.create_refund_record(
                payment_id=payment.id,
                amount=calc.refund_amount,
                commission_refund=calc.commission_refund,
                refund_type=calc.refund_type.value,
                reason=reason,
                hours_before_appointment=calc.hours_before_appointment,
                stripe_refund_id=stripe_refund_id,
                status=(
                    RefundStatus.COMPLETED.value
                    if calc.refund_type == RefundType.NO_REFUND
                    else RefundStatus.PENDING.value
                ),
            )
            self.appointment_repository.mark_cancelled(appointment, reason, now)

        if calc.refund_type != RefundType.NO_REFUND:
            prometheus_metrics.inc_payment_transition(payment.status, "cancellation")
        self.logger.info(
            f"Cancelled appointment {appointment_id}: {calc.refund_type.value} refund of "
            f"{calc.refund_amount} ({calc.hours_before_appointment}h before start)"
        )

        if payment.doctor_paid and calc.refund_type != RefundType.NO_REFUND:
            self.payout_service.handle_refund_after_payout(payment.id, calc.commission_refund)

        return CancellationResult(
            appointment_id=appointment_id,
            refund_type=calc.refund_type.value,
            refund_amount=calc.refund_amount,
            commission_refund=calc.commission_refund,
            payment_status=payment.status,
        )

    def _settle_pending_intent(
        self, payment: AppointmentPayment, appointment: Appointment
    ) -> Optional[AppointmentPayment]:
        """
        Resolve the live intent of an unpaid booking before it is cancelled.

        An intent that already succeeded is recorded as paid so the refund
        policy applies to it. Any other intent is cancelled at Stripe and the
        payment marked FAILED, so the patient can no longer be charged.

        Raises:
            ConflictException: the intent is still processing at Stripe
            ProviderException: Stripe lookup or cancellation failed
        """
        intent_id = payment.stripe_payment_intent_id
        if not intent_id:
            return payment

        intent = self.gateway.retrieve_payment_intent(intent_id)
        intent_status = getattr(intent, "status", None)

        if intent_status == "processing":
            raise ConflictException(
                "Payment is still being processed; try again shortly",
                code="PAYMENT_PROCESSING",
                details={"payment_intent_id": intent_id},
            )

        if intent_status == "succeeded":
            with self.transaction():
                completed = self.payment_repository.mark_completed_if_pending(
                    intent_id, stripe_object_id(getattr(intent, "latest_charge", None)), utc_now()
                )
            if completed:
                prometheus_metrics.inc_payment_transition(PaymentStatus.COMPLETED.value, "cancellation")
                self.logger.info(f"Payment {payment.id} succeeded before cancellation; applying policy")
                appointment_end = appointment.ends_at
                assert appointment_end is not None
                self.payout_service.hold_doctor_payout(payment.id, appointment_end)
            return self.payment_repository.get_by_id(payment.id)

        if intent_status != "canceled":
            self.gateway.cancel_payment_intent(intent_id, cancellation_reason="requested_by_customer")
        with self.transaction():
            failed = self.payment_repository.mark_failed_if_pending(intent_id)
        if failed:
            prometheus_metrics.inc_payment_transition(PaymentStatus.FAILED.value, "cancellation")
            self.logger.info(f"Cancelled payment intent {intent_id} for payment {payment.id}")
        return self.payment_repository.get_by_id(payment.id)

    @BaseService.measure_operation("refund_cancelled_booking")
    def refund_cancelled_booking(
        self, payment: AppointmentPayment, appointment: Appointment
    ) -> AppointmentPayment:
        """
        Refund in full a payment that completed after its appointment was cancelled.

        The cancellation policy does not apply: the booking no longer exists,
        so the patient gets the whole price back and the doctor is owed nothing.
        """
        charge_id = payment.stripe_charge_id
        if not charge_id and payment.stripe_payment_intent_id:
            intent = self.gateway.retrieve_payment_intent(payment.stripe_payment_intent_id)
            charge_id = stripe_object_id(getattr(intent, "latest_charge", None))
        if not charge_id:
            raise BusinessRuleException("Payment has no charge to refund", code="REFUND_NOT_POSSIBLE")

        price = quantize_money(payment.appointment_price)
        refund = self.gateway.create_refund(
            charge_id=charge_id,
            amount_cents=to_minor_units(price),
            metadata={
                "paymentId": payment.id,
                "appointmentId": appointment.id,
                "refundType": RefundType.FULL.value,
            },
            idempotency_key=f"refund-{payment.id}",
        )

        now = utc_now()
        start = appointment.starts_at
        assert start is not None
        calc = RefundCalculation(
            RefundType.FULL,
            price,
            quantize_money(payment.commission_amount),
            whole_hours_between(start, now),
        )
        reason = "Payment completed after the appointment was cancelled"
        with self.transaction():
            if not payment.stripe_charge_id:
                self.payment_repository.apply_refund(payment, stripe_charge_id=charge_id)
            self._apply_cancellation_refund(payment, calc, reason, refund.id, now)
            self.payment_repository.create_refund_record(
                payment_id=payment.id,
                amount=calc.refund_amount,
                commission_refund=calc.commission_refund,
                refund_type=calc.refund_type.value,
                reason=reason,
                hours_before_appointment=calc.hours_before_appointment,
                stripe_refund_id=refund.id,
                status=RefundStatus.PENDING.value,
            )

        prometheus_metrics.inc_payment_transition(PaymentStatus.REFUNDED.value, "cancellation")
        self.logger.warning(
            f"Payment {payment.id} completed for cancelled appointment {appointment.id}; "
            f"refunded {price} in full ({refund.id})"
        )
        return payment

    def _apply_cancellation_refund(
        self,
        payment: AppointmentPayment,
        calc: RefundCalculation,
        reason: Optional[str],
        stripe_refund_id: Optional[str],
        refunded_at: datetime,
    ) -> None:
        price = quantize_money(payment.appointment_price)
        commission = quantize_money(payment.commission_amount)
        adjusted_payout = (price - calc.refund_amount) - (commission - calc.commission_refund)
        status = (
            PaymentStatus.REFUNDED
            if calc.refund_amount >= price
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        self.payment_repository.apply_refund(
            payment,
            refunded=True,
            refund_amount=calc.refund_amount,
            refund_reason=reason,
            refund_type=calc.refund_type.value,
            refunded_at=refunded_at,
            stripe_refund_id=stripe_refund_id,
            doctor_payout_amount=quantize_money(adjusted_payout),
            status=status.value,
        )

    def _stored_outcome(
        self, appointment_id: str, payment: Optional[AppointmentPayment]
    ) -> CancellationResult:
        refund = self.payment_repository.get_latest_refund(payment.id) if payment else None
        return CancellationResult(
            appointment_id=appointment_id,
            refund_type=refund.refund_type if refund else None,
            refund_amount=quantize_money(refund.amount) if refund else ZERO,
            commission_refund=quantize_money(refund.commission_refund) if refund else ZERO,
            payment_status=payment.status if payment else None,
            already_cancelled=True,
        )

    # ========== Stripe Reconciliation ==========

    @BaseService.measure_operation("apply_charge_refund")
    def apply_charge_refund(self, charge: Dict[str, Any]) -> Optional[AppointmentPayment]:
        """
        Record a refund reported by ``charge.refunded``.

        The refunded total only ever grows, so replays and out-of-order
        deliveries leave the row unchanged. The doctor payout amount is not
        recalculated here.
        """
        charge_id = charge.get("id")
        payment = self.payment_repository.get_by_charge_id(charge_id) if charge_id else None
        if payment is None and charge.get("payment_intent"):
            payment = self.payment_repository.get_by_payment_intent_id(charge["payment_intent"])
        if payment is None:
            self.logger.warning(f"charge.refunded for unknown charge {charge_id}")
            return None

        if not payment.patient_paid:
            self.logger.warning(f"charge.refunded for unpaid payment {payment.id}; ignored")
            return payment

        refunded_total = from_minor_units(int(charge.get("amount_refunded") or 0))
        if payment.refund_amount is not None and quantize_money(payment.refund_amount) >= refunded_total:
            self.logger.info(f"Refund of {refunded_total} for payment {payment.id} already recorded")
            return payment

        price = quantize_money(payment.appointment_price)
        status = PaymentStatus.REFUNDED if refunded_total >= price else PaymentStatus.PARTIALLY_REFUNDED
        with self.transaction():
            self.payment_repository.apply_refund(
                payment,
                refunded=True,
                refund_amount=refunded_total,
                refunded_at=payment.refunded_at or utc_now(),
                status=status.value,
            )

        prometheus_metrics.inc_payment_transition(status.value, "webhook")
        self.logger.info(f"Payment {payment.id} marked {status.value} ({refunded_total} refunded)")
        if payment.doctor_paid:
            self.payout_service.handle_refund_after_payout(payment.id, ZERO)
        return payment

    @BaseService.measure_operation("update_refund_status")
    def update_refund_status(self, refund: Dict[str, Any]) -> bool:
        """Track the Stripe-side status of a cancellation refund (``charge.refund.updated``)."""
        stripe_status = refund.get("status")
        mapped = {
            "succeeded": RefundStatus.COMPLETED,
            "failed": RefundStatus.FAILED,
            "canceled": RefundStatus.FAILED,
        }.get(stripe_status or "")
        if mapped is None or not refund.get("id"):
            return False
        with self.transaction():
            updated = self.payment_repository.update_refund_status(refund["id"], mapped.value)
        if updated and mapped == RefundStatus.FAILED:
            self.logger.error(f"Stripe refund {refund['id']} ended as {stripe_status}")
        return bool(updated)
