"""
Payment Service for clinipay

Orchestrates appointment payments against Stripe:

- create a payment intent and the local PENDING payment row
- reuse or cancel the intent left behind by an earlier attempt
- confirm payments from the client confirmation call and from webhooks
- record failed payment attempts

Confirmation is a single conditional transition per payment intent. Both
call sites may race; only the call that actually moves the row from PENDING
to COMPLETED runs the follow-up side effects (appointment auto-confirmation,
payout hold, confirmation email), and those are best-effort.
A payment that completes after its appointment was cancelled is refunded in
full instead.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import PaymentStatus, RoleName
from ..core.exceptions import (
    AlreadyPaidException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import AppointmentPayment
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.doctor_repository import DoctorRepository
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService
from .commission import calculate_commission, quantize_money, to_minor_units
from .commission_settings_service import CommissionSettingsService
from .email_service import EmailService
from .payout_service import PayoutService
from .refund_service import RefundService
from .stripe_gateway import StripeGateway, stripe_object_id

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

PAID_STATUSES = (
    PaymentStatus.COMPLETED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
)

HISTORY_LIMIT = 100

# intents the client can still confirm with the secret it already holds
REUSABLE_INTENT_STATUSES = ("requires_payment_method", "requires_confirmation", "requires_action")


@dataclass(frozen=True)
class PaymentIntentResult:
    client_secret: str
    payment_intent_id: str
    payment_id: str
    appointment_price: Decimal
    commission_amount: Decimal
    doctor_payout_amount: Decimal
    commission_percentage: Decimal


@dataclass(frozen=True)
class ConfirmationResult:
    payment: AppointmentPayment
    transitioned: bool


class PaymentService(BaseService):
    """Payment intent creation, confirmation and failure handling."""

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        *,
        gateway: Optional[StripeGateway] = None,
        commission_settings: Optional[CommissionSettingsService] = None,
        payout_service: Optional[PayoutService] = None,
        refund_service: Optional[RefundService] = None,
    ):
        super().__init__(db, cache)
        self.payment_repository = PaymentRepository(db)
        self.appointment_repository = AppointmentRepository(db)
        self.doctor_repository = DoctorRepository(db)
        self.gateway = gateway or StripeGateway()
        self.commission_settings = commission_settings or CommissionSettingsService(db, cache)
        self.payout_service = payout_service or PayoutService(db, self.gateway)
        self.refund_service = refund_service or RefundService(db, self.gateway, self.payout_service)

    # ========== Intent Creation ==========

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(
        self,
        appointment_id: str,
        appointment_price: Any,
        doctor_id: str,
        user: User,
    ) -> PaymentIntentResult:
        """
        Create a Stripe payment intent for an appointment.

        An unpaid appointment keeps its outstanding intent while the client can
        still confirm it; otherwise that intent is cancelled before a new one
        replaces it, so at most one intent per appointment can charge the patient.

        Raises:
            NotFoundException: appointment does not exist
            ForbiddenException: caller neither owns the appointment nor is admin
            ValidationException: doctor or price does not match the appointment
            AlreadyPaidException: the appointment already has a completed payment
            ConflictException: the outstanding intent is still processing at Stripe
            ProviderException: Stripe call failed
        """
        appointment = self.appointment_repository.get_by_id(appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found", details={"appointment_id": appointment_id})

        if not user.is_admin and appointment.patient_id != user.id:
            raise ForbiddenException("You can only pay for your own appointments")

        if appointment.doctor_id != doctor_id:
            raise ValidationException(
                "Doctor does not match the appointment",
                code="DOCTOR_MISMATCH",
                details={"doctor_id": doctor_id},
            )
        if appointment.is_cancelled:
            raise BusinessRuleException(
                "Cannot pay for a cancelled appointment", code="APPOINTMENT_CANCELLED"
            )

        price = quantize_money(appointment_price)
        if price <= 0:
            raise ValidationException("Appointment price must be positive", code="INVALID_PRICE")
        if price != quantize_money(appointment.price):
            raise ValidationException(
                "Price does not match the appointment",
                code="PRICE_MISMATCH",
                details={"expected": str(quantize_money(appointment.price)), "received": str(price)},
            )

        existing = self.payment_repository.get_by_appointment_id(appointment_id)
        if existing is not None and (existing.patient_paid or existing.status in PAID_STATUSES):
            self.logger.info(f"Payment intent requested for already-paid appointment {appointment_id}")
            raise AlreadyPaidException(appointment_id)

        if existing is not None and existing.status == PaymentStatus.PENDING.value:
            reused = self._reuse_pending_intent(existing, price)
            if reused is not None:
                return reused

        percentage = self.commission_settings.get_commission_percentage()
        breakdown = calculate_commission(price, percentage)
        currency = settings.stripe_currency

        intent = self.gateway.create_payment_intent(
            amount_cents=to_minor_units(breakdown.appointment_price),
            currency=currency,
            metadata={
                "appointmentId": appointment.id,
                "doctorId": appointment.doctor_id,
                "patientId": appointment.patient_id,
                "appointmentPrice": str(breakdown.appointment_price),
                "commissionAmount": str(breakdown.commission_amount),
                "commissionPercentage": str(breakdown.commission_percentage),
                "doctorPayoutAmount": str(breakdown.payout_amount),
            },
        )

        with self.transaction():
            payment = self.payment_repository.upsert_pending_payment(
                appointment_id=appointment.id,
                doctor_id=appointment.doctor_id,
                patient_id=appointment.patient_id,
                appointment_price=breakdown.appointment_price,
                commission_percentage=breakdown.commission_percentage,
                commission_amount=breakdown.commission_amount,
                doctor_payout_amount=breakdown.payout_amount,
                currency=currency,
                stripe_payment_intent_id=intent.id,
            )

        self.logger.info(
            f"Created payment intent {intent.id} for appointment {appointment.id} "
            f"(price={breakdown.appointment_price}, commission={breakdown.commission_amount})"
        )
        return PaymentIntentResult(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            payment_id=payment.id,
            appointment_price=breakdown.appointment_price,
            commission_amount=breakdown.commission_amount,
            doctor_payout_amount=breakdown.payout_amount,
            commission_percentage=breakdown.commission_percentage,
        )

    def _reuse_pending_intent(
        self, payment: AppointmentPayment, price: Decimal
    ) -> Optional[PaymentIntentResult]:
        """
        Settle the intent a PENDING payment already points at.

        Returns the existing intent when the client can still confirm it, or
        None once it has been cancelled and a fresh intent may replace it.
        """
        intent_id = payment.stripe_payment_intent_id
        if not intent_id:
            return None

        intent = self.gateway.retrieve_payment_intent(intent_id)
        intent_status = getattr(intent, "status", None)

        if intent_status == "succeeded":
            # the webhook has not landed yet; record the payment now
            self.confirm_payment(
                intent_id,
                stripe_object_id(getattr(intent, "latest_charge", None)),
                payment.appointment_id,
                source="reconcile",
            )
            raise AlreadyPaidException(payment.appointment_id)

        if intent_status == "processing":
            raise ConflictException(
                "A payment for this appointment is being processed",
                code="PAYMENT_PROCESSING",
                details={"appointment_id": payment.appointment_id},
            )

        if (
            intent_status in REUSABLE_INTENT_STATUSES
            and getattr(intent, "amount", None) == to_minor_units(price)
            and getattr(intent, "currency", None) == payment.currency
        ):
            self.logger.info(
                f"Reusing payment intent {intent_id} for appointment {payment.appointment_id}"
            )
            return PaymentIntentResult(
                client_secret=intent.client_secret,
                payment_intent_id=intent_id,
                payment_id=payment.id,
                appointment_price=quantize_money(payment.appointment_price),
                commission_amount=quantize_money(payment.commission_amount),
                doctor_payout_amount=quantize_money(payment.doctor_payout_amount),
                commission_percentage=Decimal(payment.commission_percentage),
            )

        if intent_status != "canceled":
            self.gateway.cancel_payment_intent(intent_id, cancellation_reason="abandoned")
        self.logger.info(f"Replacing payment intent {intent_id} ({intent_status})")
        return None

    # ========== Confirmation ==========

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(
        self,
        payment_intent_id: str,
        charge_id: Optional[str],
        appointment_id: Optional[str] = None,
        *,
        source: str = "webhook",
    ) -> ConfirmationResult:
        """
        Move the payment for ``payment_intent_id`` from PENDING to COMPLETED.

        Idempotent: a payment that is already past PENDING is returned as-is
        and no side effects run.

        A payment that completes for an appointment cancelled in the meantime is
        refunded in full instead; no payout is held and no email goes out.

        Raises:
            NotFoundException: no payment row for this intent
            ValidationException: ``appointment_id`` does not match the payment
            ProviderException: the refund for a cancelled appointment failed
        """
        payment = self.payment_repository.get_by_payment_intent_id(payment_intent_id)
        if payment is None:
            raise NotFoundException(
                "Payment not found for payment intent",
                details={"payment_intent_id": payment_intent_id},
            )
        if appointment_id and payment.appointment_id != appointment_id:
            raise ValidationException(
                "Payment intent does not belong to this appointment",
                code="APPOINTMENT_MISMATCH",
                details={"appointment_id": appointment_id},
            )

        with self.transaction():
            transitioned = self.payment_repository.mark_completed_if_pending(
                payment_intent_id, charge_id, utc_now()
            )

        payment = self.payment_repository.get_by_payment_intent_id(payment_intent_id)
        assert payment is not None

        if transitioned:
            prometheus_metrics.inc_payment_transition(PaymentStatus.COMPLETED.value, source)

        # checked on redelivery as well, so a failed refund is retried
        appointment = self.appointment_repository.get_for_update(payment.appointment_id)
        if (
            appointment is not None
            and appointment.is_cancelled
            and payment.status == PaymentStatus.COMPLETED.value
            and payment.refund_type is None
        ):
            payment = self.refund_service.refund_cancelled_booking(payment, appointment)
            return ConfirmationResult(payment=payment, transitioned=transitioned)

        if not transitioned:
            if payment.status == PaymentStatus.FAILED.value:
                self.logger.error(
                    f"Success reported for failed payment {payment.id} (intent {payment_intent_id}); "
                    f"needs manual reconciliation"
                )
            else:
                self.logger.info(
                    f"Payment {payment.id} already {payment.status}; confirmation via {source} ignored"
                )
            return ConfirmationResult(payment=payment, transitioned=False)

        self.logger.info(f"Payment {payment.id} completed via {source} (intent {payment_intent_id})")
        self._run_confirmation_side_effects(payment)
        return ConfirmationResult(payment=payment, transitioned=True)

    def _run_confirmation_side_effects(self, payment: AppointmentPayment) -> None:
        """Best-effort follow-ups for the first successful confirmation."""
        appointment = self.appointment_repository.get_for_update(payment.appointment_id)
        if appointment is None:
            self.logger.error(f"Appointment {payment.appointment_id} missing for payment {payment.id}")
            return

        try:
            with self.transaction():
                promoted = self.appointment_repository.confirm_if_pending(appointment.id, utc_now())
            if promoted:
                self.logger.info(f"Appointment {appointment.id} auto-confirmed after payment")
        except Exception as e:
            self.logger.error(f"Failed to auto-confirm appointment {appointment.id}: {str(e)}")

        try:
            appointment_end = appointment.ends_at
            assert appointment_end is not None
            self.payout_service.hold_doctor_payout(payment.id, appointment_end)
        except Exception as e:
            self.db.rollback()
            self.logger.error(f"Failed to schedule payout for payment {payment.id}: {str(e)}")

        try:
            appointment = self.appointment_repository.get_for_update(appointment.id)
            if appointment is not None:
                EmailService(self.db, self.cache).send_appointment_confirmation(appointment)
        except Exception as e:
            self.logger.error(f"Failed to send confirmation email for payment {payment.id}: {str(e)}")

    @BaseService.measure_operation("confirm_from_client")
    def confirm_from_client(
        self,
        payment_intent_id: str,
        user: User,
        appointment_id: Optional[str] = None,
    ) -> ConfirmationResult:
        """
        Client-initiated confirmation after Stripe.js reports success.

        The intent is re-read from Stripe; the client's word is not trusted.

        Raises:
            ValidationException: intent has not succeeded
            NotFoundException: unknown intent
            ForbiddenException: caller neither owns the payment nor is admin
        """
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        intent_status = getattr(intent, "status", None)
        if intent_status != "succeeded":
            raise ValidationException(
                "Payment has not succeeded",
                code="PAYMENT_NOT_SUCCEEDED",
                details={"status": intent_status},
            )

        payment = self.payment_repository.get_by_payment_intent_id(payment_intent_id)
        if payment is None:
            raise NotFoundException(
                "Payment not found for payment intent",
                details={"payment_intent_id": payment_intent_id},
            )
        if not user.is_admin and payment.patient_id != user.id:
            raise ForbiddenException("You can only confirm your own payments")

        return self.confirm_payment(
            payment_intent_id,
            stripe_object_id(getattr(intent, "latest_charge", None)),
            appointment_id,
            source="client",
        )

    # ========== Failures ==========

    @BaseService.measure_operation("mark_payment_failed")
    def mark_payment_failed(
        self, payment_intent_id: str, appointment_id: Optional[str] = None
    ) -> bool:
        """
        Record a failed payment attempt.

        Only a PENDING payment becomes FAILED; a completed or refunded payment
        is never downgraded by a late or out-of-order failure event.
        """
        with self.transaction():
            updated = self.payment_repository.mark_failed_if_pending(payment_intent_id)

        if updated:
            prometheus_metrics.inc_payment_transition(PaymentStatus.FAILED.value, "webhook")
            self.logger.info(f"Payment for intent {payment_intent_id} marked failed")
            return True

        payment = self.payment_repository.get_by_payment_intent_id(payment_intent_id)
        if payment is None:
            raise NotFoundException(
                "Payment not found for payment intent",
                details={"payment_intent_id": payment_intent_id, "appointment_id": appointment_id},
            )
        self.logger.info(
            f"Failure for intent {payment_intent_id} ignored; payment is {payment.status}"
        )
        return False

    # ========== Queries ==========

    @BaseService.measure_operation("get_payment_for_appointment")
    def get_payment_for_appointment(self, appointment_id: str, user: User) -> AppointmentPayment:
        payment = self.payment_repository.get_by_appointment_id(appointment_id)
        if payment is None:
            raise NotFoundException("Payment not found", details={"appointment_id": appointment_id})
        if not (user.is_admin or payment.patient_id == user.id or self._is_treating_doctor(payment, user)):
            raise ForbiddenException()
        return payment

    @staticmethod
    def _is_treating_doctor(payment: AppointmentPayment, user: User) -> bool:
        doctor = payment.doctor
        return doctor is not None and doctor.user_id == user.id

    @staticmethod
    def build_summary(payment: AppointmentPayment) -> Dict[str, Any]:
        scheduled: Optional[datetime] = ensure_utc(payment.payout_scheduled_at)
        return {
            "id": payment.id,
            "appointment_id": payment.appointment_id,
            "status": payment.status,
            "appointment_price": payment.appointment_price,
            "commission_amount": payment.commission_amount,
            "doctor_payout_amount": payment.doctor_payout_amount,
            "currency": payment.currency,
            "patient_paid": payment.patient_paid,
            "doctor_paid": payment.doctor_paid,
            "refunded": payment.refunded,
            "refund_amount": payment.refund_amount,
            "payout_scheduled_at": scheduled,
            "stripe_payment_intent_id": payment.stripe_payment_intent_id,
        }

    @staticmethod
    def build_history_item(payment: AppointmentPayment) -> Dict[str, Any]:
        """Summary plus the appointment and refund context shown in payment lists."""
        appointment = payment.appointment
        return {
            **PaymentService.build_summary(payment),
            "refund_type": payment.refund_type,
            "created_at": ensure_utc(payment.created_at),
            "appointment_status": appointment.status if appointment is not None else None,
            "appointment_starts_at": ensure_utc(appointment.starts_at) if appointment is not None else None,
        }

    # ========== History ==========

    @BaseService.measure_operation("list_doctor_payments")
    def list_doctor_payments(
        self, doctor_id: str, user: User, limit: int = HISTORY_LIMIT
    ) -> List[AppointmentPayment]:
        """
        Payment history of one doctor, newest first.

        Raises:
            NotFoundException: unknown doctor
            ForbiddenException: caller is neither that doctor nor an admin
        """
        doctor = self.doctor_repository.get_by_id(doctor_id)
        if doctor is None:
            raise NotFoundException("Doctor not found", details={"doctor_id": doctor_id})
        if not user.is_admin and doctor.user_id != user.id:
            raise ForbiddenException("You can only view your own payments")
        return self.payment_repository.list_for_doctor(doctor_id, limit)

    @BaseService.measure_operation("list_patient_payments")
    def list_patient_payments(self, user: User, limit: int = HISTORY_LIMIT) -> List[AppointmentPayment]:
        """The caller's own payments as a patient, newest first."""
        if user.role != RoleName.PATIENT.value:
            raise ForbiddenException("Only patients have a payment history")
        return self.payment_repository.list_for_patient(user.id, limit)
