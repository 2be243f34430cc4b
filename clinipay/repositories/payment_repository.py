"""
Payment Repository for clinipay

Implements data access for appointment payments, doctor payout tracking
and cancellation refund records.

Status transitions that can race (client confirmation against webhook
delivery, overlapping payout sweeps) are expressed as conditional UPDATE
statements. Callers gate side effects on the returned row count.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Sequence, cast

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import AppointmentStatus, PaymentStatus, RefundStatus
from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment
from ..models.payment import AppointmentPayment, PaymentRefund
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

PAYOUT_ELIGIBLE_STATUSES = (
    PaymentStatus.COMPLETED.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
)


class PaymentRepository(BaseRepository[AppointmentPayment]):
    """
    Repository for appointment payment data access.
    """

    def __init__(self, db: Session):
        super().__init__(db, AppointmentPayment)
        self.logger = logging.getLogger(__name__)

    def _conditional_update(self, statement: Any, action: str) -> int:
        try:
            self.db.flush()
            result = self.db.execute(statement.execution_options(synchronize_session=False))
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to {action}: {str(e)}")
            raise RepositoryException(f"Failed to {action}: {str(e)}") from e

    # ========== Lookups ==========

    def get_by_id(self, id: str) -> Optional[AppointmentPayment]:
        """Load a payment, overwriting any stale copy left by a conditional update."""
        try:
            payment = (
                self.db.query(AppointmentPayment)
                .populate_existing()
                .filter(AppointmentPayment.id == id)
                .first()
            )
            return cast(Optional[AppointmentPayment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment {id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}")

    def get_by_appointment_id(self, appointment_id: str) -> Optional[AppointmentPayment]:
        try:
            payment = (
                self.db.query(AppointmentPayment)
                .populate_existing()
                .filter(AppointmentPayment.appointment_id == appointment_id)
                .first()
            )
            return cast(Optional[AppointmentPayment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by appointment: {str(e)}")
            raise RepositoryException(f"Failed to get payment by appointment: {str(e)}")

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[AppointmentPayment]:
        try:
            payment = (
                self.db.query(AppointmentPayment)
                .populate_existing()
                .filter(AppointmentPayment.stripe_payment_intent_id == payment_intent_id)
                .first()
            )
            return cast(Optional[AppointmentPayment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by intent: {str(e)}")
            raise RepositoryException(f"Failed to get payment by intent: {str(e)}")

    def get_by_transfer_id(self, transfer_id: str) -> Optional[AppointmentPayment]:
        try:
            payment = (
                self.db.query(AppointmentPayment)
                .populate_existing()
                .filter(AppointmentPayment.stripe_transfer_id == transfer_id)
                .first()
            )
            return cast(Optional[AppointmentPayment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by transfer: {str(e)}")
            raise RepositoryException(f"Failed to get payment by transfer: {str(e)}")

    def get_by_charge_id(self, charge_id: str) -> Optional[AppointmentPayment]:
        try:
            payment = (
                self.db.query(AppointmentPayment)
                .populate_existing()
                .filter(AppointmentPayment.stripe_charge_id == charge_id)
                .first()
            )
            return cast(Optional[AppointmentPayment], payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment by charge: {str(e)}")
            raise RepositoryException(f"Failed to get payment by charge: {str(e)}")

    # ========== Payment Lifecycle ==========

    def upsert_pending_payment(
        self,
        *,
        appointment_id: str,
        doctor_id: str,
        patient_id: str,
        appointment_price: Decimal,
        commission_percentage: Decimal,
        commission_amount: Decimal,
        doctor_payout_amount: Decimal,
        currency: str,
        stripe_payment_intent_id: str,
    ) -> AppointmentPayment:
        """
        Create the PENDING payment row for an appointment, or re-arm an
        unpaid one with a fresh intent.

        Callers must reject appointments whose payment already completed.
        """
        values: Dict[str, Any] = {
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "appointment_price": appointment_price,
            "commission_percentage": commission_percentage,
            "commission_amount": commission_amount,
            "doctor_payout_amount": doctor_payout_amount,
            "currency": currency,
            "stripe_payment_intent_id": stripe_payment_intent_id,
            "status": PaymentStatus.PENDING.value,
        }
        existing = self.get_by_appointment_id(appointment_id)
        if existing is None:
            return self.create(appointment_id=appointment_id, **values)

        try:
            for key, value in values.items():
                setattr(existing, key, value)
            self.db.flush()
            return existing
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to update pending payment: {str(e)}")
            raise RepositoryException(f"Failed to update pending payment: {str(e)}") from e

    def mark_completed_if_pending(
        self, payment_intent_id: str, charge_id: Optional[str], paid_at: datetime
    ) -> int:
        """PENDING -> COMPLETED for the given intent. Returns affected rows (0 or 1)."""
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.stripe_payment_intent_id == payment_intent_id,
                AppointmentPayment.status == PaymentStatus.PENDING.value,
            )
            .values(
                status=PaymentStatus.COMPLETED.value,
                patient_paid=True,
                patient_paid_at=paid_at,
                stripe_charge_id=charge_id,
            )
        )
        return self._conditional_update(statement, "mark payment completed")

    def mark_failed_if_pending(self, payment_intent_id: str) -> int:
        """PENDING -> FAILED for the given intent. Any other status is left alone."""
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.stripe_payment_intent_id == payment_intent_id,
                AppointmentPayment.status == PaymentStatus.PENDING.value,
            )
            .values(status=PaymentStatus.FAILED.value)
        )
        return self._conditional_update(statement, "mark payment failed")

    # ========== Payout Scheduling ==========

    def set_payout_schedule(
        self, payment_id: str, scheduled_at: datetime, *, allow_earlier: bool = False
    ) -> int:
        """
        Persist the payout hold time.

        Without ``allow_earlier`` an existing later schedule is kept.
        """
        conditions = [AppointmentPayment.id == payment_id]
        if not allow_earlier:
            conditions.append(
                or_(
                    AppointmentPayment.payout_scheduled_at.is_(None),
                    AppointmentPayment.payout_scheduled_at < scheduled_at,
                )
            )
        statement = (
            update(AppointmentPayment)
            .where(*conditions)
            .values(payout_scheduled_at=scheduled_at)
        )
        return self._conditional_update(statement, "schedule payout")

    def get_pending_payouts(self, now: datetime, limit: int = 50) -> List[AppointmentPayment]:
        """
        Due payouts: paid by the patient, not yet paid out, hold elapsed,
        and still in a payable status. A cancelled appointment only pays out
        once the cancellation policy has settled it (``refund_type`` set).
        """
        try:
            payments = (
                self.db.query(AppointmentPayment)
                .join(Appointment, Appointment.id == AppointmentPayment.appointment_id)
                .filter(
                    AppointmentPayment.patient_paid.is_(True),
                    AppointmentPayment.doctor_paid.is_(False),
                    AppointmentPayment.stripe_transfer_id.is_(None),
                    AppointmentPayment.payout_scheduled_at.isnot(None),
                    AppointmentPayment.payout_scheduled_at <= now,
                    AppointmentPayment.status.in_(PAYOUT_ELIGIBLE_STATUSES),
                    or_(
                        Appointment.status != AppointmentStatus.CANCELLED.value,
                        AppointmentPayment.refund_type.isnot(None),
                    ),
                )
                .order_by(AppointmentPayment.payout_scheduled_at.asc())
                .limit(limit)
                .all()
            )
            return cast(List[AppointmentPayment], payments)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get pending payouts: {str(e)}")
            raise RepositoryException(f"Failed to get pending payouts: {str(e)}")

    # ========== Transfers ==========

    def record_transfer(self, payment_id: str, transfer_id: str, paid_at: datetime) -> int:
        """
        Attach a transfer to an unpaid payment. Returns 0 if another sweep won.

        A row that already carries the same transfer id (its ``transfer.created``
        webhook landed first) counts as recorded.
        """
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.id == payment_id,
                or_(
                    and_(
                        AppointmentPayment.doctor_paid.is_(False),
                        AppointmentPayment.stripe_transfer_id.is_(None),
                    ),
                    and_(
                        AppointmentPayment.stripe_transfer_id == transfer_id,
                        AppointmentPayment.payout_confirmed.is_(True),
                    ),
                ),
            )
            .values(
                doctor_paid=True,
                doctor_paid_at=func.coalesce(AppointmentPayment.doctor_paid_at, paid_at),
                stripe_transfer_id=transfer_id,
            )
        )
        return self._conditional_update(statement, "record transfer")

    def confirm_transfer_for_payment(
        self, payment_id: str, transfer_id: str, confirmed_at: datetime
    ) -> int:
        """
        Record a Stripe-confirmed transfer against the payment named in its metadata.

        Used when ``transfer.created`` arrives before the sweep stored the
        transfer id. A payment holding a different transfer is left alone.
        """
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.id == payment_id,
                or_(
                    AppointmentPayment.stripe_transfer_id.is_(None),
                    AppointmentPayment.stripe_transfer_id == transfer_id,
                ),
            )
            .values(
                stripe_transfer_id=transfer_id,
                doctor_paid=True,
                doctor_paid_at=func.coalesce(AppointmentPayment.doctor_paid_at, confirmed_at),
                payout_confirmed=True,
            )
        )
        return self._conditional_update(statement, "confirm transfer for payment")

    def mark_transfer_confirmed(self, transfer_id: str) -> int:
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.stripe_transfer_id == transfer_id,
                AppointmentPayment.payout_confirmed.is_(False),
            )
            .values(payout_confirmed=True)
        )
        return self._conditional_update(statement, "confirm transfer")

    def mark_transfer_reversed(self, transfer_id: str, reversed_at: datetime) -> int:
        """Flag a clawback. ``doctor_paid`` is left untouched for the audit trail."""
        statement = (
            update(AppointmentPayment)
            .where(
                AppointmentPayment.stripe_transfer_id == transfer_id,
                AppointmentPayment.payout_reversed.is_(False),
            )
            .values(payout_reversed=True, payout_reversed_at=reversed_at)
        )
        return self._conditional_update(statement, "reverse transfer")

    # ========== Refunds ==========

    def apply_refund(self, payment: AppointmentPayment, **fields: Any) -> AppointmentPayment:
        try:
            for key, value in fields.items():
                setattr(payment, key, value)
            self.db.flush()
            return payment
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to apply refund to payment {payment.id}: {str(e)}")
            raise RepositoryException(f"Failed to apply refund: {str(e)}") from e

    def create_refund_record(self, **kwargs: Any) -> PaymentRefund:
        try:
            refund = PaymentRefund(**kwargs)
            self.db.add(refund)
            self.db.flush()
            return refund
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create refund record: {str(e)}")
            raise RepositoryException(f"Failed to create refund record: {str(e)}") from e

    def get_latest_refund(self, payment_id: str) -> Optional[PaymentRefund]:
        try:
            refund = (
                self.db.query(PaymentRefund)
                .filter(PaymentRefund.payment_id == payment_id)
                .order_by(PaymentRefund.created_at.desc(), PaymentRefund.id.desc())
                .first()
            )
            return cast(Optional[PaymentRefund], refund)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get refund record: {str(e)}")
            raise RepositoryException(f"Failed to get refund record: {str(e)}")

    def update_refund_status(self, stripe_refund_id: str, status: str) -> int:
        try:
            self.db.flush()
            result = self.db.execute(
                update(PaymentRefund)
                .where(PaymentRefund.stripe_refund_id == stripe_refund_id)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to update refund status: {str(e)}")
            raise RepositoryException(f"Failed to update refund status: {str(e)}") from e

    # ========== History and Reporting ==========

    def list_for_doctor(self, doctor_id: str, limit: int = 100) -> List[AppointmentPayment]:
        """Newest first."""
        with self._guard("list doctor payments"):
            payments = (
                self.db.query(AppointmentPayment)
                .filter(AppointmentPayment.doctor_id == doctor_id)
                .order_by(AppointmentPayment.created_at.desc(), AppointmentPayment.id.desc())
                .limit(limit)
                .all()
            )
            return cast(List[AppointmentPayment], payments)

    def list_for_patient(self, patient_id: str, limit: int = 100) -> List[AppointmentPayment]:
        with self._guard("list patient payments"):
            payments = (
                self.db.query(AppointmentPayment)
                .filter(AppointmentPayment.patient_id == patient_id)
                .order_by(AppointmentPayment.created_at.desc(), AppointmentPayment.id.desc())
                .limit(limit)
                .all()
            )
            return cast(List[AppointmentPayment], payments)

    def list_recent(self, statuses: Sequence[str], limit: int = 50) -> List[AppointmentPayment]:
        with self._guard("list recent payments"):
            payments = (
                self.db.query(AppointmentPayment)
                .filter(AppointmentPayment.status.in_(statuses))
                .order_by(AppointmentPayment.created_at.desc(), AppointmentPayment.id.desc())
                .limit(limit)
                .all()
            )
            return cast(List[AppointmentPayment], payments)

    def count_by_status(self, status: str) -> int:
        with self._guard("count payments"):
            return int(
                self.db.query(func.count(AppointmentPayment.id))
                .filter(AppointmentPayment.status == status)
                .scalar()
                or 0
            )

    def sum_commission(
        self, statuses: Sequence[str], since: Optional[datetime] = None
    ) -> Decimal:
        """Commission charged on payments in ``statuses``, optionally created on or after ``since``."""
        query = self.db.query(
            func.coalesce(func.sum(AppointmentPayment.commission_amount), 0)
        ).filter(AppointmentPayment.status.in_(statuses))
        if since is not None:
            query = query.filter(AppointmentPayment.created_at >= since)
        with self._guard("sum commission"):
            return Decimal(str(query.scalar() or 0))

    def sum_commission_refunded(
        self, statuses: Sequence[str], since: Optional[datetime] = None
    ) -> Decimal:
        """
        Commission handed back through cancellation refunds on payments in
        ``statuses``. Failed Stripe refunds are not counted.
        """
        query = (
            self.db.query(func.coalesce(func.sum(PaymentRefund.commission_refund), 0))
            .join(AppointmentPayment, AppointmentPayment.id == PaymentRefund.payment_id)
            .filter(
                AppointmentPayment.status.in_(statuses),
                PaymentRefund.status != RefundStatus.FAILED.value,
            )
        )
        if since is not None:
            query = query.filter(AppointmentPayment.created_at >= since)
        with self._guard("sum refunded commission"):
            return Decimal(str(query.scalar() or 0))

    def list_completed_since(self, since: datetime) -> List[AppointmentPayment]:
        """COMPLETED payments created on or after ``since``, oldest first."""
        with self._guard("list completed payments"):
            payments = (
                self.db.query(AppointmentPayment)
                .filter(
                    AppointmentPayment.status == PaymentStatus.COMPLETED.value,
                    AppointmentPayment.created_at >= since,
                )
                .order_by(AppointmentPayment.created_at.asc())
                .all()
            )
            return cast(List[AppointmentPayment], payments)
