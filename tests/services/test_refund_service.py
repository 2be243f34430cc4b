"""
Tests for RefundService: cancellation refunds and Stripe refund reconciliation.
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from clinipay.core.enums import AppointmentStatus, PaymentStatus, RefundStatus, RefundType
from clinipay.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
)
from clinipay.core.timezone_utils import utc_now
from clinipay.models.appointment import Appointment
from clinipay.models.payment import AppointmentPayment, PaymentRefund
from clinipay.services.payout_service import PayoutService
from clinipay.services.refund_service import RefundService


@pytest.fixture
def refund_service(db, gateway) -> RefundService:
    return RefundService(db, gateway, PayoutService(db, gateway))


def _reload(db, payment_id):
    db.expire_all()
    return db.get(AppointmentPayment, payment_id)


class TestHandleCancellation:
    def test_full_refund_when_cancelled_a_day_ahead(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=3))
        payment = make_payment(appointment)

        result = refund_service.handle_cancellation(appointment.id, "schedule conflict", patient_user)

        assert result.refund_type == RefundType.FULL.value
        assert result.refund_amount == Decimal("100.00")
        assert result.commission_refund == Decimal("5.00")
        assert result.payment_status == PaymentStatus.REFUNDED.value

        kwargs = gateway.create_refund.call_args.kwargs
        assert kwargs["charge_id"] == "ch_test_1"
        assert kwargs["amount_cents"] == 10000
        assert kwargs["idempotency_key"] == f"refund-{payment.id}"

        stored = _reload(db, payment.id)
        assert stored.status == PaymentStatus.REFUNDED.value
        assert stored.refunded is True
        assert stored.refund_amount == Decimal("100.00")
        assert stored.doctor_payout_amount == Decimal("0.00")
        assert stored.stripe_refund_id == "re_test_1"
        assert stored.appointment.status == AppointmentStatus.CANCELLED.value
        assert stored.appointment.cancellation_reason == "schedule conflict"

        record = db.query(PaymentRefund).filter_by(payment_id=payment.id).one()
        assert record.refund_type == RefundType.FULL.value
        assert record.status == RefundStatus.PENDING.value
        assert record.hours_before_appointment >= 24

    def test_partial_refund_within_a_day(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(hours=5))
        payment = make_payment(appointment)

        result = refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert result.refund_type == RefundType.PARTIAL.value
        assert result.refund_amount == Decimal("50.00")
        assert result.commission_refund == Decimal("2.50")
        assert gateway.create_refund.call_args.kwargs["amount_cents"] == 5000

        stored = _reload(db, payment.id)
        assert stored.status == PaymentStatus.PARTIALLY_REFUNDED.value
        # (100 - 50) paid by the patient minus (5 - 2.50) kept by the platform
        assert stored.doctor_payout_amount == Decimal("47.50")

    def test_no_refund_inside_the_last_hour(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(minutes=30))
        payment = make_payment(appointment)

        result = refund_service.handle_cancellation(appointment.id, "late", patient_user)

        assert result.refund_type == RefundType.NO_REFUND.value
        assert result.refund_amount == Decimal("0.00")
        gateway.create_refund.assert_not_called()

        stored = _reload(db, payment.id)
        assert stored.status == PaymentStatus.COMPLETED.value
        assert stored.doctor_payout_amount == Decimal("95.00")
        assert stored.refund_type == RefundType.NO_REFUND.value
        assert stored.refunded is False
        assert stored.appointment.status == AppointmentStatus.CANCELLED.value
        record = db.query(PaymentRefund).filter_by(payment_id=payment.id).one()
        assert record.status == RefundStatus.COMPLETED.value

    def test_second_cancellation_returns_stored_outcome(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=2))
        payment = make_payment(appointment)
        refund_service.handle_cancellation(appointment.id, None, patient_user)

        again = refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert again.already_cancelled is True
        assert again.refund_type == RefundType.FULL.value
        assert again.refund_amount == Decimal("100.00")
        assert gateway.create_refund.call_count == 1
        assert db.query(PaymentRefund).filter_by(payment_id=payment.id).count() == 1

    def test_unpaid_appointment_cancels_the_live_intent(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment()
        payment = make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_live")
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_live", status="requires_payment_method", latest_charge=None
        )

        result = refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert result.refund_type is None
        assert result.payment_status == PaymentStatus.FAILED.value
        gateway.cancel_payment_intent.assert_called_once_with(
            "pi_live", cancellation_reason="requested_by_customer"
        )
        gateway.create_refund.assert_not_called()
        db.expire_all()
        assert db.get(Appointment, appointment.id).status == AppointmentStatus.CANCELLED.value
        assert db.get(AppointmentPayment, payment.id).status == PaymentStatus.FAILED.value

    def test_intent_already_cancelled_at_stripe_is_not_cancelled_again(
        self, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment()
        make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_dead")
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_dead", status="canceled", latest_charge=None
        )

        result = refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert result.payment_status == PaymentStatus.FAILED.value
        gateway.cancel_payment_intent.assert_not_called()

    def test_intent_that_already_succeeded_gets_the_policy_refund(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=3))
        payment = make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_won")
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_won", status="succeeded", latest_charge="ch_won"
        )

        result = refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert result.refund_type == RefundType.FULL.value
        assert result.refund_amount == Decimal("100.00")
        gateway.cancel_payment_intent.assert_not_called()
        assert gateway.create_refund.call_args.kwargs["charge_id"] == "ch_won"
        stored = _reload(db, payment.id)
        assert stored.status == PaymentStatus.REFUNDED.value
        assert stored.patient_paid is True
        assert stored.doctor_payout_amount == Decimal("0.00")

    def test_processing_intent_blocks_cancellation(
        self, db, refund_service, gateway, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment()
        make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_busy")
        gateway.retrieve_payment_intent.return_value = SimpleNamespace(
            id="pi_busy", status="processing", latest_charge=None
        )

        with pytest.raises(ConflictException) as exc_info:
            refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert exc_info.value.code == "PAYMENT_PROCESSING"
        gateway.cancel_payment_intent.assert_not_called()
        db.expire_all()
        assert db.get(Appointment, appointment.id).status != AppointmentStatus.CANCELLED.value

    def test_treating_doctor_may_cancel(
        self, refund_service, make_appointment, make_payment, doctor_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=2))
        make_payment(appointment)

        result = refund_service.handle_cancellation(appointment.id, "doctor unavailable", doctor_user)

        assert result.refund_type == RefundType.FULL.value

    def test_unrelated_patient_is_forbidden(
        self, refund_service, make_appointment, make_payment, other_patient
    ):
        appointment = make_appointment()
        make_payment(appointment)

        with pytest.raises(ForbiddenException):
            refund_service.handle_cancellation(appointment.id, None, other_patient)

    def test_unknown_appointment(self, refund_service, patient_user):
        with pytest.raises(NotFoundException):
            refund_service.handle_cancellation("missing", None, patient_user)

    def test_paid_without_charge_cannot_be_refunded(
        self, db, refund_service, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=2))
        make_payment(appointment, charge_id=None)

        with pytest.raises(BusinessRuleException) as exc_info:
            refund_service.handle_cancellation(appointment.id, None, patient_user)
        assert exc_info.value.code == "REFUND_NOT_POSSIBLE"
        db.expire_all()
        assert db.get(Appointment, appointment.id).status != AppointmentStatus.CANCELLED.value

    def test_refund_after_payout_is_flagged(
        self, refund_service, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=2))
        payment = make_payment(
            appointment, doctor_paid=True, stripe_transfer_id="tr_paid", doctor_paid_at=utc_now()
        )

        with patch.object(refund_service.payout_service, "handle_refund_after_payout") as flagged:
            refund_service.handle_cancellation(appointment.id, None, patient_user)

        flagged.assert_called_once_with(payment.id, Decimal("5.00"))


class TestApplyChargeRefund:
    def test_partial_then_full_refund(self, db, refund_service, make_appointment, make_payment):
        payment = make_payment(make_appointment(), charge_id="ch_r1")

        refund_service.apply_charge_refund({"id": "ch_r1", "amount_refunded": 3000})
        stored = _reload(db, payment.id)
        assert stored.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert stored.refund_amount == Decimal("30.00")
        assert stored.doctor_payout_amount == Decimal("95.00")

        refund_service.apply_charge_refund({"id": "ch_r1", "amount_refunded": 10000})
        assert _reload(db, payment.id).status == PaymentStatus.REFUNDED.value

    def test_replay_and_stale_events_do_not_shrink_refund(
        self, db, refund_service, make_appointment, make_payment
    ):
        payment = make_payment(make_appointment(), charge_id="ch_r2")
        refund_service.apply_charge_refund({"id": "ch_r2", "amount_refunded": 6000})

        refund_service.apply_charge_refund({"id": "ch_r2", "amount_refunded": 6000})
        refund_service.apply_charge_refund({"id": "ch_r2", "amount_refunded": 2000})

        stored = _reload(db, payment.id)
        assert stored.refund_amount == Decimal("60.00")
        assert stored.status == PaymentStatus.PARTIALLY_REFUNDED.value

    def test_lookup_falls_back_to_payment_intent(
        self, db, refund_service, make_appointment, make_payment
    ):
        payment = make_payment(make_appointment(), intent_id="pi_by_intent", charge_id="ch_other")

        result = refund_service.apply_charge_refund(
            {"id": "ch_unknown", "payment_intent": "pi_by_intent", "amount_refunded": 10000}
        )

        assert result is not None and result.id == payment.id
        assert _reload(db, payment.id).status == PaymentStatus.REFUNDED.value

    def test_unknown_charge_is_ignored(self, refund_service):
        assert refund_service.apply_charge_refund({"id": "ch_ghost", "amount_refunded": 100}) is None


class TestUpdateRefundStatus:
    def test_provider_status_is_mapped(
        self, db, refund_service, make_appointment, make_payment, patient_user
    ):
        appointment = make_appointment(starts_in=timedelta(days=2))
        payment = make_payment(appointment)
        refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert refund_service.update_refund_status({"id": "re_test_1", "status": "pending"}) is False
        assert refund_service.update_refund_status({"id": "re_test_1", "status": "succeeded"}) is True

        db.expire_all()
        record = db.query(PaymentRefund).filter_by(payment_id=payment.id).one()
        assert record.status == RefundStatus.COMPLETED.value

    def test_failed_refund(self, db, refund_service, make_appointment, make_payment, patient_user):
        appointment = make_appointment(starts_in=timedelta(days=2))
        payment = make_payment(appointment)
        refund_service.handle_cancellation(appointment.id, None, patient_user)

        assert refund_service.update_refund_status({"id": "re_test_1", "status": "failed"}) is True

        db.expire_all()
        record = db.query(PaymentRefund).filter_by(payment_id=payment.id).one()
        assert record.status == RefundStatus.FAILED.value
