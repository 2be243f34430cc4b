"""
Tests for PaymentRepository conditional updates.

Each transition must report whether it changed a row so that racing callers
can tell who won.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from clinipay.core.enums import AppointmentStatus, PaymentStatus, RefundStatus, RefundType
from clinipay.core.exceptions import RepositoryException
from clinipay.core.timezone_utils import ensure_utc, utc_now
from clinipay.repositories.payment_repository import PaymentRepository


@pytest.fixture
def repo(db) -> PaymentRepository:
    return PaymentRepository(db)


class TestStatusTransitions:
    def test_complete_only_once(self, repo, make_appointment, make_payment):
        payment = make_payment(make_appointment(), status=PaymentStatus.PENDING.value, intent_id="pi_r1")

        assert repo.mark_completed_if_pending("pi_r1", "ch_r1", utc_now()) == 1
        assert repo.mark_completed_if_pending("pi_r1", "ch_r1", utc_now()) == 0

        stored = repo.get_by_id(payment.id)
        assert stored.status == PaymentStatus.COMPLETED.value
        assert stored.patient_paid is True

    def test_fail_never_touches_completed(self, repo, make_appointment, make_payment):
        make_payment(make_appointment(), intent_id="pi_r2")

        assert repo.mark_failed_if_pending("pi_r2") == 0
        assert repo.get_by_payment_intent_id("pi_r2").status == PaymentStatus.COMPLETED.value

    def test_upsert_rearms_existing_row(self, repo, make_appointment, make_payment):
        appointment = make_appointment()
        payment = make_payment(appointment, status=PaymentStatus.FAILED.value, intent_id="pi_old")

        rearmed = repo.upsert_pending_payment(
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            appointment_price=payment.appointment_price,
            commission_percentage=payment.commission_percentage,
            commission_amount=payment.commission_amount,
            doctor_payout_amount=payment.doctor_payout_amount,
            currency="usd",
            stripe_payment_intent_id="pi_fresh",
        )

        assert rearmed.id == payment.id
        assert rearmed.status == PaymentStatus.PENDING.value
        assert repo.get_by_payment_intent_id("pi_old") is None


class TestPayoutSchedule:
    def test_schedule_never_moves_earlier(self, repo, make_appointment, make_payment):
        payment = make_payment(make_appointment())
        later = utc_now() + timedelta(days=5)

        assert repo.set_payout_schedule(payment.id, later) == 1
        assert repo.set_payout_schedule(payment.id, later - timedelta(days=1)) == 0
        assert ensure_utc(repo.get_by_id(payment.id).payout_scheduled_at) == later

    def test_allow_earlier(self, repo, make_appointment, make_payment):
        payment = make_payment(make_appointment(), payout_in=timedelta(days=5))
        earlier = utc_now() + timedelta(hours=1)

        assert repo.set_payout_schedule(payment.id, earlier, allow_earlier=True) == 1
        assert ensure_utc(repo.get_by_id(payment.id).payout_scheduled_at) == earlier

    def test_pending_payouts_are_ordered_and_limited(self, repo, make_appointment, make_payment):
        oldest = make_payment(make_appointment(), payout_in=timedelta(hours=-3))
        middle = make_payment(make_appointment(), payout_in=timedelta(hours=-2))
        make_payment(make_appointment(), payout_in=timedelta(hours=-1))

        due = repo.get_pending_payouts(utc_now(), limit=2)

        assert [p.id for p in due] == [oldest.id, middle.id]

    def test_cancelled_appointment_is_held_until_refund_is_settled(
        self, repo, make_appointment, make_payment
    ):
        appointment = make_appointment(status=AppointmentStatus.CANCELLED.value)
        payment = make_payment(appointment, payout_in=timedelta(hours=-1))

        assert repo.get_pending_payouts(utc_now()) == []

        repo.apply_refund(payment, refund_type=RefundType.NO_REFUND.value)
        assert [p.id for p in repo.get_pending_payouts(utc_now())] == [payment.id]


class TestTransfers:
    def test_record_transfer_once(self, repo, make_appointment, make_payment):
        payment = make_payment(make_appointment())

        assert repo.record_transfer(payment.id, "tr_first", utc_now()) == 1
        assert repo.record_transfer(payment.id, "tr_second", utc_now()) == 0
        assert repo.get_by_transfer_id("tr_first").id == payment.id
        assert repo.get_by_transfer_id("tr_second") is None

    def test_sweep_write_after_early_webhook_counts_as_recorded(
        self, repo, make_appointment, make_payment
    ):
        payment = make_payment(make_appointment())

        assert repo.confirm_transfer_for_payment(payment.id, "tr_hook", utc_now()) == 1
        assert repo.record_transfer(payment.id, "tr_hook", utc_now()) == 1
        assert repo.record_transfer(payment.id, "tr_other", utc_now()) == 0

        stored = repo.get_by_id(payment.id)
        assert stored.stripe_transfer_id == "tr_hook"
        assert stored.payout_confirmed is True
        assert stored.doctor_paid is True

    def test_early_confirmation_never_replaces_another_transfer(
        self, repo, make_appointment, make_payment
    ):
        payment = make_payment(make_appointment())
        repo.record_transfer(payment.id, "tr_sweep", utc_now())

        assert repo.confirm_transfer_for_payment(payment.id, "tr_stray", utc_now()) == 0
        assert repo.get_by_id(payment.id).stripe_transfer_id == "tr_sweep"


class TestHistoryAndReporting:
    def test_lists_are_scoped_and_newest_first(
        self, repo, make_appointment, make_payment, patient_user, other_patient
    ):
        first = make_payment(make_appointment(), created_at=utc_now() - timedelta(days=3))
        second = make_payment(make_appointment(), created_at=utc_now() - timedelta(days=1))
        stranger = make_payment(
            make_appointment(patient=other_patient), created_at=utc_now() - timedelta(days=2)
        )

        assert [p.id for p in repo.list_for_patient(patient_user.id)] == [second.id, first.id]
        assert [p.id for p in repo.list_for_doctor(first.doctor_id)] == [
            second.id,
            stranger.id,
            first.id,
        ]
        assert [p.id for p in repo.list_for_doctor(first.doctor_id, limit=1)] == [second.id]

    def test_commission_sums_net_of_refunded_commission(
        self, repo, make_appointment, make_payment
    ):
        kept = make_payment(make_appointment())
        refunded = make_payment(make_appointment(), status=PaymentStatus.REFUNDED.value)
        make_payment(make_appointment(), status=PaymentStatus.PENDING.value)
        repo.create_refund_record(
            payment_id=refunded.id,
            amount=Decimal("100.00"),
            commission_refund=Decimal("5.00"),
            refund_type=RefundType.FULL.value,
            hours_before_appointment=48,
            status=RefundStatus.PENDING.value,
        )
        repo.create_refund_record(
            payment_id=kept.id,
            amount=Decimal("0.00"),
            commission_refund=Decimal("5.00"),
            refund_type=RefundType.FULL.value,
            hours_before_appointment=48,
            status=RefundStatus.FAILED.value,
        )
        paid = (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value)

        assert repo.sum_commission(paid) == Decimal("10.00")
        assert repo.sum_commission_refunded(paid) == Decimal("5.00")
        assert repo.count_by_status(PaymentStatus.COMPLETED.value) == 1
        assert repo.sum_commission(paid, since=utc_now() + timedelta(days=1)) == Decimal("0")


def test_database_errors_surface_as_repository_exception(db, repo):
    error = OperationalError("UPDATE appointment_payments", {}, Exception("database is locked"))

    with patch.object(db, "execute", side_effect=error):
        with pytest.raises(RepositoryException):
            repo.mark_failed_if_pending("pi_any")
