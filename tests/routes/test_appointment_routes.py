"""Route tests for appointment cancellation."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from clinipay.core.enums import PaymentStatus, RefundType
from clinipay.models.payment import AppointmentPayment


@patch("stripe.Refund.create")
def test_cancel_paid_appointment_refunds_in_full(
    mock_refund, client, auth_headers, patient_user, make_appointment, make_payment
):
    mock_refund.return_value = SimpleNamespace(id="re_route_1")
    appointment = make_appointment(starts_in=timedelta(days=2))
    payment = make_payment(appointment)

    response = client.post(
        f"/api/v1/appointments/{appointment.id}/cancel",
        json={"reason": "feeling better"},
        headers=auth_headers(patient_user),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CANCELLED"
    assert data["refund_type"] == RefundType.FULL.value
    assert data["refund_amount"] == "100.00"
    assert data["payment_status"] == PaymentStatus.REFUNDED.value
    assert mock_refund.call_args.kwargs["charge"] == "ch_test_1"
    assert mock_refund.call_args.kwargs["idempotency_key"] == f"refund-{payment.id}"

    again = client.post(
        f"/api/v1/appointments/{appointment.id}/cancel", headers=auth_headers(patient_user)
    )
    assert again.status_code == 200
    assert again.json()["already_cancelled"] is True
    assert mock_refund.call_count == 1


def test_cancel_unpaid_appointment_without_body(client, auth_headers, patient_user, make_appointment):
    appointment = make_appointment()

    response = client.post(
        f"/api/v1/appointments/{appointment.id}/cancel", headers=auth_headers(patient_user)
    )

    assert response.status_code == 200
    assert response.json()["refund_type"] is None
    assert response.json()["refund_amount"] == "0.00"


def test_cancel_by_unrelated_user_is_forbidden(client, auth_headers, other_patient, make_appointment):
    response = client.post(
        f"/api/v1/appointments/{make_appointment().id}/cancel", headers=auth_headers(other_patient)
    )
    assert response.status_code == 403


@patch("stripe.PaymentIntent.cancel")
@patch("stripe.PaymentIntent.retrieve")
def test_cancel_with_open_intent_cancels_it_at_stripe(
    mock_retrieve, mock_cancel, client, db, auth_headers, patient_user, make_appointment, make_payment
):
    appointment = make_appointment()
    payment = make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_route_open")
    mock_retrieve.return_value = SimpleNamespace(
        id="pi_route_open", status="requires_payment_method", latest_charge=None
    )

    response = client.post(
        f"/api/v1/appointments/{appointment.id}/cancel", headers=auth_headers(patient_user)
    )

    assert response.status_code == 200
    assert response.json()["payment_status"] == PaymentStatus.FAILED.value
    mock_cancel.assert_called_once_with("pi_route_open", cancellation_reason="requested_by_customer")
    db.expire_all()
    assert db.get(AppointmentPayment, payment.id).status == PaymentStatus.FAILED.value


@patch("stripe.PaymentIntent.retrieve")
def test_cancel_while_payment_processing_is_a_conflict(
    mock_retrieve, client, auth_headers, patient_user, make_appointment, make_payment
):
    appointment = make_appointment()
    make_payment(appointment, status=PaymentStatus.PENDING.value, intent_id="pi_route_busy")
    mock_retrieve.return_value = SimpleNamespace(
        id="pi_route_busy", status="processing", latest_charge=None
    )

    response = client.post(
        f"/api/v1/appointments/{appointment.id}/cancel", headers=auth_headers(patient_user)
    )

    assert response.status_code == 409
    assert response.json()["code"] == "PAYMENT_PROCESSING"
