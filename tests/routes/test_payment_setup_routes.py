"""Route tests for doctor payout account setup."""

from types import SimpleNamespace
from unittest.mock import patch

from clinipay.core.enums import AccountStatus


@patch("stripe.AccountLink.create")
@patch("stripe.Account.create")
def test_doctor_starts_onboarding(mock_account, mock_link, client, auth_headers, doctor, doctor_user):
    mock_account.return_value = SimpleNamespace(id="acct_route_1")
    mock_link.return_value = SimpleNamespace(url="https://connect.stripe.com/setup/e/acct_route_1")

    response = client.post(
        f"/api/v1/doctors/{doctor.id}/payment-setup", headers=auth_headers(doctor_user)
    )

    assert response.status_code == 200
    data = response.json()
    assert data["stripe_account_id"] == "acct_route_1"
    assert data["account_status"] == AccountStatus.PENDING.value
    assert data["onboarding_url"] == "https://connect.stripe.com/setup/e/acct_route_1"
    assert mock_account.call_args.kwargs["type"] == "express"
    assert mock_link.call_args.kwargs["type"] == "account_onboarding"


def test_patient_cannot_manage_doctor_account(client, auth_headers, doctor, patient_user):
    response = client.post(
        f"/api/v1/doctors/{doctor.id}/payment-setup", headers=auth_headers(patient_user)
    )
    assert response.status_code == 403


@patch("stripe.Account.retrieve")
def test_status_refresh_reflects_stripe(mock_retrieve, client, db, auth_headers, doctor, doctor_user):
    from clinipay.models.payment import DoctorPaymentAccount

    db.add(DoctorPaymentAccount(doctor_id=doctor.id, stripe_account_id="acct_route_2"))
    db.commit()
    mock_retrieve.return_value = SimpleNamespace(
        id="acct_route_2", charges_enabled=True, payouts_enabled=True, details_submitted=True
    )

    response = client.get(
        f"/api/v1/doctors/{doctor.id}/payment-setup", headers=auth_headers(doctor_user)
    )

    assert response.status_code == 200
    assert response.json()["account_status"] == AccountStatus.ACTIVE.value
    assert response.json()["payouts_enabled"] is True


def test_status_without_account_is_404(client, auth_headers, doctor, doctor_user):
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/payment-setup", headers=auth_headers(doctor_user)
    )
    assert response.status_code == 404


@patch("stripe.Account.create_login_link")
def test_dashboard_link_for_onboarded_doctor(
    mock_login_link, client, auth_headers, doctor, doctor_user, doctor_account
):
    mock_login_link.return_value = SimpleNamespace(
        url="https://connect.stripe.com/express/acct_test_ready/xyz"
    )

    response = client.get(
        f"/api/v1/doctors/{doctor.id}/payment-setup/dashboard", headers=auth_headers(doctor_user)
    )

    assert response.status_code == 200
    assert response.json() == {"dashboard_url": "https://connect.stripe.com/express/acct_test_ready/xyz"}
    mock_login_link.assert_called_once_with("acct_test_ready")


def test_dashboard_link_requires_submitted_onboarding(client, db, auth_headers, doctor, doctor_user):
    from clinipay.models.payment import DoctorPaymentAccount

    db.add(DoctorPaymentAccount(doctor_id=doctor.id, stripe_account_id="acct_route_3"))
    db.commit()

    response = client.get(
        f"/api/v1/doctors/{doctor.id}/payment-setup/dashboard", headers=auth_headers(doctor_user)
    )

    assert response.status_code == 422
    assert response.json()["code"] == "ONBOARDING_INCOMPLETE"


def test_dashboard_link_is_private_to_the_doctor(
    client, auth_headers, doctor, doctor_account, patient_user
):
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/payment-setup/dashboard", headers=auth_headers(patient_user)
    )
    assert response.status_code == 403
