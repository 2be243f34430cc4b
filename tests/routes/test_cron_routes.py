"""Route tests for the payout cron endpoints."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from pydantic import SecretStr
import pytest

from clinipay.core.config import settings

CRON_URL = "/api/v1/cron/payouts"


@pytest.fixture
def cron_secret():
    with patch.object(settings, "cron_secret", SecretStr("s3cret-token")):
        yield "s3cret-token"


class TestCronAuthentication:
    def test_missing_secret_is_rejected(self, client, cron_secret):
        response = client.post(CRON_URL)

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_secret_is_rejected(self, client, cron_secret):
        response = client.post(CRON_URL, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_correct_secret_runs_sweep(self, client, cron_secret):
        response = client.post(CRON_URL, headers={"Authorization": f"Bearer {cron_secret}"})

        assert response.status_code == 200
        assert response.json() == {"processed": 0, "skipped": 0, "failed": 0, "total": 0, "errors": []}

    def test_open_when_no_secret_configured(self, client):
        response = client.post(CRON_URL)
        assert response.status_code == 200


class TestPayoutSweepRoute:
    @patch("stripe.Transfer.create")
    def test_due_payout_is_transferred(
        self, mock_transfer, client, cron_secret, make_appointment, make_payment, doctor_account
    ):
        mock_transfer.return_value = SimpleNamespace(id="tr_cron_1")
        payment = make_payment(make_appointment(), payout_in=timedelta(hours=-1))
        make_payment(make_appointment(), payout_in=timedelta(hours=3))

        response = client.post(
            CRON_URL, params={"limit": 10}, headers={"Authorization": f"Bearer {cron_secret}"}
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert response.json()["total"] == 1
        assert mock_transfer.call_args.kwargs["idempotency_key"] == f"payout-{payment.id}"
        assert mock_transfer.call_args.kwargs["destination"] == "acct_test_ready"

    def test_limit_is_bounded(self, client, cron_secret):
        response = client.post(
            CRON_URL, params={"limit": 0}, headers={"Authorization": f"Bearer {cron_secret}"}
        )
        assert response.status_code == 422


class TestPendingPayoutList:
    def test_admin_sees_due_payouts(
        self, client, auth_headers, admin_user, make_appointment, make_payment
    ):
        payment = make_payment(make_appointment(), payout_in=timedelta(minutes=-5))

        response = client.get(CRON_URL, headers=auth_headers(admin_user))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == payment.id
        assert data["items"][0]["doctor_payout_amount"] == "95.00"

    def test_non_admin_is_forbidden(self, client, auth_headers, patient_user):
        response = client.get(CRON_URL, headers=auth_headers(patient_user))
        assert response.status_code == 403
