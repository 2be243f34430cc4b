# clinipay/routes/v1/payment_setup.py
"""
Doctor payout account routes - API v1

Endpoints:
    POST /{doctor_id}/payment-setup   → Create (or reuse) the Connect account and onboarding link
    GET /{doctor_id}/payment-setup    → Current account status, refreshed from Stripe
    GET /{doctor_id}/payment-setup/dashboard → Login link to the Stripe Express dashboard
"""

import asyncio

from fastapi import APIRouter, Depends

from ...api.dependencies.auth import get_current_active_user
from ...api.dependencies.services import get_connect_account_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.payment import DoctorPaymentAccount
from ...models.user import User
from ...schemas.payment_setup import DashboardLinkResponse, PaymentAccountResponse
from ...services.connect_account_service import ConnectAccountService

# Mounted at /api/v1/doctors
router = APIRouter(tags=["payment-setup"])


def _account_response(
    account: DoctorPaymentAccount, onboarding_url: str | None = None
) -> PaymentAccountResponse:
    response = PaymentAccountResponse.model_validate(account)
    if onboarding_url is not None:
        response.onboarding_url = onboarding_url
    return response


@router.post("/{doctor_id}/payment-setup", response_model=PaymentAccountResponse)
async def start_payment_setup(
    doctor_id: str,
    current_user: User = Depends(get_current_active_user),
    service: ConnectAccountService = Depends(get_connect_account_service),
) -> PaymentAccountResponse:
    try:
        result = await asyncio.to_thread(service.setup_payment_account, doctor_id, current_user)
    except DomainException as e:
        handle_domain_exception(e)
    return _account_response(result.account, result.onboarding_url)


@router.get("/{doctor_id}/payment-setup", response_model=PaymentAccountResponse)
async def get_payment_setup(
    doctor_id: str,
    current_user: User = Depends(get_current_active_user),
    service: ConnectAccountService = Depends(get_connect_account_service),
) -> PaymentAccountResponse:
    try:
        account = await asyncio.to_thread(
            service.refresh_account_status, doctor_id, current_user
        )
    except DomainException as e:
        handle_domain_exception(e)
    return _account_response(account)


@router.get("/{doctor_id}/payment-setup/dashboard", response_model=DashboardLinkResponse)
async def get_dashboard_link(
    doctor_id: str,
    current_user: User = Depends(get_current_active_user),
    service: ConnectAccountService = Depends(get_connect_account_service),
) -> DashboardLinkResponse:
    try:
        url = await asyncio.to_thread(service.create_dashboard_link, doctor_id, current_user)
    except DomainException as e:
        handle_domain_exception(e)
    return DashboardLinkResponse(dashboard_url=url)
