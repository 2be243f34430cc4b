# clinipay/routes/v1/payments.py
"""
Patient payment routes - API v1

Endpoints:
    POST /create-intent                       → Create a Stripe payment intent
    POST /confirm                             → Client-side confirmation after Stripe.js success
    GET /appointments/{appointment_id}        → Payment summary for an appointment
"""

import asyncio
import logging

from fastapi import APIRouter, Body, Depends

from ...api.dependencies.auth import get_current_active_user
from ...api.dependencies.services import get_payment_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.user import User
from ...schemas.payment import (
    ConfirmPaymentRequest,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    PaymentSummaryResponse,
)
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - mounted at /api/v1/payments
router = APIRouter(tags=["payments-v1"])


@router.post("/create-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: CreatePaymentIntentRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentIntentResponse:
    """
    Create a payment intent for an appointment.

    Returns the client secret the frontend hands to Stripe.js.
    """
    try:
        result = await asyncio.to_thread(
            payment_service.create_payment_intent,
            payload.appointment_id,
            payload.appointment_price,
            payload.doctor_id,
            current_user,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return PaymentIntentResponse(
        client_secret=result.client_secret,
        payment_intent_id=result.payment_intent_id,
        payment_id=result.payment_id,
        appointment_price=result.appointment_price,
        commission_amount=result.commission_amount,
        doctor_payout_amount=result.doctor_payout_amount,
    )


@router.post("/confirm", response_model=PaymentSummaryResponse)
async def confirm_payment(
    payload: ConfirmPaymentRequest = Body(...),
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentSummaryResponse:
    """Confirm a payment the client reports as succeeded; safe to call repeatedly."""
    try:
        result = await asyncio.to_thread(
            payment_service.confirm_from_client,
            payload.payment_intent_id,
            current_user,
            payload.appointment_id,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return PaymentSummaryResponse(**PaymentService.build_summary(result.payment))


@router.get("/appointments/{appointment_id}", response_model=PaymentSummaryResponse)
async def get_appointment_payment(
    appointment_id: str,
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentSummaryResponse:
    try:
        payment = await asyncio.to_thread(
            payment_service.get_payment_for_appointment, appointment_id, current_user
        )
    except DomainException as e:
        handle_domain_exception(e)

    return PaymentSummaryResponse(**PaymentService.build_summary(payment))
