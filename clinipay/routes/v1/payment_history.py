# clinipay/routes/v1/payment_history.py
"""
Payment history routes - API v1

Endpoints:
    GET /doctors/{doctor_id}/payments   → The doctor's payments (doctor or admin)
    GET /patients/payments              → The calling patient's own payments
"""

import asyncio
from typing import List

from fastapi import APIRouter, Depends

from ...api.dependencies.auth import get_current_active_user
from ...api.dependencies.services import get_payment_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.user import User
from ...schemas.payment import PaymentHistoryItem
from ...services.payment_service import PaymentService

# Mounted at /api/v1/doctors
doctor_router = APIRouter(tags=["payment-history"])

# Mounted at /api/v1/patients
patient_router = APIRouter(tags=["payment-history"])


@doctor_router.get("/{doctor_id}/payments", response_model=List[PaymentHistoryItem])
async def list_doctor_payments(
    doctor_id: str,
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> List[PaymentHistoryItem]:
    try:
        payments = await asyncio.to_thread(
            payment_service.list_doctor_payments, doctor_id, current_user
        )
    except DomainException as e:
        handle_domain_exception(e)
    return [PaymentHistoryItem(**PaymentService.build_history_item(p)) for p in payments]


@patient_router.get("/payments", response_model=List[PaymentHistoryItem])
async def list_patient_payments(
    current_user: User = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> List[PaymentHistoryItem]:
    """Newest first, capped at the most recent hundred."""
    try:
        payments = await asyncio.to_thread(payment_service.list_patient_payments, current_user)
    except DomainException as e:
        handle_domain_exception(e)
    return [PaymentHistoryItem(**PaymentService.build_history_item(p)) for p in payments]
