# clinipay/routes/v1/appointments.py
"""Appointment cancellation with policy-based refunds - API v1."""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from ...api.dependencies.auth import get_current_active_user
from ...api.dependencies.services import get_refund_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.user import User
from ...schemas.appointment import CancelAppointmentRequest, CancellationResponse
from ...services.refund_service import RefundService

logger = logging.getLogger(__name__)

# Mounted at /api/v1/appointments
router = APIRouter(tags=["appointments"])


@router.post("/{appointment_id}/cancel", response_model=CancellationResponse)
async def cancel_appointment(
    appointment_id: str,
    payload: Optional[CancelAppointmentRequest] = Body(default=None),
    current_user: User = Depends(get_current_active_user),
    refund_service: RefundService = Depends(get_refund_service),
) -> CancellationResponse:
    """
    Cancel an appointment.

    Refund depends on notice: 24h or more is a full refund, 1h or more
    refunds half, later cancellations are not refunded.
    """
    try:
        result = await asyncio.to_thread(
            refund_service.handle_cancellation, appointment_id, payload.reason if payload else None, current_user
        )
    except DomainException as e:
        handle_domain_exception(e)

    return CancellationResponse(
        appointment_id=result.appointment_id,
        refund_type=result.refund_type,
        refund_amount=result.refund_amount,
        commission_refund=result.commission_refund,
        payment_status=result.payment_status,
        already_cancelled=result.already_cancelled,
    )
