"""Schemas for appointment cancellation."""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CancelAppointmentRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CancellationResponse(StrictModel):
    appointment_id: str
    status: str = "CANCELLED"
    refund_type: Optional[str] = Field(
        default=None, description="FULL, PARTIAL or NO_REFUND; null when nothing was paid"
    )
    refund_amount: Decimal
    commission_refund: Decimal
    payment_status: Optional[str] = None
    already_cancelled: bool = False
