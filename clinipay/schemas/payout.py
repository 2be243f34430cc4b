"""Schemas for the payout sweep and listing endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel


class PayoutErrorItem(StrictModel):
    payment_id: str
    code: str
    message: str


class PayoutSweepResponse(StrictModel):
    processed: int = Field(..., description="Transfers created in this run")
    skipped: int = Field(..., description="Already paid or doctor account not ready")
    failed: int
    total: int
    errors: List[PayoutErrorItem] = Field(default_factory=list)


class PendingPayoutItem(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    appointment_id: str
    doctor_id: str
    doctor_payout_amount: Decimal
    currency: str
    status: str
    payout_scheduled_at: Optional[datetime] = None


class PendingPayoutListResponse(StrictModel):
    items: List[PendingPayoutItem]
    total: int
