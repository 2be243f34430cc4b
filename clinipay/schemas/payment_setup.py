"""Schemas for doctor payout account setup."""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel


class PaymentAccountResponse(StrictModel):
    """Doctor Stripe Connect account status."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    doctor_id: str
    stripe_account_id: str
    account_status: str = Field(..., description="PENDING, ACTIVE or RESTRICTED")
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    onboarding_url: Optional[str] = Field(
        default=None, description="Stripe onboarding link while the account is not active"
    )
    onboarding_expires_at: Optional[datetime] = None


class DashboardLinkResponse(StrictModel):
    dashboard_url: str = Field(..., description="Single-use Stripe Express dashboard login link")
