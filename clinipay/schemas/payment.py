"""
Payment-related Pydantic schemas for clinipay.

The patient-facing payment endpoints speak camelCase to match the booking
frontend; snake_case field names are accepted too.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel

_CAMEL_REQUEST_CONFIG = ConfigDict(**StrictRequestModel.model_config, populate_by_name=True)
_CAMEL_RESPONSE_CONFIG = ConfigDict(**StrictModel.model_config, populate_by_name=True)

# ========== Request Models ==========


class CreatePaymentIntentRequest(StrictRequestModel):
    """Request to start paying for an appointment."""

    appointment_id: str = Field(..., alias="appointmentId", min_length=1)
    appointment_price: Decimal = Field(
        ..., alias="appointmentPrice", gt=0, description="Appointment price in major units"
    )
    doctor_id: str = Field(..., alias="doctorId", min_length=1)

    model_config = _CAMEL_REQUEST_CONFIG


class ConfirmPaymentRequest(StrictRequestModel):
    """Client-side confirmation once Stripe.js reports success."""

    payment_intent_id: str = Field(..., alias="paymentIntentId", min_length=1)
    appointment_id: Optional[str] = Field(default=None, alias="appointmentId")

    model_config = _CAMEL_REQUEST_CONFIG


# ========== Response Models ==========


class PaymentIntentResponse(StrictModel):
    client_secret: str = Field(..., alias="clientSecret")
    payment_intent_id: str = Field(..., alias="paymentIntentId")
    payment_id: str = Field(..., alias="paymentId")
    appointment_price: Decimal = Field(..., alias="appointmentPrice")
    commission_amount: Decimal = Field(..., alias="commissionAmount")
    doctor_payout_amount: Decimal = Field(..., alias="doctorPayoutAmount")

    model_config = _CAMEL_RESPONSE_CONFIG


class PaymentSummaryResponse(StrictModel):
    """Payment state as shown to the patient, the doctor or an admin."""

    id: str
    appointment_id: str = Field(..., alias="appointmentId")
    status: str
    appointment_price: Decimal = Field(..., alias="appointmentPrice")
    commission_amount: Decimal = Field(..., alias="commissionAmount")
    doctor_payout_amount: Decimal = Field(..., alias="doctorPayoutAmount")
    currency: str
    patient_paid: bool = Field(..., alias="patientPaid")
    doctor_paid: bool = Field(..., alias="doctorPaid")
    refunded: bool
    refund_amount: Optional[Decimal] = Field(default=None, alias="refundAmount")
    payout_scheduled_at: Optional[datetime] = Field(default=None, alias="payoutScheduledAt")
    stripe_payment_intent_id: Optional[str] = Field(default=None, alias="paymentIntentId")

    model_config = _CAMEL_RESPONSE_CONFIG


class PaymentHistoryItem(PaymentSummaryResponse):
    """One row of a doctor's or patient's payment history."""

    refund_type: Optional[str] = Field(default=None, alias="refundType")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    appointment_status: Optional[str] = Field(default=None, alias="appointmentStatus")
    appointment_starts_at: Optional[datetime] = Field(default=None, alias="appointmentStartsAt")

    model_config = _CAMEL_RESPONSE_CONFIG
