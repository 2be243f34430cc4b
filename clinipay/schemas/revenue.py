"""Admin revenue report schemas (camelCase, like the payment endpoints)."""

from datetime import date
from decimal import Decimal
from typing import List

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel
from .payment import PaymentSummaryResponse

_CAMEL_RESPONSE_CONFIG = ConfigDict(**StrictModel.model_config, populate_by_name=True)


class RevenueSummaryResponse(StrictModel):
    total_revenue: Decimal = Field(..., alias="totalRevenue", description="Net platform commission")
    monthly_revenue: Decimal = Field(..., alias="monthlyRevenue")
    total_appointments: int = Field(..., alias="totalAppointments")
    recent_payments: List[PaymentSummaryResponse] = Field(..., alias="recentPayments")

    model_config = _CAMEL_RESPONSE_CONFIG


class RevenueTrendPointResponse(StrictModel):
    day: date = Field(..., alias="date")
    revenue: Decimal
    commission: Decimal

    model_config = _CAMEL_RESPONSE_CONFIG


class RevenueTrendsResponse(StrictModel):
    period: int = Field(..., description="Number of days covered, today included")
    data: List[RevenueTrendPointResponse]
