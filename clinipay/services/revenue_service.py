"""
Revenue Service for clinipay

Platform revenue as seen by admins. Revenue is the commission the platform
keeps: commission charged on paid appointments, less the commission handed
back by cancellation refunds, never below zero.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import PaymentStatus
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import AppointmentPayment
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService
from .commission import quantize_money

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (
    PaymentStatus.COMPLETED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
)
RECENT_PAYMENTS_LIMIT = 50
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class RevenueSummary:
    total_revenue: Decimal
    monthly_revenue: Decimal
    total_appointments: int
    recent_payments: List[AppointmentPayment]


@dataclass(frozen=True)
class RevenueTrendPoint:
    day: date
    revenue: Decimal
    commission: Decimal


def start_of_month(now: datetime) -> datetime:
    current = ensure_utc(now)
    assert current is not None
    return datetime.combine(current.date().replace(day=1), time.min, tzinfo=timezone.utc)


class RevenueService(BaseService):
    """Admin revenue summary and daily trends."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.payment_repository = PaymentRepository(db)

    def _net_commission(self, since: Optional[datetime] = None) -> Decimal:
        charged = self.payment_repository.sum_commission(REVENUE_STATUSES, since)
        returned = self.payment_repository.sum_commission_refunded(REVENUE_STATUSES, since)
        return max(ZERO, quantize_money(charged - returned))

    @BaseService.measure_operation("get_revenue_summary")
    def get_revenue_summary(self, now: Optional[datetime] = None) -> RevenueSummary:
        current = now or utc_now()
        return RevenueSummary(
            total_revenue=self._net_commission(),
            monthly_revenue=self._net_commission(start_of_month(current)),
            total_appointments=self.payment_repository.count_by_status(
                PaymentStatus.COMPLETED.value
            ),
            recent_payments=self.payment_repository.list_recent(
                REVENUE_STATUSES, RECENT_PAYMENTS_LIMIT
            ),
        )

    @BaseService.measure_operation("get_revenue_trends")
    def get_revenue_trends(
        self, days: int, now: Optional[datetime] = None
    ) -> List[RevenueTrendPoint]:
        """
        Daily gross volume and commission of COMPLETED payments for the last
        ``days`` days, today included. Days without payments report zero.
        """
        current = ensure_utc(now or utc_now())
        assert current is not None
        first_day = current.date() - timedelta(days=days - 1)
        since = datetime.combine(first_day, time.min, tzinfo=timezone.utc)

        revenue = OrderedDict((first_day + timedelta(days=i), ZERO) for i in range(days))
        commission = OrderedDict(revenue)

        for payment in self.payment_repository.list_completed_since(since):
            created = ensure_utc(payment.created_at)
            if created is None or created.date() not in revenue:
                continue
            day = created.date()
            revenue[day] += quantize_money(payment.appointment_price)
            commission[day] += quantize_money(payment.commission_amount)

        return [
            RevenueTrendPoint(day=day, revenue=revenue[day], commission=commission[day])
            for day in revenue
        ]
