# clinipay/routes/v1/revenue.py
"""
Admin revenue report - API v1

Endpoints:
    GET /admin/revenue             → Net commission totals and recent payments
    GET /admin/revenue?period=N    → Daily revenue and commission for the last N days
"""

import asyncio
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query

from ...api.dependencies.auth import require_admin
from ...api.dependencies.services import get_revenue_service
from ...models.user import User
from ...schemas.payment import PaymentSummaryResponse
from ...schemas.revenue import (
    RevenueSummaryResponse,
    RevenueTrendPointResponse,
    RevenueTrendsResponse,
)
from ...services.payment_service import PaymentService
from ...services.revenue_service import RevenueService

# Mounted at /api/v1/admin/revenue
router = APIRouter(tags=["admin-revenue"])


@router.get("", response_model=Union[RevenueTrendsResponse, RevenueSummaryResponse])
async def get_revenue(
    period: Optional[int] = Query(default=None, ge=1, le=365, description="Days of daily trend data"),
    _admin: User = Depends(require_admin),
    service: RevenueService = Depends(get_revenue_service),
) -> Union[RevenueTrendsResponse, RevenueSummaryResponse]:
    if period is not None:
        points = await asyncio.to_thread(service.get_revenue_trends, period)
        return RevenueTrendsResponse(
            period=period,
            data=[
                RevenueTrendPointResponse(day=p.day, revenue=p.revenue, commission=p.commission)
                for p in points
            ],
        )

    summary = await asyncio.to_thread(service.get_revenue_summary)
    return RevenueSummaryResponse(
        total_revenue=summary.total_revenue,
        monthly_revenue=summary.monthly_revenue,
        total_appointments=summary.total_appointments,
        recent_payments=[
            PaymentSummaryResponse(**PaymentService.build_summary(p))
            for p in summary.recent_payments
        ],
    )
