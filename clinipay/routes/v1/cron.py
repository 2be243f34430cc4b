# clinipay/routes/v1/cron.py
"""
Scheduler-triggered payout routes - API v1

Endpoints:
    POST /payouts   → Run one payout sweep (Bearer CRON_SECRET when configured)
    GET /payouts    → List payouts that are due (admin)
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query

from ...api.dependencies.auth import require_admin, verify_cron_secret
from ...api.dependencies.services import get_payout_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.user import User
from ...schemas.payout import PayoutSweepResponse, PendingPayoutItem, PendingPayoutListResponse
from ...services.payout_service import PayoutService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])


@router.post(
    "/payouts",
    response_model=PayoutSweepResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def run_payout_sweep(
    limit: int | None = Query(default=None, ge=1, le=500),
    payout_service: PayoutService = Depends(get_payout_service),
) -> PayoutSweepResponse:
    try:
        results = await asyncio.to_thread(payout_service.process_due_payouts, limit)
    except DomainException as e:
        handle_domain_exception(e)

    logger.info(f"Cron payout sweep: {results['processed']} processed of {results['total']}")
    return PayoutSweepResponse(**results)


@router.get("/payouts", response_model=PendingPayoutListResponse)
async def list_pending_payouts(
    limit: int | None = Query(default=None, ge=1, le=500),
    _admin: User = Depends(require_admin),
    payout_service: PayoutService = Depends(get_payout_service),
) -> PendingPayoutListResponse:
    payments = await asyncio.to_thread(payout_service.get_pending_payouts, None, limit)
    items = [PendingPayoutItem.model_validate(payment) for payment in payments]
    return PendingPayoutListResponse(items=items, total=len(items))
