# clinipay/routes/v1/webhooks.py
"""
Stripe webhook endpoint - API v1

Mounted under /api/v1/webhooks

Responses drive Stripe's retry behaviour:
    200 → processed, duplicate or ignored event type
    400 → bad signature (never retried usefully; nothing was written)
    500 → handler failed; ledger row marked failed, Stripe retries
    503 → the same event is being processed right now, retry shortly
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ...api.dependencies.services import get_webhook_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...schemas.webhook import WebhookResponse
from ...services.webhook_service import WebhookInProgressError, WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_PROCESSING_RETRY_AFTER_SECONDS = "2"


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> WebhookResponse | JSONResponse:
    """
    Handle Stripe webhook events.

    Note:
        No user authentication; the Stripe-Signature header is verified instead.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        outcome = await asyncio.to_thread(
            webhook_service.process, payload, signature, dict(request.headers)
        )
    except DomainException as e:
        handle_domain_exception(e)
    except WebhookInProgressError as e:
        logger.info(str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "processing", "detail": "Event is already being processed"},
            headers={"Retry-After": _PROCESSING_RETRY_AFTER_SECONDS},
        )
    except Exception as e:
        logger.error(f"Stripe webhook processing failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "detail": "Webhook processing failed"},
        )

    return WebhookResponse(event_type=outcome.event_type, handled=outcome.handled)
