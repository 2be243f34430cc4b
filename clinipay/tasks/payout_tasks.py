"""
Celery tasks for doctor payouts.

The hourly sweep is the scheduled counterpart of ``POST /api/v1/cron/payouts``.
"""

import logging
from typing import Any, Callable, TypeVar, cast

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..services.payout_service import PayoutService, PayoutSweepResult
from .celery_app import celery_app

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SWEEP_RETRY_COUNTDOWN_SECONDS = 300


def payments_task(**options: Any) -> Callable[[F], F]:
    """``celery_app.task`` typed so the decorated function keeps its signature."""
    return cast(Callable[[F], F], celery_app.task(bind=True, **options))


@payments_task(max_retries=3, name="clinipay.tasks.payout_tasks.process_due_payouts")
def process_due_payouts(self: Any, limit: int | None = None) -> PayoutSweepResult:
    """
    Release every payout whose hold has elapsed.

    Individual payout failures are reported in the result; only a failure of
    the sweep itself (database unavailable and the like) triggers a retry.
    """
    db: Session = SessionLocal()
    try:
        outcome = PayoutService(db).process_due_payouts(limit)
    except Exception as exc:
        logger.error(f"Payout sweep aborted, retrying in {SWEEP_RETRY_COUNTDOWN_SECONDS}s: {exc}")
        raise self.retry(exc=exc, countdown=SWEEP_RETRY_COUNTDOWN_SECONDS)
    finally:
        db.close()

    if outcome["failed"]:
        logger.warning(
            f"Payout sweep: {outcome['processed']} paid, {outcome['failed']} failed, "
            f"{outcome['skipped']} skipped"
        )
    return outcome
