# clinipay/tasks/celery_app.py
"""
Celery application for clinipay background work.

Redis (``settings.redis_url``) is broker and result backend unless
``CELERY_BROKER_URL`` / ``CELERY_RESULT_BACKEND`` override it. Payout work is
routed to its own ``payments`` queue so a slow Stripe call never blocks other
tasks, and beat drives the payout sweep (see ``beat_schedule``).
"""

import logging
import os
from typing import Any

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings

logger = logging.getLogger(__name__)

PAYMENTS_QUEUE = "payments"

_CELERY_DEFAULTS = {
    "task_serializer": "json",
    "result_serializer": "json",
    "accept_content": ["json"],
    "timezone": "UTC",
    "enable_utc": True,
    # one payout batch at a time per worker process
    "worker_prefetch_multiplier": 1,
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "task_soft_time_limit": 240,
    "task_time_limit": 300,
    "task_default_retry_delay": 60,
    "task_max_retries": 3,
    "worker_hijack_root_logger": False,
}


class BaseTask(Task):  # type: ignore[misc]
    """Task base that reports failures and retries through the app logger."""

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.warning(
            f"{self.name}[{task_id}] retrying (attempt {self.request.retries + 1}): {exc}"
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(f"{self.name}[{task_id}] gave up: {exc}", exc_info=True)
        super().on_failure(exc, task_id, args, kwargs, einfo)


def create_celery_app() -> Celery:
    broker = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    backend = os.getenv("CELERY_RESULT_BACKEND") or broker

    app = Celery("clinipay", broker=broker, backend=backend, task_cls=BaseTask)
    app.conf.update(_CELERY_DEFAULTS, task_always_eager=settings.is_testing)
    app.conf.imports = ("clinipay.tasks.payout_tasks",)
    app.conf.task_routes = {"clinipay.tasks.payout_tasks.*": {"queue": PAYMENTS_QUEUE}}

    from .beat_schedule import CELERYBEAT_SCHEDULE

    app.conf.beat_schedule = CELERYBEAT_SCHEDULE
    return app


@setup_logging.connect  # type: ignore[misc]
def configure_worker_logging(*args: Any, **kwargs: Any) -> None:
    """Keep the app's log format in workers instead of Celery's default."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()
