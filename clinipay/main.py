# clinipay/main.py
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI

from .core.config import is_running_tests, settings
from .core.constants import BRAND_NAME
from .database import Base, engine
from .errors import register_error_handlers
from .routes.v1 import (
    appointments as appointments_v1,
    commission as commission_v1,
    cron as cron_v1,
    payment_history as payment_history_v1,
    payment_setup as payment_setup_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    revenue as revenue_v1,
    webhooks as webhooks_v1,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = f"{BRAND_NAME} Payments API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{BRAND_NAME} payments API starting up...")
    # Importing the models package registers every table on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    if not settings.stripe_configured:
        logger.warning("Stripe is not configured; payment endpoints will fail with 500")
    if not settings.cron_secret.get_secret_value():
        logger.warning("CRON_SECRET not set; the payout cron endpoint is unauthenticated")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    yield

    logger.info(f"{BRAND_NAME} payments API shutting down...")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(webhooks_v1.router, prefix="/webhooks")
api_v1.include_router(cron_v1.router, prefix="/cron")
api_v1.include_router(commission_v1.router, prefix="/settings")
api_v1.include_router(commission_v1.admin_router, prefix="/admin/settings")
api_v1.include_router(payment_setup_v1.router, prefix="/doctors")
api_v1.include_router(payment_history_v1.doctor_router, prefix="/doctors")
api_v1.include_router(payment_history_v1.patient_router, prefix="/patients")
api_v1.include_router(revenue_v1.router, prefix="/admin/revenue")
api_v1.include_router(appointments_v1.router, prefix="/appointments")

app.include_router(api_v1)
app.include_router(prometheus_v1.router)


@app.get("/health")
def health_check() -> Dict[str, str]:
    return {"status": "healthy", "service": API_TITLE}
