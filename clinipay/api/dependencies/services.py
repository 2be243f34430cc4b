# clinipay/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Factory functions that build request-scoped services on top of the
request's database session.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.cache_service import CacheService, get_cache_service
from ...services.commission_settings_service import CommissionSettingsService
from ...services.connect_account_service import ConnectAccountService
from ...services.payment_service import PaymentService
from ...services.payout_service import PayoutService
from ...services.refund_service import RefundService
from ...services.revenue_service import RevenueService
from ...services.webhook_service import WebhookService
from .database import get_db


def get_commission_settings_service(
    db: Session = Depends(get_db), cache: CacheService = Depends(get_cache_service)
) -> CommissionSettingsService:
    return CommissionSettingsService(db, cache)


def get_payment_service(
    db: Session = Depends(get_db),
    commission_settings: CommissionSettingsService = Depends(get_commission_settings_service),
) -> PaymentService:
    return PaymentService(db, commission_settings.cache, commission_settings=commission_settings)


def get_payout_service(db: Session = Depends(get_db)) -> PayoutService:
    return PayoutService(db)


def get_refund_service(db: Session = Depends(get_db)) -> RefundService:
    return RefundService(db)


def get_connect_account_service(db: Session = Depends(get_db)) -> ConnectAccountService:
    return ConnectAccountService(db)


def get_revenue_service(db: Session = Depends(get_db)) -> RevenueService:
    return RevenueService(db)


def get_webhook_service(db: Session = Depends(get_db)) -> WebhookService:
    return WebhookService(db)
