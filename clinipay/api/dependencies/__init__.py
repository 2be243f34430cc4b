# clinipay/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .auth import get_current_active_user, get_current_user, require_admin, verify_cron_secret
from .database import get_db
from .services import (
    get_commission_settings_service,
    get_connect_account_service,
    get_payment_service,
    get_payout_service,
    get_refund_service,
    get_webhook_service,
)

__all__ = [
    # Auth
    "get_current_user",
    "get_current_active_user",
    "require_admin",
    "verify_cron_secret",
    # Database
    "get_db",
    # Services
    "get_commission_settings_service",
    "get_connect_account_service",
    "get_payment_service",
    "get_payout_service",
    "get_refund_service",
    "get_webhook_service",
]
