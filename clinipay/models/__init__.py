# clinipay/models/__init__.py
"""
SQLAlchemy models for clinipay.

Importing this package registers every table on ``Base.metadata``.
"""

from .appointment import Appointment
from .payment import AppointmentPayment, DoctorPaymentAccount, PaymentRefund
from .platform_config import PlatformConfig
from .user import Doctor, User
from .webhook_event import WebhookEvent

__all__ = [
    "Appointment",
    "AppointmentPayment",
    "Doctor",
    "DoctorPaymentAccount",
    "PaymentRefund",
    "PlatformConfig",
    "User",
    "WebhookEvent",
]
