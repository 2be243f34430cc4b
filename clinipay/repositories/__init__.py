# clinipay/repositories/__init__.py
"""
Repository layer for clinipay.

Repositories own data access only; services own business rules and
transaction boundaries.
"""

from .appointment_repository import AppointmentRepository
from .base_repository import BaseRepository
from .doctor_repository import DoctorRepository
from .payment_repository import PaymentRepository
from .platform_config_repository import PlatformConfigRepository
from .user_repository import UserRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AppointmentRepository",
    "BaseRepository",
    "DoctorRepository",
    "PaymentRepository",
    "PlatformConfigRepository",
    "UserRepository",
    "WebhookEventRepository",
]
