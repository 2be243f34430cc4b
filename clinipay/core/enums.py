# clinipay/core/enums.py
"""
Core enums for the clinipay platform.

Status values are stored as plain strings in the database; these enums keep
the allowed values in one place for type safety and consistency.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles a platform user can hold."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class PaymentStatus(str, Enum):
    """
    Lifecycle of an appointment payment.

    PENDING -> COMPLETED | FAILED, COMPLETED -> REFUNDED | PARTIALLY_REFUNDED.
    FAILED and REFUNDED are terminal.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    PENDING = "PENDING"  # Awaiting payment
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AccountStatus(str, Enum):
    """Connected payout account status."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    RESTRICTED = "RESTRICTED"


class RefundType(str, Enum):
    """Outcome of the cancellation refund policy."""

    FULL = "FULL"
    PARTIAL = "PARTIAL"
    NO_REFUND = "NO_REFUND"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
