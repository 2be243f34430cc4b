# clinipay/core/exceptions.py
"""
Domain exceptions for the clinipay payment backend.

Services raise these; routes turn them into problem responses through
``errors.handle_domain_exception``. Each class fixes the HTTP status, and each
instance carries a stable ``code`` (``ALREADY_PAID``, ``ACCOUNT_NOT_READY``,
``PROVIDER_ERROR`` ...) that clients branch on.
"""

from typing import Any, ClassVar, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: ClassVar[Optional[str]] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code or self.__class__.__name__
        self.details = details or {}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"message": self.message, "code": self.code, "details": self.details},
        )


class ValidationException(DomainException):
    """Input is well-formed but contradicts stored state (price, doctor, intent status)."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictException(DomainException):
    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """The request is valid but the payment lifecycle does not allow it right now."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code, details)


class ServiceException(DomainException):
    """Internal failure (database, missing configuration)."""


class ProviderException(ServiceException):
    """A Stripe call failed; the local state was not changed by it."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str = "Payment provider request failed",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class AlreadyPaidException(ConflictException):
    default_code = "ALREADY_PAID"

    def __init__(self, appointment_id: str):
        super().__init__(
            "This appointment has already been paid",
            details={"appointment_id": appointment_id},
        )


class AccountNotReadyException(BusinessRuleException):
    """The doctor's Connect account cannot receive transfers yet; retried on the next sweep."""

    default_code = "ACCOUNT_NOT_READY"

    def __init__(self, doctor_id: str, account_status: Optional[str] = None):
        super().__init__(
            "Doctor payment account is not ready for payouts",
            details={"doctor_id": doctor_id, "account_status": account_status},
        )


class RepositoryException(Exception):
    """Data access failure; the SQLAlchemy error is chained as ``__cause__``."""
