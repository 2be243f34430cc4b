"""
Connect Account Service for clinipay

Doctors are paid out through Stripe Connect Express accounts. This service
creates the account, hands out onboarding and dashboard links and keeps the local payout
readiness flags in step with Stripe.
"""

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import ONBOARDING_LINK_TTL_HOURS
from ..core.enums import AccountStatus
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    RepositoryException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import DoctorPaymentAccount
from ..models.user import Doctor, User
from ..repositories.doctor_repository import DoctorRepository
from .base import BaseService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSetupResult:
    account: DoctorPaymentAccount
    onboarding_url: Optional[str]


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def derive_account_status(
    charges_enabled: bool, payouts_enabled: bool, details_submitted: bool
) -> AccountStatus:
    if charges_enabled and payouts_enabled and details_submitted:
        return AccountStatus.ACTIVE
    if details_submitted:
        return AccountStatus.RESTRICTED
    return AccountStatus.PENDING


class ConnectAccountService(BaseService):
    """Doctor payout account lifecycle."""

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        super().__init__(db)
        self.doctor_repository = DoctorRepository(db)
        self.gateway = gateway or StripeGateway()

    def get_doctor_for_user(self, doctor_id: str, user: User) -> Doctor:
        """Resolve the doctor; only the doctor themself or an admin may manage payouts."""
        doctor = self.doctor_repository.get_by_id(doctor_id)
        if doctor is None:
            raise NotFoundException("Doctor not found", details={"doctor_id": doctor_id})
        if not user.is_admin and doctor.user_id != user.id:
            raise ForbiddenException("You can only manage your own payment setup")
        return doctor

    @BaseService.measure_operation("create_or_get_account")
    def create_or_get_account(self, doctor_id: str, email: Optional[str]) -> DoctorPaymentAccount:
        existing = self.doctor_repository.get_payment_account(doctor_id)
        if existing is not None:
            return existing

        stripe_account = self.gateway.create_connected_account(
            email=email, metadata={"doctorId": doctor_id}
        )
        try:
            with self.transaction():
                account = self.doctor_repository.create_payment_account(doctor_id, stripe_account.id)
        except RepositoryException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            self.logger.warning(f"Race creating payment account for doctor {doctor_id}; reusing winner")
            winner = self.doctor_repository.get_payment_account(doctor_id)
            if winner is None:
                raise
            return winner

        self.logger.info(f"Created Stripe Express account {stripe_account.id} for doctor {doctor_id}")
        return account

    @BaseService.measure_operation("create_onboarding_link")
    def create_onboarding_link(self, doctor_id: str) -> Optional[str]:
        """
        Return an onboarding URL, reusing the stored link while it is valid.

        Returns None once the account is fully active.
        """
        account = self.doctor_repository.get_payment_account(doctor_id)
        if account is None:
            raise NotFoundException("Payment account not found", details={"doctor_id": doctor_id})
        if account.account_status == AccountStatus.ACTIVE.value:
            return None

        now = utc_now()
        expires_at = ensure_utc(account.onboarding_expires_at)
        if account.onboarding_url and expires_at is not None and expires_at > now:
            return account.onboarding_url

        base_url = settings.frontend_url.rstrip("/")
        link = self.gateway.create_account_link(
            account_id=account.stripe_account_id,
            refresh_url=f"{base_url}/doctor/payment-setup?refresh=true",
            return_url=f"{base_url}/doctor/payment-setup?success=true",
        )
        with self.transaction():
            account.onboarding_url = link.url
            account.onboarding_expires_at = now + timedelta(hours=ONBOARDING_LINK_TTL_HOURS)
            self.doctor_repository.flush()
        return link.url

    @BaseService.measure_operation("setup_payment_account")
    def setup_payment_account(self, doctor_id: str, user: User) -> PaymentSetupResult:
        doctor = self.get_doctor_for_user(doctor_id, user)
        email = doctor.user.email if doctor.user is not None else None
        account = self.create_or_get_account(doctor.id, email)
        return PaymentSetupResult(account=account, onboarding_url=self.create_onboarding_link(doctor.id))

    @BaseService.measure_operation("refresh_account_status")
    def refresh_account_status(self, doctor_id: str, user: User) -> DoctorPaymentAccount:
        self.get_doctor_for_user(doctor_id, user)
        account = self.doctor_repository.get_payment_account(doctor_id)
        if account is None:
            raise NotFoundException("Payment account not found", details={"doctor_id": doctor_id})
        stripe_account = self.gateway.retrieve_account(account.stripe_account_id)
        return self._apply_account_flags(account, stripe_account)

    @BaseService.measure_operation("create_dashboard_link")
    def create_dashboard_link(self, doctor_id: str, user: User) -> str:
        """
        Single-use login link to the doctor's Stripe Express dashboard.

        Raises:
            NotFoundException: unknown doctor or no payment account yet
            ForbiddenException: caller is neither the doctor nor an admin
            BusinessRuleException: onboarding has not been submitted
            ProviderException: Stripe call failed
        """
        self.get_doctor_for_user(doctor_id, user)
        account = self.doctor_repository.get_payment_account(doctor_id)
        if account is None:
            raise NotFoundException("Payment account not found", details={"doctor_id": doctor_id})
        if not account.details_submitted:
            raise BusinessRuleException(
                "Finish payment onboarding before opening the dashboard",
                code="ONBOARDING_INCOMPLETE",
                details={"account_status": account.account_status},
            )
        link = self.gateway.create_login_link(account.stripe_account_id)
        self.logger.info(f"Issued dashboard login link for account {account.stripe_account_id}")
        return str(link.url)

    @BaseService.measure_operation("sync_account")
    def sync_account(self, stripe_account: Dict[str, Any]) -> Optional[DoctorPaymentAccount]:
        """Apply an ``account.updated`` payload; unknown accounts are ignored."""
        account_id = _field(stripe_account, "id")
        account = (
            self.doctor_repository.get_payment_account_by_stripe_id(account_id) if account_id else None
        )
        if account is None:
            self.logger.warning(f"account.updated for unknown account {account_id}")
            return None
        return self._apply_account_flags(account, stripe_account)

    def _apply_account_flags(
        self, account: DoctorPaymentAccount, stripe_account: Any
    ) -> DoctorPaymentAccount:
        charges = bool(_field(stripe_account, "charges_enabled"))
        payouts = bool(_field(stripe_account, "payouts_enabled"))
        details = bool(_field(stripe_account, "details_submitted"))
        status = derive_account_status(charges, payouts, details)
        previous = account.account_status

        with self.transaction():
            account.charges_enabled = charges
            account.payouts_enabled = payouts
            account.details_submitted = details
            account.account_status = status.value
            if status == AccountStatus.ACTIVE:
                account.onboarding_url = None
                account.onboarding_expires_at = None
            self.doctor_repository.flush()

        if previous != status.value:
            self.logger.info(
                f"Payment account {account.stripe_account_id} status {previous} -> {status.value}"
            )
        return account
