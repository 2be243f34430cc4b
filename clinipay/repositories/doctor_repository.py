"""
Doctor Repository for clinipay

Doctor profiles and their Stripe Connect payout accounts.
"""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import DoctorPaymentAccount
from ..models.user import Doctor
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class DoctorRepository(BaseRepository[Doctor]):
    """Repository for doctors and their payout accounts."""

    def __init__(self, db: Session):
        super().__init__(db, Doctor)

    # ========== Payout Accounts ==========

    def get_payment_account(self, doctor_id: str) -> Optional[DoctorPaymentAccount]:
        try:
            account = (
                self.db.query(DoctorPaymentAccount)
                .filter(DoctorPaymentAccount.doctor_id == doctor_id)
                .first()
            )
            return cast(Optional[DoctorPaymentAccount], account)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment account: {str(e)}")
            raise RepositoryException(f"Failed to get payment account: {str(e)}")

    def get_payment_account_by_stripe_id(
        self, stripe_account_id: str
    ) -> Optional[DoctorPaymentAccount]:
        try:
            account = (
                self.db.query(DoctorPaymentAccount)
                .filter(DoctorPaymentAccount.stripe_account_id == stripe_account_id)
                .first()
            )
            return cast(Optional[DoctorPaymentAccount], account)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to get payment account by Stripe ID: {str(e)}")
            raise RepositoryException(f"Failed to get payment account by Stripe ID: {str(e)}")

    def create_payment_account(self, doctor_id: str, stripe_account_id: str) -> DoctorPaymentAccount:
        try:
            account = DoctorPaymentAccount(doctor_id=doctor_id, stripe_account_id=stripe_account_id)
            self.db.add(account)
            self.db.flush()
            return account
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create payment account: {str(e)}")
            raise RepositoryException(f"Failed to create payment account: {str(e)}") from e
