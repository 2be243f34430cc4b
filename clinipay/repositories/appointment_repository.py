"""
Appointment Repository for clinipay

Data access for the appointment rows that payments hang off. Status changes
driven by payment events use conditional updates so a replayed event cannot
move an appointment backwards.
"""

from datetime import datetime
import logging
from typing import Optional, cast

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import AppointmentStatus
from ..core.exceptions import RepositoryException
from ..models.appointment import Appointment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AppointmentRepository(BaseRepository[Appointment]):
    """Repository for appointment lookups and payment-driven status changes."""

    def __init__(self, db: Session):
        super().__init__(db, Appointment)

    def get_for_update(self, appointment_id: str) -> Optional[Appointment]:
        """Load an appointment, refreshing any stale copy in the session."""
        try:
            appointment = (
                self.db.query(Appointment)
                .populate_existing()
                .filter(Appointment.id == appointment_id)
                .first()
            )
            return cast(Optional[Appointment], appointment)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load appointment {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to load appointment: {str(e)}")

    def confirm_if_pending(self, appointment_id: str, confirmed_at: datetime) -> int:
        """PENDING -> CONFIRMED. Returns affected rows."""
        try:
            self.db.flush()
            result = self.db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status == AppointmentStatus.PENDING.value,
                )
                .values(status=AppointmentStatus.CONFIRMED.value, confirmed_at=confirmed_at)
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to confirm appointment {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to confirm appointment: {str(e)}") from e

    def mark_cancelled(
        self, appointment: Appointment, reason: Optional[str], cancelled_at: datetime
    ) -> Appointment:
        try:
            appointment.status = AppointmentStatus.CANCELLED.value
            appointment.cancellation_reason = reason
            appointment.cancelled_at = cancelled_at
            self.db.flush()
            return appointment
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to cancel appointment {appointment.id}: {str(e)}")
            raise RepositoryException(f"Failed to cancel appointment: {str(e)}") from e
