# clinipay/models/appointment.py
"""
Appointment model.

Appointments carry the scheduled start time and duration directly; the
payment and payout hold are derived from them.
"""

from datetime import datetime, timedelta
import logging
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import AppointmentStatus
from ..core.timezone_utils import ensure_utc
from ..database import Base

logger = logging.getLogger(__name__)


class Appointment(Base):
    """A patient's booked visit with a doctor."""

    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    patient_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String(26), ForeignKey("doctors.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("Doctor")
    payment = relationship("AppointmentPayment", back_populates="appointment", uselist=False)

    @property
    def starts_at(self) -> Optional[datetime]:
        return ensure_utc(self.scheduled_at)

    @property
    def ends_at(self) -> Optional[datetime]:
        start = self.starts_at
        if start is None:
            return None
        return start + timedelta(minutes=self.duration_minutes or 0)

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED.value

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.scheduled_at} {self.status}>"
