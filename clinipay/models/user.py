# clinipay/models/user.py
"""
User and doctor models.

Classes:
    User: Authenticated platform user (patient, doctor or admin)
    Doctor: Doctor profile that receives appointment payouts
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RoleName
from ..database import Base


class User(Base):
    """
    Platform user as known to the payment backend.

    Attributes:
        id: Primary key (ULID)
        email: Unique email address, used as the JWT subject
        full_name: Display name
        role: One of RoleName values
        is_active: Whether the user account is active
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=RoleName.PATIENT.value)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN.value

    @property
    def is_doctor(self) -> bool:
        return self.role == RoleName.DOCTOR.value

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Doctor(Base):
    """Doctor profile linked 1:1 to a user account."""

    __tablename__ = "doctors"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    specialty = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="doctor_profile")
    payment_account = relationship("DoctorPaymentAccount", back_populates="doctor", uselist=False)

    def __repr__(self) -> str:
        return f"<Doctor {self.id} {self.name}>"
