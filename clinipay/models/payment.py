"""
Payment models for Stripe integration.

This module defines the appointment payment record (which also tracks the
doctor payout lifecycle), refund records and the doctor's Stripe Connect
payout account.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

import ulid
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.enums import AccountStatus, PaymentStatus, RefundStatus
from ..database import Base

if TYPE_CHECKING:
    from .appointment import Appointment
    from .user import Doctor


class AppointmentPayment(Base):
    """
    One payment per appointment.

    Amounts are stored in major currency units. ``commission_amount +
    doctor_payout_amount == appointment_price`` holds at creation; refunds
    adjust ``doctor_payout_amount`` afterwards.
    """

    __tablename__ = "appointment_payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("appointments.id"), unique=True, nullable=False
    )
    doctor_id: Mapped[str] = mapped_column(String(26), ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    appointment_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    doctor_payout_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")

    status: Mapped[str] = mapped_column(String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    patient_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    patient_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Refunds
    refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Doctor payout
    payout_scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    doctor_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    doctor_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_transfer_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    payout_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payout_reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payout_reversed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    appointment: Mapped["Appointment"] = relationship("Appointment", back_populates="payment")
    doctor: Mapped["Doctor"] = relationship("Doctor")
    refunds: Mapped[List["PaymentRefund"]] = relationship(
        "PaymentRefund", back_populates="payment", order_by="PaymentRefund.created_at"
    )

    def __repr__(self) -> str:
        return (
            f"<AppointmentPayment(appointment_id={self.appointment_id}, "
            f"price={self.appointment_price}, status={self.status})>"
        )


class PaymentRefund(Base):
    """Audit row for every cancellation refund decision."""

    __tablename__ = "payment_refunds"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("appointment_payments.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    commission_refund: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    refund_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hours_before_appointment: Mapped[int] = mapped_column(Integer, nullable=False)
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RefundStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    payment: Mapped["AppointmentPayment"] = relationship("AppointmentPayment", back_populates="refunds")

    def __repr__(self) -> str:
        return f"<PaymentRefund(payment_id={self.payment_id}, amount={self.amount}, type={self.refund_type})>"


class DoctorPaymentAccount(Base):
    """Doctor Stripe Connect accounts for receiving payouts."""

    __tablename__ = "doctor_payment_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    doctor_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("doctors.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    account_status: Mapped[str] = mapped_column(String(20), nullable=False, default=AccountStatus.PENDING.value)
    onboarding_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    onboarding_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    doctor: Mapped["Doctor"] = relationship("Doctor", back_populates="payment_account")

    @property
    def is_payout_ready(self) -> bool:
        return self.account_status == AccountStatus.ACTIVE.value and bool(self.payouts_enabled)

    def __repr__(self) -> str:
        return f"<DoctorPaymentAccount(doctor_id={self.doctor_id}, status={self.account_status})>"
