"""
Pytest configuration for clinipay.

Test settings are forced BEFORE any application import: an in-memory SQLite
database, console email, and fixed Stripe test secrets. No test ever reaches
Stripe or Resend; provider calls are patched or go through a mocked gateway.
"""

import os

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["CI"] = "1"
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_clinipay"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_clinipay"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ.pop("CRON_SECRET", None)

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Callable, Dict, Optional
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

from clinipay import models  # noqa: F401  (registers every table)
from clinipay.auth import create_access_token
from clinipay.core.enums import AccountStatus, AppointmentStatus, PaymentStatus, RoleName
from clinipay.core.timezone_utils import utc_now
from clinipay.database import Base, get_db
from clinipay.main import app
from clinipay.models.appointment import Appointment
from clinipay.models.payment import AppointmentPayment, DoctorPaymentAccount
from clinipay.models.user import Doctor, User
from clinipay.services.commission import calculate_commission
from clinipay.services.stripe_gateway import StripeGateway

# One shared connection so worker threads (asyncio.to_thread) see the same database
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False
)


@pytest.fixture
def db() -> Session:
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db: Session) -> TestClient:
    """API client whose requests share the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def gateway() -> MagicMock:
    """Stripe gateway double; return values are set per test."""
    mock_gateway = MagicMock(spec=StripeGateway)
    mock_gateway.create_transfer.return_value = SimpleNamespace(id="tr_test_1")
    mock_gateway.create_refund.return_value = SimpleNamespace(id="re_test_1")
    return mock_gateway


# ========== Users and Doctors ==========


def _create_user(db: Session, role: str, prefix: str) -> User:
    user = User(
        id=str(ulid.ULID()),
        email=f"{prefix}_{str(ulid.ULID()).lower()}@example.com",
        full_name=f"Test {prefix.title()}",
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def patient_user(db: Session) -> User:
    return _create_user(db, RoleName.PATIENT.value, "patient")


@pytest.fixture
def other_patient(db: Session) -> User:
    return _create_user(db, RoleName.PATIENT.value, "stranger")


@pytest.fixture
def admin_user(db: Session) -> User:
    return _create_user(db, RoleName.ADMIN.value, "admin")


@pytest.fixture
def doctor_user(db: Session) -> User:
    return _create_user(db, RoleName.DOCTOR.value, "doctor")


@pytest.fixture
def doctor(db: Session, doctor_user: User) -> Doctor:
    profile = Doctor(
        id=str(ulid.ULID()), user_id=doctor_user.id, name="Dr. Test", specialty="Cardiology"
    )
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def doctor_account(db: Session, doctor: Doctor) -> DoctorPaymentAccount:
    """A fully onboarded, payout-enabled Connect account."""
    account = DoctorPaymentAccount(
        doctor_id=doctor.id,
        stripe_account_id="acct_test_ready",
        account_status=AccountStatus.ACTIVE.value,
        charges_enabled=True,
        payouts_enabled=True,
        details_submitted=True,
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token({"sub": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ========== Appointments and Payments ==========


@pytest.fixture
def make_appointment(db: Session, patient_user: User, doctor: Doctor) -> Callable[..., Appointment]:
    def _make(
        *,
        starts_in: timedelta = timedelta(days=3),
        price: str = "100.00",
        duration_minutes: int = 30,
        status: str = AppointmentStatus.PENDING.value,
        patient: Optional[User] = None,
    ) -> Appointment:
        appointment = Appointment(
            id=str(ulid.ULID()),
            patient_id=(patient or patient_user).id,
            doctor_id=doctor.id,
            scheduled_at=utc_now() + starts_in,
            duration_minutes=duration_minutes,
            price=Decimal(price),
            status=status,
        )
        db.add(appointment)
        db.commit()
        return appointment

    return _make


@pytest.fixture
def make_payment(db: Session) -> Callable[..., AppointmentPayment]:
    def _make(
        appointment: Appointment,
        *,
        status: str = PaymentStatus.COMPLETED.value,
        percentage: str = "5",
        intent_id: Optional[str] = None,
        charge_id: Optional[str] = "ch_test_1",
        payout_in: Optional[timedelta] = None,
        **overrides,
    ) -> AppointmentPayment:
        breakdown = calculate_commission(appointment.price, percentage)
        paid = status != PaymentStatus.PENDING.value and status != PaymentStatus.FAILED.value
        payment = AppointmentPayment(
            id=str(ulid.ULID()),
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            appointment_price=breakdown.appointment_price,
            commission_percentage=breakdown.commission_percentage,
            commission_amount=breakdown.commission_amount,
            doctor_payout_amount=breakdown.payout_amount,
            currency="usd",
            status=status,
            stripe_payment_intent_id=intent_id or f"pi_{str(ulid.ULID()).lower()}",
            stripe_charge_id=charge_id if paid else None,
            patient_paid=paid,
            patient_paid_at=utc_now() if paid else None,
            payout_scheduled_at=(utc_now() + payout_in) if payout_in is not None else None,
        )
        for key, value in overrides.items():
            setattr(payment, key, value)
        db.add(payment)
        db.commit()
        return payment

    return _make


# ========== Webhooks ==========


@pytest.fixture
def stripe_event() -> Callable[..., Dict]:
    def _event(event_type: str, obj: Dict, event_id: Optional[str] = None) -> Dict:
        return {
            "id": event_id or f"evt_{str(ulid.ULID()).lower()}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }

    return _event
