# clinipay/services/email_service.py
"""
Email Service for clinipay

Sends transactional email (appointment confirmation after payment) through
Resend, or logs it when the console provider is configured. Templates are
rendered with Jinja from ``clinipay/templates/email``.
"""

import logging
from pathlib import Path
import re
from typing import TYPE_CHECKING, Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
import resend
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import BRAND_NAME
from ..core.exceptions import ServiceException
from ..models.appointment import Appointment
from .base import BaseService

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


class EmailService(BaseService):
    """
    Service for sending transactional emails.

    With ``email_provider == "console"`` messages are logged instead of sent,
    which is the default outside production.
    """

    def __init__(self, db: Session, cache: Optional["CacheService"] = None):
        super().__init__(db, cache)
        self.provider = settings.email_provider
        self.from_email = settings.from_email

        if self.provider == "resend":
            if not settings.resend_api_key:
                raise ServiceException("Resend API key not configured")
            resend.api_key = settings.resend_api_key

    def _html_to_text(self, html_content: str) -> str:
        """Convert HTML content to plain text for better deliverability"""
        text = re.sub(r"<[^>]+>", "", html_content)
        return re.sub(r"\s+", " ", text).strip()

    @BaseService.measure_operation("send_email")
    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send a generic email.

        Raises:
            ServiceException: If email sending fails
        """
        text_content = text_content or self._html_to_text(html_content)

        if self.provider == "console":
            self.logger.info(f"[console email] to={to_email} subject={subject!r}\n{text_content}")
            return {"id": None, "provider": "console"}

        try:
            response = resend.Emails.send(
                {
                    "from": self.from_email,
                    "to": to_email,
                    "subject": subject,
                    "html": html_content,
                    "text": text_content,
                }
            )
            self.logger.info(f"Email sent successfully to {to_email} - Subject: {subject}")
            return dict(response) if response else {}
        except Exception as e:
            self.logger.error(f"Failed to send email to {to_email}: {str(e)}")
            raise ServiceException(f"Email sending failed: {str(e)}")

    @BaseService.measure_operation("send_appointment_confirmation")
    def send_appointment_confirmation(self, appointment: Appointment) -> bool:
        """
        Tell the patient their paid appointment is confirmed.

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        patient = appointment.patient
        if patient is None or not patient.email:
            self.logger.warning(f"No patient email for appointment {appointment.id}")
            return False

        try:
            payment = appointment.payment
            starts_at = appointment.starts_at
            html_content = _jinja_env.get_template("appointment_confirmation.html").render(
                patient_name=patient.full_name,
                doctor_name=appointment.doctor.name if appointment.doctor else "your doctor",
                scheduled_at=starts_at.strftime("%A, %B %d %Y at %H:%M UTC") if starts_at else "",
                amount=str(payment.appointment_price) if payment else str(appointment.price),
                currency=(payment.currency if payment else settings.stripe_currency).upper(),
                appointment_url=f"{settings.frontend_url}/appointments/{appointment.id}",
                brand_name=BRAND_NAME,
            )
            self.send_email(
                to_email=patient.email,
                subject=f"{BRAND_NAME}: your appointment is confirmed",
                html_content=html_content,
            )
            return True
        except ServiceException:
            # Already logged in send_email
            return False
        except Exception as e:
            self.logger.error(
                f"Unexpected error sending confirmation for appointment {appointment.id}: {str(e)}"
            )
            return False
