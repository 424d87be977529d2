"""Registration confirmation emails"""

import logging
from typing import Dict, Optional

from rh_checkout.backends.email_client import EmailClient
from rh_checkout.config import config
from rh_checkout.models.payment import is_free_payment_token
from rh_checkout.models.registration import Registration
from rh_checkout.services.pricing_service import get_event

logger = logging.getLogger(__name__)

OPTION_LABELS = {
    "full": "Full Camp",
    "single": "Single Day",
    "1day": "Single Day",
    "2day": "Two Days",
    "team": "Team Registration",
}


def format_cents(amount: int) -> str:
    return f"${amount / 100:,.2f}"


class EmailService:
    """Service for sending confirmation emails for completed registrations"""

    def __init__(self, email_config: dict):
        self.email_client = EmailClient(email_config)

    def build_confirmation_email(
        self, registration: Registration, payment_reference: Optional[str] = None
    ) -> Dict[str, str]:
        """Subject and plain-text body for a completed registration"""
        event = get_event(registration.event_id)
        title = event.title if event else f"Event {registration.event_id}"
        greeting_name = registration.contact_name or registration.first_name

        subject = f"You're registered for {title}!"
        lines = [
            f"Hi {greeting_name},",
            "",
            f"{registration.full_name} is officially registered for {title}.",
            "",
            "Registration details:",
            f"Camper: {registration.full_name}",
            f"Event: {title}",
        ]
        if event:
            lines.append(f"Dates: {event.dates}")
            lines.append(f"Location: {event.location}")
        lines.append(
            f"Registration type: {OPTION_LABELS.get(registration.option, registration.option)}"
        )

        if registration.final_price == 0:
            lines.append("Amount paid: Free registration")
        else:
            lines.append(f"Amount paid: {format_cents(registration.final_price)}")
        if registration.discount_code:
            lines.append(f"Discount applied: {registration.discount_code}")
        if payment_reference and not is_free_payment_token(payment_reference):
            lines.append(f"Payment ID: {payment_reference}")
        lines.append(f"Confirmation code: {str(registration.id)[:8].upper()}")

        lines += [
            "",
            "Questions? Reply to this email or contact admin@rich-habits.com.",
            "",
            "See you on the mat,",
            "Rich Habits",
        ]
        return {"subject": subject, "body": "\n".join(lines)}

    async def send_registration_confirmation(
        self, registration: Registration, payment_reference: Optional[str] = None
    ) -> bool:
        """
        Send the confirmation email for a completed registration.

        Best effort: a failure is logged and reported as False, never raised.

        Returns:
            bool: True if email was sent successfully, False otherwise
        """
        if not registration.email:
            logger.info("No email provided, skipping email confirmation")
            return False
        if not self.email_client.configured:
            logger.info("Mailgun not configured, skipping email confirmation")
            return False

        email_content = self.build_confirmation_email(registration, payment_reference)
        return await self._send_email(registration.email, email_content)

    async def _send_email(self, to_email: str, email_content: Dict[str, str]) -> bool:
        """Send email using the email client"""
        try:
            await self.email_client.send_email(
                to=to_email,
                text=email_content["body"],
                subject=email_content["subject"],
            )
            logger.info(f"Email sent successfully to {to_email}")
            return True
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create the global email service instance"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService(config)
        logger.info("Initialized global email service")
    return _email_service
