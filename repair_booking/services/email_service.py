"""
Email Service using Resend
"""
import logging

import resend

from repair_booking.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Service to send transactional email through Resend"""

    def __init__(self, api_key: str | None = None, from_address: str | None = None):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_address = from_address or settings.email_from_address
        if self.api_key:
            resend.api_key = self.api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send_email(self, to: str | list[str], subject: str, html: str, text: str | None = None) -> dict:
        """
        Send an email.

        Args:
            to: Recipient address or list of addresses
            subject: Subject line
            html: HTML body
            text: Optional plain-text body

        Returns:
            dict with email status
        """
        recipients = [to] if isinstance(to, str) else list(to)
        recipients = [r.strip() for r in recipients if r and r.strip()]
        if not recipients:
            return {"status": "error", "message": "Missing recipient email"}

        if not self.is_configured:
            return {
                "status": "success",
                "to": recipients,
                "subject": subject,
                "note": "Resend not configured - running in test mode"
            }

        params = {
            "from": self.from_address,
            "to": recipients,
            "subject": subject,
            "html": html,
        }
        if text:
            params["text"] = text

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            logger.error("Email send error to %s: %s", recipients, e)
            return {"status": "error", "to": recipients, "message": f"Error sending email: {str(e)}"}

        logger.info("Email sent to %s", recipients)
        return {"status": "success", "to": recipients, "id": (response or {}).get("id")}


# Global instance
_email_service = None


def get_email_service() -> EmailService:
    """Get or create email service instance"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
