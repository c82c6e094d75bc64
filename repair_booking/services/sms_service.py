"""
SMS Service using Twilio
"""
import logging
import re

from twilio.rest import Client

from repair_booking.config import settings

logger = logging.getLogger(__name__)


def to_e164(raw: str | None, default_country: str = "1") -> str | None:
    """
    Normalize a phone number to E.164.

    Ten digits get the default country code; eleven digits starting with
    the country code are kept. Anything else is returned as-is when it
    already starts with "+", otherwise None.
    """
    if not raw:
        return None
    text = str(raw).strip()
    digits = re.sub(r"\D", "", text)
    if len(digits) == 10:
        return f"+{default_country}{digits}"
    if len(digits) == 11 and digits.startswith(default_country):
        return f"+{digits}"
    if text.startswith("+") and 8 <= len(digits) <= 15:
        return f"+{digits}"
    return None


class TwilioService:
    """Service to send SMS using Twilio"""

    def __init__(self, account_sid: str | None = None, auth_token: str | None = None, phone_number: str | None = None):
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.phone_number = phone_number if phone_number is not None else settings.twilio_phone_number
        self.client = None
        self._init_client()

    def _init_client(self):
        """Initialize Twilio client"""
        if self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)

    @property
    def is_configured(self) -> bool:
        return self.client is not None and bool(self.phone_number)

    def send_sms(self, to_number: str, message: str) -> dict:
        """
        Send SMS using Twilio.

        Args:
            to_number: Recipient phone number
            message: Message to send

        Returns:
            dict with SMS status
        """
        phone = to_e164(to_number)
        if not phone:
            return {
                "status": "error",
                "message": f"Invalid phone number: {to_number}"
            }

        if not self.is_configured:
            return {
                "status": "success",
                "to": phone,
                "message": message,
                "note": "Twilio not configured - running in test mode"
            }

        try:
            sms = self.client.messages.create(
                body=message,
                from_=self.phone_number,
                to=phone
            )
        except Exception as e:
            logger.error("SMS to %s failed: %s", phone, e)
            return {
                "status": "error",
                "to": phone,
                "message": f"Error sending SMS: {str(e)}"
            }

        return {
            "status": "success",
            "to": phone,
            "message": message,
            "sid": sms.sid
        }


# Global instance
_twilio_service = None


def get_twilio_service() -> TwilioService:
    """Get or create Twilio service instance"""
    global _twilio_service
    if _twilio_service is None:
        _twilio_service = TwilioService()
    return _twilio_service
