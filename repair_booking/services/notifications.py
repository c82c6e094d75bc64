"""
Notification dispatcher.

Formats offers, confirmations and reminders and hands them to the SMS and
email services. Every send returns a result dict; a failed delivery is
reported to the caller and never raised.
"""
import html
import logging
from datetime import date, datetime, time
from urllib.parse import quote

from repair_booking.config import settings
from repair_booking.models import Booking, BookingRequest, Offer
from repair_booking.services.email_service import EmailService, get_email_service
from repair_booking.services.sms_service import TwilioService, get_twilio_service, to_e164

logger = logging.getLogger(__name__)

NIGHT_BEFORE = "night_before"
MORNING_OF = "morning_of"


def format_time(value: str | time | datetime) -> str:
    if isinstance(value, str):
        value = time.fromisoformat(value)
    hour = value.hour % 12 or 12
    suffix = "am" if value.hour < 12 else "pm"
    return f"{hour}:{value.minute:02d}{suffix}"


def format_date(value: date) -> str:
    return f"{value.strftime('%A, %B')} {value.day}"


def describe_offer(offer: Offer) -> str:
    return f"{format_date(offer.service_date)}, {format_time(offer.start_time)}-{format_time(offer.end_time)}"


def describe_booking(booking: Booking) -> str:
    return (
        f"{format_date(booking.window_start.date())}, "
        f"{format_time(booking.window_start)}-{format_time(booking.window_end)}"
    )


def offer_link(offer: Offer) -> str:
    return f"{settings.public_origin.rstrip('/')}/book?token={quote(offer.offer_token, safe='')}"


def options_link(request_token: str) -> str:
    return f"{settings.public_origin.rstrip('/')}/options?token={quote(request_token, safe='')}"


def wants_sms(request: BookingRequest) -> bool:
    return (request.contact_method or "text") in ("text", "both") and bool(request.phone)


def wants_email(request: BookingRequest) -> bool:
    return (request.contact_method or "text") in ("email", "both") and bool(request.email)


class NotificationDispatcher:
    """Formats and sends customer messages"""

    def __init__(self, sms: TwilioService | None = None, email: EmailService | None = None):
        self.sms = sms or get_twilio_service()
        self.email = email or get_email_service()
        self.business_name = settings.business_name

    # Offers

    def offer_sms_text(self, request: BookingRequest, offers: list[Offer], request_token: str | None = None) -> str:
        name = (request.name or "there").strip()
        lines = [f"{self.business_name}: Hi {name}, here are your appointment options:"]
        for n, offer in enumerate(offers, start=1):
            lines.append(f"{n}) {describe_offer(offer)}: {offer_link(offer)}")
        if request_token:
            lines.append(f"More options: {options_link(request_token)}")
        lines.append("Tap a link to book. Reply STOP to opt out.")
        return "\n".join(lines)

    def offer_email_html(self, request: BookingRequest, offers: list[Offer], heading: str) -> str:
        name = html.escape((request.name or "there").strip())
        items = "".join(
            f'<li><a href="{html.escape(offer_link(o))}">{html.escape(describe_offer(o))}</a></li>'
            for o in offers
        )
        return (
            f"<h2>{html.escape(heading)}</h2>"
            f"<p>Hi {name},</p>"
            f"<p>Pick the window that works best for you:</p>"
            f"<ul>{items}</ul>"
            f"<p>{html.escape(self.business_name)}</p>"
        )

    def send_offers(self, request: BookingRequest, offers: list[Offer], request_token: str | None = None) -> dict:
        """
        Send the primary offers by the request's contact method(s).

        When a request token is given, a link to the full options page is
        included.
        """
        results = {}
        if not offers:
            return {"status": "skipped", "message": "No offers to send"}

        if wants_sms(request):
            results["sms"] = self.sms.send_sms(request.phone, self.offer_sms_text(request, offers, request_token))
        if wants_email(request):
            body = self.offer_email_html(request, offers, "Your appointment options")
            if request_token:
                body += f'<p><a href="{html.escape(options_link(request_token))}">More options</a></p>'
            results["email"] = self.email.send_email(
                request.email,
                f"Your appointment options - {self.business_name}",
                body,
            )
        if not results:
            results["status"] = "skipped"
        self._log_failures("offers", request.id, results)
        return results

    def send_more_options_email(self, request: BookingRequest, offers: list[Offer], request_token: str | None = None) -> dict:
        if not request.email:
            return {"status": "skipped", "message": "Request has no email address"}
        if not offers:
            return {"status": "skipped", "message": "No additional options"}

        body = self.offer_email_html(request, offers, "More appointment options")
        if request_token:
            body += f'<p><a href="{html.escape(options_link(request_token))}">See all options</a></p>'
        result = self.email.send_email(request.email, f"More appointment options - {self.business_name}", body)
        self._log_failures("more_options", request.id, {"email": result})
        return result

    # Bookings

    def confirmation_text(self, booking: Booking) -> str:
        request = booking.request
        name = ((request.name if request else None) or "there").strip()
        return (
            f"{self.business_name}: You're booked!\n"
            f"Hi {name}, your technician will arrive {describe_booking(booking)}.\n"
            f"Job ref: {booking.job_ref}\n"
            "Reply STOP to opt out."
        )

    def send_booking_confirmation(self, booking: Booking) -> dict:
        request = booking.request
        if request is None:
            return {"status": "skipped", "message": "Booking has no customer request"}

        results = {}
        if request.phone:
            results["sms"] = self.sms.send_sms(request.phone, self.confirmation_text(booking))
        if request.email:
            when = html.escape(describe_booking(booking))
            results["email"] = self.email.send_email(
                request.email,
                f"Booking confirmed - {self.business_name} (Job #{booking.job_ref})",
                f"<h2>You're booked</h2><p>Arrival window: {when}</p>"
                f"<p>Job ref: {html.escape(booking.job_ref or '')}</p>",
            )
        if not results:
            results["status"] = "skipped"
        self._log_failures("confirmation", booking.job_ref, results)
        return results

    # Reminders

    def reminder_text(self, booking: Booking, reminder_type: str) -> str:
        request = booking.request
        name = ((request.name if request else None) or "there").strip()
        start = format_time(booking.window_start)
        end = format_time(booking.window_end)
        if reminder_type == NIGHT_BEFORE:
            return (
                f"{self.business_name} reminder:\n"
                f"Hi {name}, your service is tomorrow.\n"
                f"Arrival window: {start}-{end} on {format_date(booking.window_start.date())}\n"
                "Please keep the appliance accessible with space to pull it out.\n"
                f"Job ref: {booking.job_ref}\n"
                "Reply STOP to opt out."
            )
        return (
            f"{self.business_name} today:\n"
            f"Hi {name}, your technician will arrive between {start}-{end}.\n"
            "Please keep the appliance accessible with space to pull it out.\n"
            f"Job ref: {booking.job_ref}\n"
            "Reply STOP to opt out."
        )

    def send_reminder(self, booking: Booking, reminder_type: str) -> dict:
        request = booking.request
        phone = to_e164(request.phone) if request else None
        if not phone:
            return {"status": "skipped", "message": "No phone number"}
        return self.sms.send_sms(phone, self.reminder_text(booking, reminder_type))

    def _log_failures(self, kind: str, ref, results: dict):
        for channel, result in results.items():
            if isinstance(result, dict) and result.get("status") == "error":
                logger.warning("%s %s delivery failed for %s: %s", kind, channel, ref, result.get("message"))


# Global instance
_dispatcher = None


def get_dispatcher() -> NotificationDispatcher:
    """Get or create notification dispatcher instance"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
