"""
Google Calendar API Service
Mirrors committed bookings onto the shop calendar
"""
import json
import logging

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from repair_booking.config import settings
from repair_booking.models import Booking

logger = logging.getLogger(__name__)


def load_credentials(raw: str) -> Credentials:
    """Load service-account credentials from a file path or a JSON string"""
    try:
        with open(raw, 'r') as f:
            creds_dict = json.load(f)
    except (FileNotFoundError, OSError, json.JSONDecodeError):
        creds_dict = json.loads(raw)

    return Credentials.from_service_account_info(
        creds_dict,
        scopes=['https://www.googleapis.com/auth/calendar']
    )


class GoogleCalendarService:
    """Service to interact with Google Calendar API"""

    def __init__(self, service=None, calendar_id: str | None = None, timezone: str | None = None):
        self.calendar_id = calendar_id or settings.google_calendar_id
        self.timezone = timezone or settings.schedule_timezone
        self.service = service
        if self.service is None:
            self.service = build('calendar', 'v3', credentials=load_credentials(settings.google_calendar_credentials))

    def create_booking_event(self, booking: Booking) -> dict:
        """
        Create the calendar event for a booking.

        Args:
            booking: Committed booking with its window set

        Returns:
            dict with event ID and details
        """
        request = booking.request
        customer = (request.name if request else None) or "Customer"
        lines = [f"Job ref: {booking.job_ref}", f"Zone: {booking.zone_code}", f"Type: {booking.appointment_type}"]
        if request is not None:
            lines += [f"Phone: {request.phone or '-'}", f"Address: {request.formatted_address or request.address or '-'}"]
            if request.notes:
                lines.append(f"Notes: {request.notes}")

        event = {
            'summary': f"{customer} - {booking.appointment_type} ({booking.zone_code})",
            'description': "\n".join(lines),
            'start': {'dateTime': booking.window_start.isoformat(), 'timeZone': self.timezone},
            'end': {'dateTime': booking.window_end.isoformat(), 'timeZone': self.timezone},
        }

        try:
            created_event = self.service.events().insert(
                calendarId=self.calendar_id,
                body=event
            ).execute()
        except Exception as e:
            logger.error("Calendar sync failed for %s: %s", booking.job_ref, e)
            return {
                "status": "error",
                "message": f"Failed to create event: {str(e)}"
            }

        return {
            "status": "success",
            "event_id": created_event.get('id'),
            "calendar_link": created_event.get('htmlLink')
        }


# Global instance
_calendar_service = None


def get_calendar_service() -> GoogleCalendarService | None:
    """Get the calendar service, or None when calendar sync is not configured"""
    global _calendar_service
    if _calendar_service is None and settings.google_calendar_credentials and settings.google_calendar_id:
        try:
            _calendar_service = GoogleCalendarService()
        except (ValueError, OSError) as e:
            logger.error("Failed to initialize Google Calendar service: %s", e)
            return None
    return _calendar_service
