"""
Appointment reminder run.

The log row for (job_ref, reminder_type) is committed before the SMS goes
out, so a trigger that fires twice sends each reminder at most once.
"""
import logging
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.services.notifications import MORNING_OF, NIGHT_BEFORE, NotificationDispatcher

logger = logging.getLogger(__name__)

REMINDER_TYPES = (NIGHT_BEFORE, MORNING_OF)


def target_date(reminder_type: str, now: datetime) -> date:
    """Night-before reminders cover tomorrow; morning-of reminders cover today"""
    if reminder_type == NIGHT_BEFORE:
        return now.date() + timedelta(days=1)
    return now.date()


def send_reminders(
    db: Session,
    reminder_type: str,
    service_date: date,
    dispatcher: NotificationDispatcher,
) -> dict:
    """
    Send one reminder type for every booking on a service date.

    Returns:
        dict with counts of sent and skipped reminders and a list of errors
    """
    if reminder_type not in REMINDER_TYPES:
        raise ValueError(f"Unknown reminder type: {reminder_type}")

    sent = 0
    skipped = 0
    errors = []

    for booking in repository.list_bookings_on(db, service_date):
        request = booking.request
        if not booking.job_ref or request is None or not request.phone:
            skipped += 1
            continue

        if not repository.record_reminder_attempt(db, booking.job_ref, reminder_type, service_date):
            skipped += 1
            continue

        result = dispatcher.send_reminder(booking, reminder_type)
        if result.get("status") == "success":
            sent += 1
        else:
            errors.append({"job_ref": booking.job_ref, "message": result.get("message")})

    logger.info(
        "Reminders %s for %s: sent=%d skipped=%d errors=%d",
        reminder_type, service_date, sent, skipped, len(errors),
    )
    return {
        "reminder_type": reminder_type,
        "service_date": service_date.isoformat(),
        "sent": sent,
        "skipped": skipped,
        "errors": errors,
    }
