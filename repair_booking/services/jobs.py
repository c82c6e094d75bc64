"""
Technician job updates, time off and debug bookings for the admin API
"""
import logging
import secrets
from datetime import date, datetime

from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.config import settings
from repair_booking.errors import BookingNotFound, NotFoundError, ValidationError
from repair_booking.models import Booking, Technician, TechTimeOff
from repair_booking.models.booking import JOB_STATUSES
from repair_booking.services.offer_allocator import APPOINTMENT_TYPES
from repair_booking.services.zones import SLOT_TEMPLATE, TEST_ZONE, ZONES, Slot

logger = logging.getLogger(__name__)

TIME_OFF_TYPES = ("range", "slot")


def _load_booking(db: Session, booking_id: int) -> Booking:
    booking = repository.get_booking(db, booking_id)
    if booking is None:
        raise BookingNotFound()
    return booking


def update_job_status(db: Session, booking_id: int, status: str, collected_cents: int | None = None) -> Booking:
    """
    Set a booking's job status.

    Args:
        db: Database session
        booking_id: Booking to update
        status: One of scheduled, en_route, on_site, completed
        collected_cents: Amount collected on site, if known

    Returns:
        The updated booking
    """
    status = (status or "").strip().lower()
    if status not in JOB_STATUSES:
        raise ValidationError(f"Unknown job status: {status}")
    if collected_cents is not None and collected_cents < 0:
        raise ValidationError("collected_cents must be >= 0")

    booking = _load_booking(db, booking_id)
    booking.status = status
    if collected_cents is not None:
        booking.collected_cents = collected_cents
    db.commit()
    db.refresh(booking)
    logger.info("Job %s -> %s", booking.job_ref, status)
    return booking


def update_tech_notes(db: Session, booking_id: int, notes: str | None) -> Booking:
    booking = _load_booking(db, booking_id)
    booking.tech_notes = (notes or "").strip() or None
    db.commit()
    db.refresh(booking)
    return booking


def assign_technician(db: Session, booking_id: int, tech_id: int | None) -> Booking:
    booking = _load_booking(db, booking_id)
    if tech_id is not None and repository.get_technician(db, tech_id) is None:
        raise NotFoundError("Technician not found")
    booking.assigned_tech_id = tech_id
    db.commit()
    db.refresh(booking)
    return booking


def create_technician(db: Session, name: str, zone_code: str | None, phone: str | None = None) -> Technician:
    zone_code = (zone_code or "").strip().upper() or None
    if zone_code is not None and zone_code not in ZONES:
        raise ValidationError(f"Unknown zone: {zone_code}")
    technician = repository.insert_technician(db, Technician(name=name.strip(), zone_code=zone_code, phone=phone))
    db.commit()
    db.refresh(technician)
    return technician


def create_time_off(
    db: Session,
    tech_id: int,
    start_ts: datetime,
    end_ts: datetime,
    reason: str | None = None,
    kind: str = "range",
) -> TechTimeOff:
    """Block out [start_ts, end_ts) for a technician"""
    if end_ts <= start_ts:
        raise ValidationError("end_ts must be after start_ts")
    if kind not in TIME_OFF_TYPES:
        raise ValidationError(f"Unknown time off type: {kind}")
    if repository.get_technician(db, tech_id) is None:
        raise NotFoundError("Technician not found")

    time_off = repository.insert_time_off(
        db, TechTimeOff(tech_id=tech_id, start_ts=start_ts, end_ts=end_ts, reason=reason, type=kind)
    )
    db.commit()
    db.refresh(time_off)
    logger.info("Time off %s for tech %s: %s - %s", time_off.id, tech_id, start_ts, end_ts)
    return time_off


def delete_time_off(db: Session, time_off_id: int) -> None:
    time_off = repository.get_time_off(db, time_off_id)
    if time_off is None:
        raise NotFoundError("Time off not found")
    repository.delete_time_off(db, time_off)
    db.commit()


def insert_debug_booking(
    db: Session,
    zone_code: str,
    service_date: date,
    slot_index: int,
    status: str = "scheduled",
    appointment_type: str = "standard",
) -> Booking:
    """
    Insert a paid test booking straight into the store. Accepts the
    reserved test zone as well as the service zones.
    """
    zone_code = (zone_code or "").strip().upper()
    if zone_code not in ZONES and zone_code != TEST_ZONE:
        raise ValidationError(f"Unknown zone: {zone_code}")
    if slot_index not in SLOT_TEMPLATE:
        raise ValidationError(f"Unknown slot index: {slot_index}")
    if status not in JOB_STATUSES:
        raise ValidationError(f"Unknown job status: {status}")
    if appointment_type not in APPOINTMENT_TYPES:
        raise ValidationError(f"Unknown appointment type: {appointment_type}")

    slot = Slot.from_template(service_date, slot_index, zone_code)
    booking = Booking(
        slot_code=slot.slot_code,
        zone_code=zone_code,
        appointment_type=appointment_type,
        status=status,
        window_start=slot.start_at,
        window_end=slot.end_at,
        job_ref=f"TEST-{secrets.randbelow(1_000_000):06d}",
        base_fee_cents=settings.booking_fee_cents,
        collected_cents=settings.booking_fee_cents,
    )
    repository.insert_booking(db, booking)
    db.commit()
    db.refresh(booking)
    logger.info("Debug booking %s in zone %s at %s", booking.job_ref, zone_code, slot.slot_code)
    return booking
