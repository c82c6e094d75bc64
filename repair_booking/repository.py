"""
Narrow repository over the row store.

The booking core only reads and writes through these functions, so the
allocation and redemption logic can be exercised against any SQLAlchemy
engine. Writes flush and leave the commit to the caller; only the reminder
log commits its row immediately, since that insert is the idempotency guard.
"""
import logging
from datetime import date, datetime

from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from repair_booking.errors import SlotAlreadyBooked
from repair_booking.models import Booking, BookingRequest, Offer, ReminderLog, Technician, TechTimeOff

logger = logging.getLogger(__name__)


# Requests

def insert_request(db: Session, request: BookingRequest) -> BookingRequest:
    db.add(request)
    db.flush()
    return request


def get_request(db: Session, request_id: int) -> BookingRequest | None:
    return db.get(BookingRequest, request_id)


# Offers

def insert_offers(db: Session, offers: list[Offer]) -> list[Offer]:
    db.add_all(offers)
    db.flush()
    return offers


def get_offer_by_token(db: Session, token: str) -> Offer | None:
    return db.query(Offer).filter(Offer.offer_token == token).first()


def list_offers_for_request(db: Session, request_id: int, active_only: bool = False) -> list[Offer]:
    query = db.query(Offer).filter(Offer.request_id == request_id)
    if active_only:
        query = query.filter(Offer.is_active.is_(True))
    return query.order_by(Offer.offer_group, Offer.service_date, Offer.slot_index).all()


def offer_exists(
    db: Session,
    request_id: int,
    offer_group: str,
    appointment_type: str,
    zone_code: str,
    service_date: date,
    slot_index: int,
) -> bool:
    return db.query(Offer.id).filter(
        Offer.request_id == request_id,
        Offer.offer_group == offer_group,
        Offer.appointment_type == appointment_type,
        Offer.zone_code == zone_code,
        Offer.service_date == service_date,
        Offer.slot_index == slot_index,
    ).first() is not None


def deactivate_sibling_offers(
    db: Session,
    zone_code: str,
    appointment_type: str,
    service_date: date,
    slot_index: int,
) -> int:
    """
    Deactivate every offer for the same physical window, across all
    requests and offer groups.

    Returns:
        Number of offers that were still active
    """
    result = db.execute(
        update(Offer)
        .where(
            Offer.zone_code == zone_code,
            Offer.appointment_type == appointment_type,
            Offer.service_date == service_date,
            Offer.slot_index == slot_index,
            Offer.is_active.is_(True),
        )
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def deactivate_request_offers(db: Session, request_id: int) -> int:
    """Deactivate whatever is still active among a request's offers"""
    result = db.execute(
        update(Offer)
        .where(Offer.request_id == request_id, Offer.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


# Bookings

def insert_booking(db: Session, booking: Booking) -> Booking:
    """
    Insert a booking. This must be the first write of the transaction:
    a uniqueness violation rolls the whole transaction back.

    Raises:
        SlotAlreadyBooked: the store's uniqueness constraint rejected the row
    """
    db.add(booking)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.info(
            "Booking insert rejected by unique constraint: zone=%s type=%s slot=%s",
            booking.zone_code, booking.appointment_type, booking.slot_code,
        )
        raise SlotAlreadyBooked() from e
    return booking


def get_booking(db: Session, booking_id: int) -> Booking | None:
    return db.get(Booking, booking_id)


def get_booking_by_payment_session(db: Session, payment_session_id: str) -> Booking | None:
    return db.query(Booking).filter(Booking.payment_session_id == payment_session_id).first()


def find_booking_for_slot(db: Session, zone_code: str, appointment_type: str, slot_code: str) -> Booking | None:
    return db.query(Booking).filter(
        Booking.zone_code == zone_code,
        Booking.appointment_type == appointment_type,
        Booking.slot_code == slot_code,
    ).first()


def list_bookings_between(
    db: Session,
    start: datetime,
    end: datetime,
    zone_codes: list[str] | None = None,
    tech_id: int | None = None,
) -> list[Booking]:
    query = db.query(Booking).filter(Booking.window_start >= start, Booking.window_start < end)
    if zone_codes:
        query = query.filter(Booking.zone_code.in_(zone_codes))
    if tech_id is not None:
        query = query.filter(Booking.assigned_tech_id == tech_id)
    return query.order_by(Booking.window_start, Booking.id).all()


def list_bookings_on(db: Session, service_date: date) -> list[Booking]:
    start = datetime.combine(service_date, datetime.min.time())
    end = datetime.combine(service_date, datetime.max.time())
    return db.query(Booking).filter(
        Booking.window_start >= start, Booking.window_start <= end
    ).order_by(Booking.window_start).all()


# Technicians

def insert_technician(db: Session, technician: Technician) -> Technician:
    db.add(technician)
    db.flush()
    return technician


def get_technician(db: Session, tech_id: int) -> Technician | None:
    return db.get(Technician, tech_id)


def list_technicians(db: Session, active_only: bool = False) -> list[Technician]:
    query = db.query(Technician)
    if active_only:
        query = query.filter(Technician.active.is_(True))
    return query.order_by(Technician.name).all()


def insert_time_off(db: Session, time_off: TechTimeOff) -> TechTimeOff:
    db.add(time_off)
    db.flush()
    return time_off


def get_time_off(db: Session, time_off_id: int) -> TechTimeOff | None:
    return db.get(TechTimeOff, time_off_id)


def delete_time_off(db: Session, time_off: TechTimeOff) -> None:
    db.delete(time_off)
    db.flush()


def list_zone_technicians(db: Session, zone_code: str) -> list[Technician]:
    return db.query(Technician).filter(
        Technician.zone_code == zone_code, Technician.active.is_(True)
    ).all()


def list_time_off_overlapping(
    db: Session, start: datetime, end: datetime, tech_ids: list[int] | None = None
) -> list[TechTimeOff]:
    """Time-off rows with end > start and start < end."""
    query = db.query(TechTimeOff).filter(
        and_(TechTimeOff.end_ts > start, TechTimeOff.start_ts < end)
    )
    if tech_ids is not None:
        query = query.filter(TechTimeOff.tech_id.in_(tech_ids))
    return query.order_by(TechTimeOff.start_ts).all()


# Reminders

def record_reminder_attempt(db: Session, job_ref: str, reminder_type: str, service_date: date) -> bool:
    """
    Insert and commit the reminder log row before sending.

    Returns:
        False when a row already exists for (job_ref, reminder_type)
    """
    db.add(ReminderLog(job_ref=job_ref, reminder_type=reminder_type, service_date=service_date))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True
