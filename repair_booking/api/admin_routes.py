"""
Admin and technician API, guarded by a shared X-Admin-Key header
"""
import hmac
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.config import settings
from repair_booking.database import get_db
from repair_booking.errors import AuthError, NotConfiguredError, RequestNotFound, ValidationError
from repair_booking.services import jobs
from repair_booking.services.calendar_view import CalendarView, build_calendar
from repair_booking.services.notifications import NotificationDispatcher, get_dispatcher
from repair_booking.services.offer_allocator import seed_offers
from repair_booking.services.reminders import REMINDER_TYPES, send_reminders, target_date
from repair_booking.services.slot_eligibility import local_now


def require_admin(x_admin_key: Optional[str] = Header(None)):
    """Reject requests without the configured admin key"""
    if not settings.admin_api_key:
        raise NotConfiguredError("Admin API is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")):
        raise AuthError()


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class JobStatusUpdate(BaseModel):
    status: str
    collected_cents: Optional[int] = None


class TechNotesUpdate(BaseModel):
    tech_notes: Optional[str] = None


class TechAssignment(BaseModel):
    tech_id: Optional[int] = None


class TechnicianCreate(BaseModel):
    name: str
    zone_code: Optional[str] = None
    phone: Optional[str] = None


class TimeOffCreate(BaseModel):
    tech_id: int
    start_ts: datetime
    end_ts: datetime
    reason: Optional[str] = None
    type: str = "range"


class SeedOffersRequest(BaseModel):
    days_out: int = 120


class ReminderRun(BaseModel):
    reminder_type: str
    service_date: Optional[date] = None


class DebugBookingCreate(BaseModel):
    zone_code: str
    service_date: date
    slot_index: int
    status: str = "scheduled"
    appointment_type: str = "standard"


@router.get("/calendar")
def calendar(
    anchor: Optional[date] = None,
    mode: str = "week",
    tech_id: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """Day or week grid of bookings and time off, with stats"""
    view = CalendarView(anchor or local_now().date(), mode, tech_id)
    if offset:
        view = view.shifted(offset)
    return {"ok": True, **build_calendar(db, view)}


@router.get("/bookings")
def list_bookings(
    start: Optional[date] = None,
    end: Optional[date] = None,
    zone: Optional[str] = None,
    tech_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Bookings with window start in [start, end), default the next 7 days"""
    start = start or local_now().date()
    end = end or start + timedelta(days=7)
    if end <= start:
        raise ValidationError("end must be after start")

    bookings = repository.list_bookings_between(
        db,
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end, datetime.min.time()),
        zone_codes=[zone.upper()] if zone else None,
        tech_id=tech_id,
    )
    return {"ok": True, "bookings": [b.to_dict() for b in bookings]}


@router.patch("/bookings/{booking_id}/status")
def update_status(booking_id: int, data: JobStatusUpdate, db: Session = Depends(get_db)):
    booking = jobs.update_job_status(db, booking_id, data.status, data.collected_cents)
    return {"ok": True, "booking": booking.to_dict()}


@router.patch("/bookings/{booking_id}/notes")
def update_notes(booking_id: int, data: TechNotesUpdate, db: Session = Depends(get_db)):
    booking = jobs.update_tech_notes(db, booking_id, data.tech_notes)
    return {"ok": True, "booking": booking.to_dict()}


@router.patch("/bookings/{booking_id}/technician")
def assign_technician(booking_id: int, data: TechAssignment, db: Session = Depends(get_db)):
    booking = jobs.assign_technician(db, booking_id, data.tech_id)
    return {"ok": True, "booking": booking.to_dict()}


@router.get("/technicians")
def list_technicians(db: Session = Depends(get_db)):
    return {"ok": True, "technicians": [t.to_dict() for t in repository.list_technicians(db)]}


@router.post("/technicians")
def create_technician(data: TechnicianCreate, db: Session = Depends(get_db)):
    technician = jobs.create_technician(db, data.name, data.zone_code, data.phone)
    return {"ok": True, "technician": technician.to_dict()}


@router.get("/time-off")
def list_time_off(start: date, end: date, tech_id: Optional[int] = None, db: Session = Depends(get_db)):
    rows = repository.list_time_off_overlapping(
        db,
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end, datetime.min.time()),
        tech_ids=[tech_id] if tech_id is not None else None,
    )
    return {"ok": True, "time_off": [t.to_dict() for t in rows]}


@router.post("/time-off")
def create_time_off(data: TimeOffCreate, db: Session = Depends(get_db)):
    time_off = jobs.create_time_off(db, data.tech_id, data.start_ts, data.end_ts, data.reason, data.type)
    return {"ok": True, "time_off": time_off.to_dict()}


@router.delete("/time-off/{time_off_id}")
def delete_time_off(time_off_id: int, db: Session = Depends(get_db)):
    jobs.delete_time_off(db, time_off_id)
    return {"ok": True}


@router.post("/requests/{request_id}/seed-offers")
def seed_request_offers(request_id: int, data: SeedOffersRequest, db: Session = Depends(get_db)):
    """Mint seed offers for every window over the next ``days_out`` days"""
    if data.days_out < 1:
        raise ValidationError("days_out must be >= 1")
    request = repository.get_request(db, request_id)
    if request is None:
        raise RequestNotFound()

    offers = seed_offers(
        db, request, local_now().date(), data.days_out,
        settings.token_signing_secret, settings.offer_ttl_hours,
    )
    db.commit()
    return {"ok": True, "created": len(offers)}


@router.post("/reminders/run")
def run_reminders(
    data: ReminderRun,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Run a reminder type now; defaults to its usual target date"""
    if data.reminder_type not in REMINDER_TYPES:
        raise ValidationError(f"Unknown reminder type: {data.reminder_type}")
    service_date = data.service_date or target_date(data.reminder_type, local_now())
    return {"ok": True, **send_reminders(db, data.reminder_type, service_date, dispatcher)}


@router.post("/debug-booking")
def debug_booking(data: DebugBookingCreate, db: Session = Depends(get_db)):
    """Insert a test booking directly, zone X included"""
    booking = jobs.insert_debug_booking(
        db, data.zone_code, data.service_date, data.slot_index, data.status, data.appointment_type
    )
    return {"ok": True, "booking": booking.to_dict()}
