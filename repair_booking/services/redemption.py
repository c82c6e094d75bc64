"""
Redemption gate.

Turns a signed offer token into a committed booking. The in-application
checks only fail fast with a useful message; the unique constraint on
bookings (zone_code, appointment_type, slot_code) is what guarantees at
most one booking per physical window when redemptions race.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.errors import (
    OfferInactive,
    OfferNotFound,
    RequestAlreadyBooked,
    SlotAlreadyBooked,
    TechnicianUnavailable,
)
from repair_booking.models import Booking, BookingRequest, Offer
from repair_booking.services.token_codec import verify_token

logger = logging.getLogger(__name__)


@dataclass
class RedemptionResult:
    booking: Booking
    offer: Offer
    already_processed: bool = False
    deactivated: int = 0
    notifications: dict = field(default_factory=dict)
    calendar: dict | None = None

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "already_processed": self.already_processed,
            "booking": self.booking.to_dict(),
            "deactivated_offers": self.deactivated,
            "notifications": self.notifications,
            "calendar": self.calendar,
        }


def new_job_ref() -> str:
    return f"DR-{secrets.token_hex(3).upper()}"


def offer_window(offer: Offer) -> tuple[datetime, datetime]:
    """Local wall-clock start and end of an offer's window"""
    start = datetime.combine(offer.service_date, time.fromisoformat(offer.start_time))
    end = datetime.combine(offer.service_date, time.fromisoformat(offer.end_time))
    return start, end


def load_offer(db: Session, token: str, secret: str) -> tuple[Offer, dict]:
    """Verify the token, then load its offer row."""
    payload = verify_token(token, secret)
    offer = repository.get_offer_by_token(db, token.strip())
    if offer is None:
        raise OfferNotFound()
    return offer, payload


def ensure_request_open(offer: Offer) -> None:
    request = offer.request
    if request is not None and request.status == "booked":
        raise RequestAlreadyBooked()


def check_offer_redeemable(db: Session, token: str, secret: str) -> tuple[Offer, dict]:
    """
    Early reject for verify, select and checkout: the offer must still be
    active and its window must not be booked yet.

    Raises:
        BadFormat, BadSignature, BadPayload, Expired: token failures
        OfferNotFound: no offer row for the token
        OfferInactive: offer deactivated or its window already booked
        RequestAlreadyBooked: the owning request holds a booking already
    """
    offer, payload = load_offer(db, token, secret)
    if not offer.is_active:
        raise OfferInactive()
    ensure_request_open(offer)
    if repository.find_booking_for_slot(db, offer.zone_code, offer.appointment_type, offer.slot_code):
        raise OfferInactive()
    return offer, payload


def ensure_technician_available(db: Session, offer: Offer) -> None:
    """
    Block a window only when every active technician mapped to the offer's
    zone has time off overlapping it.
    """
    techs = repository.list_zone_technicians(db, offer.zone_code)
    if not techs:
        logger.warning("No technician mapped to zone %s; allowing selection", offer.zone_code)
        return

    start, end = offer_window(offer)
    blocked = repository.list_time_off_overlapping(db, start, end, tech_ids=[t.id for t in techs])
    unavailable = {row.tech_id for row in blocked}
    if all(t.id in unavailable for t in techs):
        raise TechnicianUnavailable()


def select_offer(db: Session, token: str, secret: str) -> Offer:
    """
    Mark the owning request "selected" ahead of checkout. No booking is
    written here; the window is only claimed by redemption.
    """
    offer, _ = check_offer_redeemable(db, token, secret)
    request = offer.request

    ensure_technician_available(db, offer)

    if request is not None and request.advance_status("selected"):
        db.commit()
    logger.info("Offer %s selected for request %s", offer.id, offer.request_id)
    return offer


def redeem(
    db: Session,
    token: str,
    secret: str,
    payment_session_id: str | None = None,
    payment_intent: str | None = None,
    base_fee_cents: int = 0,
    dispatcher=None,
    calendar=None,
) -> RedemptionResult:
    """
    Redeem an offer token into a booking.

    Args:
        db: Database session
        token: Offer token from the customer's link
        secret: Token signing secret
        payment_session_id: Upstream payment session, used for idempotent retries
        payment_intent: Upstream payment reference stored on the booking
        base_fee_cents: Fee collected for the booking
        dispatcher: Optional NotificationDispatcher for the confirmation
        calendar: Optional calendar service for event sync

    Returns:
        RedemptionResult; ``already_processed`` is set when the payment
        session was redeemed before

    Raises:
        Token errors, OfferNotFound, OfferInactive, RequestAlreadyBooked,
        SlotAlreadyBooked
    """
    offer, _ = load_offer(db, token, secret)

    # A redelivered payment event finds its own booking before the
    # inactive check, since its redemption deactivated the offer.
    if payment_session_id:
        existing = repository.get_booking_by_payment_session(db, payment_session_id)
        if existing is not None:
            logger.info("Payment session %s already processed", payment_session_id)
            return RedemptionResult(booking=existing, offer=offer, already_processed=True)

    if not offer.is_active:
        raise OfferInactive()
    ensure_request_open(offer)

    window_start, window_end = offer_window(offer)
    booking = Booking(
        request_id=offer.request_id,
        selected_option_id=offer.id,
        slot_code=offer.slot_code,
        zone_code=offer.zone_code,
        appointment_type=offer.appointment_type,
        status="scheduled",
        payment_session_id=payment_session_id,
        payment_intent=payment_intent,
        window_start=window_start,
        window_end=window_end,
        job_ref=new_job_ref(),
        base_fee_cents=base_fee_cents,
    )

    try:
        repository.insert_booking(db, booking)
    except SlotAlreadyBooked:
        if payment_session_id:
            existing = repository.get_booking_by_payment_session(db, payment_session_id)
            if existing is not None:
                return RedemptionResult(booking=existing, offer=offer, already_processed=True)
        raise

    try:
        deactivated = repository.deactivate_sibling_offers(
            db, offer.zone_code, offer.appointment_type, offer.service_date, offer.slot_index
        )
        # One booking per request: its other links die with this one
        deactivated += repository.deactivate_request_offers(db, offer.request_id)
        request = repository.get_request(db, offer.request_id)
        if request is not None:
            request.advance_status("booked")
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        "Booked %s zone=%s type=%s slot=%s (deactivated %d offers)",
        booking.job_ref, booking.zone_code, booking.appointment_type, booking.slot_code, deactivated,
    )

    result = RedemptionResult(booking=booking, offer=offer, deactivated=deactivated)
    if dispatcher is not None:
        result.notifications = dispatcher.send_booking_confirmation(booking)
    if calendar is not None:
        result.calendar = sync_calendar_event(db, booking, calendar)
    return result


def sync_calendar_event(db: Session, booking: Booking, calendar) -> dict:
    """Create the calendar event for a committed booking. Failures are reported only."""
    outcome = calendar.create_booking_event(booking)
    if outcome.get("status") != "success" or not outcome.get("event_id"):
        return outcome

    booking.google_event_id = outcome["event_id"]
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not store calendar event id for %s: %s", booking.job_ref, e)
        return {"status": "error", "message": "Calendar event created but not recorded"}
    return outcome


def record_failed_payment(
    db: Session,
    request_id: int | None,
    payment_session_id: str | None,
    payment_intent: str | None,
    reason: str,
) -> BookingRequest | None:
    """
    Mark a request "failed" after a paid checkout could not be booked and
    keep the payment references so staff can refund it. A request that
    already holds a booking keeps its status; only the references are stored.
    """
    request = repository.get_request(db, request_id) if request_id else None
    if request is None:
        logger.error("Unbookable payment %s has no request to record it on", payment_session_id)
        return None

    request.advance_status("failed")
    request.failed_payment_session_id = payment_session_id
    request.failed_payment_intent = payment_intent
    request.failure_reason = reason
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.warning(
        "Request %s: payment %s needs a refund (%s)", request.id, payment_session_id, reason
    )
    return request
