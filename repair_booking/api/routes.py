import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.config import settings
from repair_booking.database import get_db
from repair_booking.errors import (
    AuthError,
    BadPayload,
    ConflictError,
    ExpiredError,
    NotFoundError,
    RequestNotFound,
    ValidationError,
    ZoneNotFound,
)
from repair_booking.models import BookingRequest
from repair_booking.services.google_calendar import get_calendar_service
from repair_booking.services.notifications import NotificationDispatcher, get_dispatcher
from repair_booking.services.offer_allocator import (
    allocate_for_type,
    create_offers,
    make_request_token,
    normalize_appointment_type,
)
from repair_booking.services.payment_service import CHECKOUT_COMPLETED, PaymentService, get_payment_service
from repair_booking.services.redemption import check_offer_redeemable, record_failed_payment, redeem, select_offer
from repair_booking.services.slot_eligibility import find_available_slots, local_now
from repair_booking.services.token_codec import verify_token
from repair_booking.services.zone_resolver import ZoneResolver, get_zone_resolver
from repair_booking.services.zones import get_zone

logger = logging.getLogger(__name__)

router = APIRouter()

CONTACT_METHODS = ("text", "email", "both")


class RequestTimesRequest(BaseModel):
    """Request model for /request-times"""

    name: str = ""
    phone: str = ""
    email: str = ""
    contact_method: str = "text"
    address: str = ""
    appointment_type: str = "standard"
    notes: Optional[str] = None


class AppointmentOptionsForm(BaseModel):
    """Booking form fields as posted by the public site"""

    contact_method: str = "text"
    customer_name: str = ""
    name: str = ""
    phone: str = ""
    email: str = ""
    address_line1: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    home: str = ""
    full_service: Union[bool, str, int, None] = None
    notes: Optional[str] = None

    def to_request_times(self) -> RequestTimesRequest:
        address = ", ".join(p.strip() for p in (self.address_line1, self.city, self.state, self.zip) if p.strip())
        if self.home.strip() == "no_one_home":
            appointment_type = "no_one_home"
        elif str(self.full_service).lower() in ("true", "on", "1"):
            appointment_type = "full_service"
        else:
            appointment_type = "standard"
        return RequestTimesRequest(
            name=(self.customer_name or self.name).strip(),
            phone=self.phone.strip(),
            email=self.email.strip(),
            contact_method=self.contact_method,
            address=address,
            appointment_type=appointment_type,
            notes=self.notes,
        )


class TokenRequest(BaseModel):
    """Request body carrying an offer token"""

    token: str = ""


class MoreOptionsEmailRequest(BaseModel):
    """Request model for /send-more-options-email"""

    token: str = ""
    email: Optional[str] = None


def _slot_listing(allocation, appointment_type: str) -> dict:
    return {
        "primary": [s.to_dict() for s in allocation.primary],
        "more": {
            "options": [s.to_dict() for s in allocation.more],
            "show_no_one_home_cta": appointment_type != "no_one_home",
        },
    }


def _available_allocation(db: Session, zone_code: str, appointment_type: str, cursor: Optional[str] = None):
    zone = get_zone(zone_code)
    if zone is None:
        raise ZoneNotFound(f"Unknown zone: {zone_code}")
    slots = find_available_slots(
        db, zone, local_now(), settings.booking_horizon_days, settings.max_zones_per_block
    )
    return zone, allocate_for_type(slots, zone, appointment_type, cursor)


def _request_payload(token: str) -> dict:
    payload = verify_token(token, settings.token_signing_secret)
    if payload.get("kind") != "request" or "request_id" not in payload:
        raise BadPayload("Not a request link")
    return payload


def _metadata_request_id(metadata: dict) -> int | None:
    try:
        return int(metadata.get("request_id"))
    except (TypeError, ValueError):
        return None


@router.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "ok", "app": settings.app_name}


@router.get("/geocode")
def geocode(address: str = "", resolver: ZoneResolver = Depends(get_zone_resolver)):
    """Geocode an address without a zone lookup"""
    result = resolver.geocode(address)
    return {
        "ok": True,
        "lat": result.lat,
        "lon": result.lon,
        "formatted_address": result.formatted_address,
        "place_id": result.place_id,
    }


@router.get("/zone")
def zone_for_point(lat: float, lon: float, resolver: ZoneResolver = Depends(get_zone_resolver)):
    """Service zone containing a point"""
    zone_code, zone_name = resolver.lookup_zone(lat, lon)
    return {"ok": True, "zone_code": zone_code, "zone_name": zone_name}


@router.get("/resolve-zone")
def resolve_zone(address: str = "", resolver: ZoneResolver = Depends(get_zone_resolver)):
    """Geocode an address and map it to a service zone"""
    resolved = resolver.resolve(address)
    return {"ok": True, **resolved.to_dict()}


@router.get("/available-slots")
def available_slots(
    zone: str,
    type_: str = Query("standard", alias="type"),
    cursor: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Allocated appointment options for a zone.

    Parts-in visits page through results with ``cursor``.
    """
    appointment_type = normalize_appointment_type(type_)
    service_zone, allocation = _available_allocation(db, zone, appointment_type, cursor)
    body = {"ok": True, "zone": service_zone.code, "appointment_type": appointment_type}
    body.update(_slot_listing(allocation, appointment_type))
    if appointment_type == "parts":
        body["next_cursor"] = allocation.next_cursor
    return body


def _request_times(
    data: RequestTimesRequest,
    db: Session,
    resolver: ZoneResolver,
    dispatcher: NotificationDispatcher,
) -> dict:
    address = data.address.strip()
    if not address:
        raise ValidationError("address is required")

    contact_method = (data.contact_method or "text").strip().lower()
    if contact_method not in CONTACT_METHODS:
        raise ValidationError(f"Unknown contact method: {data.contact_method}")
    if contact_method in ("text", "both") and not data.phone.strip():
        raise ValidationError("phone is required for text/both")
    if contact_method in ("email", "both") and not data.email.strip():
        raise ValidationError("email is required for email/both")

    appointment_type = normalize_appointment_type(data.appointment_type)
    resolved = resolver.resolve(address)
    _, allocation = _available_allocation(db, resolved.zone_code, appointment_type)

    if not allocation.primary:
        return {
            "ok": True,
            "zone": resolved.zone_code,
            "appointment_type": appointment_type,
            "message": "No slots available right now.",
            "primary": [],
            "more": {"options": [], "show_no_one_home_cta": appointment_type != "no_one_home"},
        }

    request = repository.insert_request(db, BookingRequest(
        name=data.name.strip() or None,
        phone=data.phone.strip() or None,
        email=data.email.strip() or None,
        contact_method=contact_method,
        address=address,
        formatted_address=resolved.formatted_address,
        lat=resolved.lat,
        lon=resolved.lon,
        zone_code=resolved.zone_code,
        zone_name=resolved.zone_name,
        appointment_type=appointment_type,
        notes=data.notes,
        status="sent",
    ))
    offers = create_offers(db, request, allocation, settings.token_signing_secret, settings.offer_ttl_hours)
    request_token = make_request_token(request, settings.token_signing_secret, settings.request_token_ttl_hours)
    db.commit()

    primary = [o for o in offers if o.offer_group == "primary"]
    more = [o for o in offers if o.offer_group == "more"]
    show_more = appointment_type != "no_one_home"
    delivery = dispatcher.send_offers(request, primary, request_token if show_more else None)

    return {
        "ok": True,
        "request_id": request.id,
        "token": request_token,
        "zone": resolved.zone_code,
        "appointment_type": appointment_type,
        "primary": [o.to_dict() for o in primary],
        "more": {"options": [o.to_dict() for o in more], "show_no_one_home_cta": show_more},
        "delivery": delivery,
    }


@router.post("/request-times")
def request_times(
    data: RequestTimesRequest,
    db: Session = Depends(get_db),
    resolver: ZoneResolver = Depends(get_zone_resolver),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Create a booking request with its offers and send them to the customer.

    - Resolve the address to a zone
    - Allocate options from the available slots
    - Store the request and one signed offer per option
    - Text and/or email the options
    """
    return _request_times(data, db, resolver, dispatcher)


@router.post("/request-appointment-options")
def request_appointment_options(
    form: AppointmentOptionsForm,
    db: Session = Depends(get_db),
    resolver: ZoneResolver = Depends(get_zone_resolver),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Booking-form alias of /request-times"""
    return _request_times(form.to_request_times(), db, resolver, dispatcher)


@router.get("/verify-offer")
def verify_offer(token: str = "", db: Session = Depends(get_db)):
    """Check an offer link before checkout"""
    offer, payload = check_offer_redeemable(db, token, settings.token_signing_secret)
    return {"ok": True, "offer": offer.to_dict(), "payload": payload}


@router.post("/select-offer")
def select_offer_route(data: TokenRequest, db: Session = Depends(get_db)):
    """Mark the request as selected for this offer"""
    offer = select_offer(db, data.token, settings.token_signing_secret)
    return {
        "ok": True,
        "request_id": offer.request_id,
        "selected": {
            "service_date": offer.service_date.isoformat(),
            "slot_index": offer.slot_index,
            "zone_code": offer.zone_code,
        },
        "message": "Proceed to payment.",
    }


@router.post("/create-checkout-session")
def create_checkout_session(
    data: TokenRequest,
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Start a payment for an offer that is still available"""
    offer, _ = check_offer_redeemable(db, data.token, settings.token_signing_secret)
    email = offer.request.email if offer.request else None
    session = payments.create_checkout_session(offer.offer_token, offer.request_id, customer_email=email)
    return {"ok": True, "id": session["id"], "url": session["url"]}


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Payment provider webhook.

    A completed checkout redeems the offer. Lost races and stale links are
    acknowledged with 200 so the provider stops retrying; store failures
    return 500 so it retries.
    """
    payload = await request.body()
    event = payments.parse_webhook(payload, stripe_signature)

    if event.get("type") != CHECKOUT_COMPLETED:
        return {"received": True}

    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    offer_token = metadata.get("offer_token")
    if not offer_token:
        logger.error("Checkout session %s has no offer token in metadata", session.get("id"))
        return {"received": True, "warning": "missing_metadata"}

    try:
        result = redeem(
            db,
            offer_token,
            settings.token_signing_secret,
            payment_session_id=session.get("id"),
            payment_intent=session.get("payment_intent"),
            base_fee_cents=session.get("amount_total") or settings.booking_fee_cents,
            dispatcher=dispatcher,
            calendar=get_calendar_service(),
        )
    except (ConflictError, ExpiredError, NotFoundError, ValidationError, AuthError) as e:
        logger.error(
            "Paid checkout %s could not be booked: %s (%s)", session.get("id"), e.error, e.message
        )
        if isinstance(e, (ConflictError, ExpiredError)):
            record_failed_payment(
                db,
                _metadata_request_id(metadata),
                session.get("id"),
                session.get("payment_intent"),
                e.error,
            )
        return {"received": True, "ok": False, "error": e.error, "message": e.message}

    return {
        "received": True,
        "ok": True,
        "already_processed": result.already_processed,
        "job_ref": result.booking.job_ref,
    }


@router.get("/request-options")
def request_options(token: str = "", db: Session = Depends(get_db)):
    """Active offers for a request link"""
    payload = _request_payload(token)
    request = repository.get_request(db, int(payload["request_id"]))
    if request is None:
        raise RequestNotFound()

    offers = repository.list_offers_for_request(db, request.id, active_only=True)
    return {
        "ok": True,
        "request_id": request.id,
        "status": request.status,
        "appointment_type": request.appointment_type,
        "primary": [o.to_dict() for o in offers if o.offer_group == "primary"],
        "more": [o.to_dict() for o in offers if o.offer_group == "more"],
    }


@router.post("/send-more-options-email")
def send_more_options_email(
    data: MoreOptionsEmailRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Email the request's remaining options"""
    payload = _request_payload(data.token)
    request = repository.get_request(db, int(payload["request_id"]))
    if request is None:
        raise RequestNotFound()

    if data.email and data.email.strip():
        request.email = data.email.strip()
        db.commit()
    if not request.email:
        raise ValidationError("email is required")

    offers = repository.list_offers_for_request(db, request.id, active_only=True)
    offers = [o for o in offers if o.offer_group in ("primary", "more")]
    if not offers:
        return {"ok": True, "skipped": True, "reason": "No offers to send"}

    result = dispatcher.send_more_options_email(request, offers, data.token)
    return {"ok": result.get("status") != "error", "delivery": result}
