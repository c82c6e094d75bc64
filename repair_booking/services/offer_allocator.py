"""
Offer allocator.

Picks up to five appointment windows for a customer zone, in order:

1. earliest morning on the zone's main weekday (own zone only)
2. earliest afternoon on the zone's main weekday (own zone only)
3. earliest remaining slot from any eligible zone
4. same date as pick 3 in the opposite daypart, else the next earliest
5. earliest remaining flex-day slot, else the next earliest

Picks 1-3 are the primary options and 4-5 the "more" options. A physical
window (date and slot index) is never offered twice.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.errors import ValidationError
from repair_booking.models import BookingRequest, Offer
from repair_booking.models.offer import OFFER_GROUPS
from repair_booking.services.token_codec import make_offer_payload, make_request_payload, now_ms, sign_token
from repair_booking.services.zones import FLEX_WEEKDAY, SLOT_TEMPLATE, ServiceZone, Slot

logger = logging.getLogger(__name__)

APPOINTMENT_TYPES = ("standard", "full_service", "no_one_home", "parts")

_TYPE_ALIASES = {
    "": "standard",
    "standard": "standard",
    "full_service": "full_service",
    "full-service": "full_service",
    "no_one_home": "no_one_home",
    "no-one-home": "no_one_home",
    "noonehome": "no_one_home",
    "parts": "parts",
    "parts_in": "parts",
    "parts-in": "parts",
}

MAX_PRIMARY = 3
MAX_MORE = 2
PARTS_PAGE_SIZE = 3


def normalize_appointment_type(raw: str | None) -> str:
    key = (raw or "").strip().lower()
    if key not in _TYPE_ALIASES:
        raise ValidationError(f"Unknown appointment type: {raw}")
    return _TYPE_ALIASES[key]


@dataclass
class Allocation:
    primary: list[Slot] = field(default_factory=list)
    more: list[Slot] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.primary and not self.more


class _Picker:
    """Chronological pool that never hands out the same window twice"""

    def __init__(self, slots: Iterable[Slot]):
        self.pool = sorted(slots, key=Slot.sort_key)
        self.picked: set[str] = set()

    def first(self, predicate: Callable[[Slot], bool]) -> Slot | None:
        return next((s for s in self.pool if s.key not in self.picked and predicate(s)), None)

    def take(self, slot: Slot | None) -> Slot | None:
        if slot is not None:
            self.picked.add(slot.key)
        return slot


def allocate(eligible: Iterable[Slot], zone: ServiceZone, appointment_type: str = "standard") -> Allocation:
    """
    Select primary and "more" options from eligible slots.

    Deterministic for a given input; returns an empty allocation when
    nothing is eligible.
    """
    allowed = set(zone.fetch_codes)
    picker = _Picker(s for s in eligible if s.zone_code in allowed)

    def on_main_day(s: Slot) -> bool:
        return s.zone_code == zone.code and s.service_date.weekday() == zone.main_weekday

    def any_slot(s: Slot) -> bool:
        return True

    first = picker.take(picker.first(lambda s: on_main_day(s) and s.is_morning))
    second = picker.take(picker.first(lambda s: on_main_day(s) and not s.is_morning))
    third = picker.take(picker.first(any_slot))

    fourth = None
    if third is not None:
        fourth = picker.first(
            lambda s: s.service_date == third.service_date and s.is_morning != third.is_morning
        )
    fourth = picker.take(fourth or picker.first(any_slot))

    fifth = picker.first(lambda s: s.service_date.weekday() == FLEX_WEEKDAY)
    fifth = picker.take(fifth or picker.first(any_slot))

    primary = [s for s in (first, second, third) if s is not None][:MAX_PRIMARY]
    more = [s for s in (fourth, fifth) if s is not None][:MAX_MORE]
    if appointment_type == "no_one_home":
        more = []

    return Allocation(primary=primary, more=more)


def parse_cursor(cursor: str | None) -> tuple[date, int] | None:
    if not cursor:
        return None
    try:
        raw_date, raw_index = str(cursor).split("|")
        return date.fromisoformat(raw_date), int(raw_index)
    except ValueError:
        raise ValidationError(f"Invalid cursor: {cursor}") from None


def allocate_parts(eligible: Iterable[Slot], zone: ServiceZone, cursor: str | None = None) -> Allocation:
    """
    Parts-in visits: flex-day morning and afternoon first (first page only),
    then the earliest slots from the zone and its adjacent zones.
    Paginated with a ``"{date}|{slot_index}"`` cursor.
    """
    after = parse_cursor(cursor)
    near = {zone.code, *zone.adjacent}

    def after_cursor(s: Slot) -> bool:
        return after is None or (s.service_date, s.slot_index) > after

    picker = _Picker(s for s in eligible if after_cursor(s))
    out = []

    def is_flex(s: Slot) -> bool:
        return s.service_date.weekday() == FLEX_WEEKDAY

    if after is None:
        for wants_morning in (True, False):
            slot = picker.take(picker.first(lambda s: is_flex(s) and s.is_morning == wants_morning))
            if slot is not None:
                out.append(slot)

    last = out[-1] if out else None
    while len(out) < PARTS_PAGE_SIZE:
        slot = picker.take(picker.first(lambda s: not is_flex(s) and s.zone_code in near))
        if slot is None:
            break
        out.append(slot)
        last = slot

    # Later pages continue after the last chronological pick
    next_cursor = last.key if last is not None else (cursor or "")

    return Allocation(primary=out, more=[], next_cursor=next_cursor)


def allocate_for_type(
    eligible: Iterable[Slot], zone: ServiceZone, appointment_type: str, cursor: str | None = None
) -> Allocation:
    if appointment_type == "parts":
        return allocate_parts(eligible, zone, cursor)
    return allocate(eligible, zone, appointment_type)


def build_offer(
    request: BookingRequest,
    slot: Slot,
    offer_group: str,
    secret: str,
    expires_at_ms: int,
) -> Offer:
    if offer_group not in OFFER_GROUPS:
        raise ValidationError(f"Unknown offer group: {offer_group}")
    if request.appointment_type not in APPOINTMENT_TYPES:
        raise ValidationError(f"Unknown appointment type: {request.appointment_type}")

    payload = make_offer_payload(
        request_id=request.id,
        appointment_type=request.appointment_type,
        zone_code=slot.zone_code,
        service_date=slot.service_date.isoformat(),
        slot_index=slot.slot_index,
        expires_at_ms=expires_at_ms,
    )
    return Offer(
        request_id=request.id,
        offer_group=offer_group,
        appointment_type=request.appointment_type,
        service_date=slot.service_date,
        slot_index=slot.slot_index,
        zone_code=slot.zone_code,
        window_label=slot.window_label,
        start_time=slot.start_time,
        end_time=slot.end_time,
        offer_token=sign_token(payload, secret),
        is_active=True,
    )


def create_offers(
    db: Session,
    request: BookingRequest,
    allocation: Allocation,
    secret: str,
    ttl_hours: int,
) -> list[Offer]:
    """Mint and persist one signed offer per allocated slot."""
    expires_at = now_ms() + ttl_hours * 60 * 60 * 1000
    offers = [build_offer(request, s, "primary", secret, expires_at) for s in allocation.primary]
    offers += [build_offer(request, s, "more", secret, expires_at) for s in allocation.more]
    repository.insert_offers(db, offers)
    logger.info(
        "Created %d offers for request %s (zone %s, %s)",
        len(offers), request.id, request.zone_code, request.appointment_type,
    )
    return offers


def seed_offers(
    db: Session,
    request: BookingRequest,
    start_date: date,
    days_out: int,
    secret: str,
    ttl_hours: int,
) -> list[Offer]:
    """
    Mint a "seed" offer for every template window on every weekday in the
    range, in the request's own zone. Windows that already have a seed
    offer for the request are skipped.
    """
    if not request.zone_code:
        raise ValidationError("Request has no zone")

    expires_at = now_ms() + ttl_hours * 60 * 60 * 1000
    appointment_type = request.appointment_type or "standard"
    offers = []
    for offset in range(days_out):
        service_date = start_date + timedelta(days=offset)
        if service_date.weekday() >= 5:
            continue
        for slot_index in SLOT_TEMPLATE:
            if repository.offer_exists(
                db, request.id, "seed", appointment_type, request.zone_code, service_date, slot_index
            ):
                continue
            slot = Slot.from_template(service_date, slot_index, request.zone_code)
            offers.append(build_offer(request, slot, "seed", secret, expires_at))

    repository.insert_offers(db, offers)
    logger.info("Seeded %d offers for request %s", len(offers), request.id)
    return offers


def make_request_token(request: BookingRequest, secret: str, ttl_hours: int) -> str:
    """Signed link token that lists a request's offers"""
    expires_at = now_ms() + ttl_hours * 60 * 60 * 1000
    return sign_token(make_request_payload(request.id, expires_at), secret)
