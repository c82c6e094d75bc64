"""
Slot eligibility engine.

Candidate windows come from the fixed daily template for every business day
in the booking horizon. A slot is eligible for a customer's zone when it
belongs to that zone or one of its fallback zones and falls on the main
weekday of its own zone or on the flex day.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.config import settings
from repair_booking.models import Booking
from repair_booking.services.zones import (
    FLEX_WEEKDAY,
    SLOT_TEMPLATE,
    TEST_ZONE,
    ServiceZone,
    Slot,
    daypart_for,
    is_eligible_weekday,
)

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    """Naive wall-clock time in the schedule timezone"""
    return datetime.now(ZoneInfo(settings.schedule_timezone)).replace(tzinfo=None)


def build_candidate_slots(zone_codes: Iterable[str], start_date: date, days: int) -> list[Slot]:
    """Template slots for each weekday in [start_date, start_date + days)."""
    codes = list(dict.fromkeys(zone_codes))
    slots = []
    for offset in range(days):
        service_date = start_date + timedelta(days=offset)
        if service_date.weekday() >= 5:
            continue
        for code in codes:
            for slot_index in SLOT_TEMPLATE:
                slots.append(Slot.from_template(service_date, slot_index, code))
    return sorted(slots, key=Slot.sort_key)


def eligible_slots(all_slots: Iterable[Slot], zone: ServiceZone) -> list[Slot]:
    """
    Filter slots by the weekday partition.

    Fallback zones are allowed, but each slot is judged against the main
    weekday of its own zone, never the customer's.
    """
    allowed = set(zone.fetch_codes)
    return sorted(
        (s for s in all_slots if s.zone_code in allowed and is_eligible_weekday(s.zone_code, s.service_date)),
        key=Slot.sort_key,
    )


def exclude_booked(slots: Iterable[Slot], bookings: Iterable[Booking]) -> list[Slot]:
    """Drop slots whose zone and exact start/end match an existing booking."""
    taken = {(b.zone_code, b.window_start, b.window_end) for b in bookings}
    return [s for s in slots if (s.zone_code, s.start_at, s.end_at) not in taken]


def exclude_started(slots: Iterable[Slot], now: datetime) -> list[Slot]:
    """Drop slots in the past, including today's windows that already began."""
    return [s for s in slots if s.start_at > now]


def exclude_over_block_limit(slots: Iterable[Slot], bookings: Iterable[Booking], limit: int) -> list[Slot]:
    """
    Keep at most ``limit`` distinct zones booked in each morning or
    afternoon block of a non-flex day.
    """
    booked_zones = defaultdict(set)
    for b in bookings:
        if b.window_start is None or b.zone_code == TEST_ZONE:
            continue
        if b.window_start.weekday() == FLEX_WEEKDAY:
            continue
        block = daypart_for(b.window_start.strftime("%H:%M:%S"))
        booked_zones[(b.window_start.date(), block)].add(b.zone_code)

    kept = []
    for s in slots:
        if s.service_date.weekday() != FLEX_WEEKDAY:
            zones = booked_zones.get((s.service_date, s.daypart), set()) | {s.zone_code}
            if len(zones) > limit:
                continue
        kept.append(s)
    return kept


def find_available_slots(
    db: Session,
    zone: ServiceZone,
    now: datetime,
    horizon_days: int,
    block_limit: int,
) -> list[Slot]:
    """
    Eligible, unbooked, not-yet-started slots for a customer zone.

    Args:
        db: Database session
        zone: Customer's resolved service zone
        now: Current local wall-clock time in the schedule timezone
        horizon_days: Number of days to look ahead, starting today
        block_limit: Max distinct zones per daypart block on non-flex days

    Returns:
        Slots in chronological order
    """
    start_date = now.date()
    candidates = build_candidate_slots(zone.fetch_codes, start_date, horizon_days)
    slots = eligible_slots(candidates, zone)

    window_start = datetime.combine(start_date, datetime.min.time())
    window_end = window_start + timedelta(days=horizon_days)
    bookings = repository.list_bookings_between(db, window_start, window_end)

    slots = exclude_booked(slots, bookings)
    slots = exclude_started(slots, now)
    slots = exclude_over_block_limit(slots, bookings, block_limit)

    logger.debug(
        "Zone %s: %d candidates, %d available over %d days",
        zone.code, len(candidates), len(slots), horizon_days,
    )
    return slots
