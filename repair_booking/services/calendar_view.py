"""
Admin calendar: per-day slot grid with bookings, time off and stats.

The view state (anchor date, day or week mode, focused technician) is a
value passed in by the caller.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from repair_booking import repository
from repair_booking.errors import ValidationError
from repair_booking.services.zones import SLOT_TEMPLATE, Slot

VIEW_MODES = ("day", "week")


@dataclass(frozen=True)
class CalendarView:
    anchor_date: date
    mode: str = "week"
    focus_tech_id: int | None = None

    def __post_init__(self):
        if self.mode not in VIEW_MODES:
            raise ValidationError(f"Unknown calendar mode: {self.mode}")

    @property
    def days(self) -> list[date]:
        if self.mode == "day":
            return [self.anchor_date]
        monday = self.anchor_date - timedelta(days=self.anchor_date.weekday())
        return [monday + timedelta(days=n) for n in range(5)]

    @property
    def range(self) -> tuple[datetime, datetime]:
        first, last = self.days[0], self.days[-1]
        return (
            datetime.combine(first, datetime.min.time()),
            datetime.combine(last + timedelta(days=1), datetime.min.time()),
        )

    def shifted(self, steps: int) -> "CalendarView":
        """The same view moved by whole days or weeks"""
        delta = timedelta(days=steps) if self.mode == "day" else timedelta(weeks=steps)
        return CalendarView(self.anchor_date + delta, self.mode, self.focus_tech_id)


def compute_stats(bookings) -> dict:
    return {
        "total": len(bookings),
        "completed": sum(1 for b in bookings if (b.status or "").lower() == "completed"),
        "full_service": sum(1 for b in bookings if b.appointment_type == "full_service"),
        "revenue_cents": sum(b.collected_cents or 0 for b in bookings),
    }


def build_calendar(db: Session, view: CalendarView) -> dict:
    start, end = view.range
    bookings = repository.list_bookings_between(db, start, end, tech_id=view.focus_tech_id)
    tech_ids = [view.focus_tech_id] if view.focus_tech_id is not None else None
    time_off = repository.list_time_off_overlapping(db, start, end, tech_ids=tech_ids)

    days = []
    for day in view.days:
        rows = []
        for slot_index in SLOT_TEMPLATE:
            # Zone is irrelevant for the grid; the template window is shared
            slot = Slot.from_template(day, slot_index, "")
            rows.append({
                "slot_index": slot_index,
                "window_label": slot.window_label,
                "start_time": slot.start_time,
                "end_time": slot.end_time,
                "daypart": slot.daypart,
                "bookings": [
                    b.to_dict() for b in bookings
                    if b.window_start == slot.start_at and b.window_end == slot.end_at
                ],
                "time_off": [
                    t.to_dict() for t in time_off
                    if t.end_ts > slot.start_at and t.start_ts < slot.end_at
                ],
            })
        days.append({"date": day.isoformat(), "slots": rows})

    return {
        "mode": view.mode,
        "anchor_date": view.anchor_date.isoformat(),
        "focus_tech_id": view.focus_tech_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "days": days,
        "stats": compute_stats(bookings),
    }
