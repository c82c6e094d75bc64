"""
Service zones and the daily slot template.

Each service zone has one main weekday; Wednesday is the shared flex day on
which any zone may be booked. Zones sit in a line A-B-C-D, which gives the
1-hop (adjacent) and 2-hop (second tier) fallbacks used as pressure valves.
"""
from dataclasses import dataclass
from datetime import date, datetime, time

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY = range(5)
FLEX_WEEKDAY = WEDNESDAY

# Reserved for test/debug bookings, never offered to customers
TEST_ZONE = "X"


@dataclass(frozen=True)
class ServiceZone:
    code: str
    name: str
    main_weekday: int
    adjacent: tuple[str, ...] = ()
    second_tier: tuple[str, ...] = ()

    @property
    def fetch_codes(self) -> tuple[str, ...]:
        """The zone itself, then its adjacent and second-tier zones"""
        return (self.code,) + self.adjacent + self.second_tier


ZONES: dict[str, ServiceZone] = {
    "A": ServiceZone("A", "Zone A", THURSDAY, adjacent=("B",), second_tier=("C",)),
    "B": ServiceZone("B", "Zone B", MONDAY, adjacent=("A", "C"), second_tier=("D",)),
    "C": ServiceZone("C", "Zone C", FRIDAY, adjacent=("B", "D"), second_tier=("A",)),
    "D": ServiceZone("D", "Zone D", TUESDAY, adjacent=("C",), second_tier=("B",)),
}


def get_zone(code: str) -> ServiceZone | None:
    return ZONES.get((code or "").strip().upper())


def is_eligible_weekday(zone_code: str, service_date: date) -> bool:
    """A slot is bookable on its own zone's main weekday or on the flex day."""
    weekday = service_date.weekday()
    if weekday == FLEX_WEEKDAY:
        return zone_code in ZONES
    zone = ZONES.get(zone_code)
    return zone is not None and zone.main_weekday == weekday


# Fixed eight-window daily template: index -> (label, start, end)
SLOT_TEMPLATE: dict[int, tuple[str, str, str]] = {
    1: ("A", "08:00:00", "10:00:00"),
    2: ("B", "08:30:00", "10:30:00"),
    3: ("C", "09:30:00", "11:30:00"),
    4: ("D", "10:00:00", "12:00:00"),
    5: ("E", "13:00:00", "15:00:00"),
    6: ("F", "13:30:00", "15:30:00"),
    7: ("G", "14:30:00", "16:30:00"),
    8: ("H", "15:00:00", "17:00:00"),
}

MORNING = "morning"
AFTERNOON = "afternoon"


def daypart_for(start_time: str) -> str:
    return MORNING if start_time[:5] < "12:00" else AFTERNOON


@dataclass(frozen=True)
class Slot:
    """A candidate appointment window for one zone on one date"""

    service_date: date
    slot_index: int
    zone_code: str
    start_time: str
    end_time: str
    daypart: str = ""
    window_label: str | None = None

    def __post_init__(self):
        if not self.daypart:
            object.__setattr__(self, "daypart", daypart_for(self.start_time))

    @classmethod
    def from_template(cls, service_date: date, slot_index: int, zone_code: str) -> "Slot":
        label, start, end = SLOT_TEMPLATE[slot_index]
        return cls(
            service_date=service_date,
            slot_index=slot_index,
            zone_code=zone_code,
            start_time=start,
            end_time=end,
            window_label=label,
        )

    @property
    def key(self) -> str:
        """Physical window key used to avoid offering the same window twice"""
        return f"{self.service_date.isoformat()}|{self.slot_index}"

    @property
    def slot_code(self) -> str:
        return f"{self.service_date.isoformat()}#{self.slot_index}"

    @property
    def is_morning(self) -> bool:
        return self.daypart == MORNING

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.service_date, time.fromisoformat(self.start_time))

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.service_date, time.fromisoformat(self.end_time))

    def sort_key(self) -> tuple:
        return (self.service_date, self.start_time, self.slot_index, self.zone_code)

    def to_dict(self) -> dict:
        return {
            "service_date": self.service_date.isoformat(),
            "slot_index": self.slot_index,
            "zone_code": self.zone_code,
            "daypart": self.daypart,
            "window_label": self.window_label,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }
