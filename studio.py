from datetime import time
from typing import Dict, NamedTuple, Optional


class Slot(NamedTuple):
    start: time
    end: time

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M} - {self.end:%H:%M}"


# Fixed daily grid: 09:00-21:00 in six 2-hour slots
SLOT_GRID = (
    Slot(time(9, 0), time(11, 0)),
    Slot(time(11, 0), time(13, 0)),
    Slot(time(13, 0), time(15, 0)),
    Slot(time(15, 0), time(17, 0)),
    Slot(time(17, 0), time(19, 0)),
    Slot(time(19, 0), time(21, 0)),
)

SLOT_HOURS = 2

# date.weekday() value; the studio is closed all day
SUNDAY = 6

STUDIOS: Dict[str, str] = {
    "Studio A": "Main recording studio with SSL console",
    "Studio B": "Vocal booth and production suite",
    "Studio C": "Podcast and content creation studio",
}

TIER_HOURS: Dict[str, int] = {
    "Creator": 10,
    "Professional": 15,
    "Executive": 20,
}


def find_slot(start: time) -> Optional[Slot]:
    for slot in SLOT_GRID:
        if slot.start == start:
            return slot
    return None


def tier_hours(tier: str) -> int:
    try:
        return TIER_HOURS[tier]
    except KeyError:
        raise ValueError(f"Unknown membership tier: {tier}") from None
