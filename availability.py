from dataclasses import dataclass, field
from datetime import date, time
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from clock import month_bounds
from models import Booking, STATUS_CANCELLED, STATUS_CONFIRMED
from studio import SLOT_GRID, SLOT_HOURS, SUNDAY, Slot

SLOT_AVAILABLE = "available"
SLOT_BOOKED = "booked"
SLOT_MINE = "mine"
SLOT_PAST = "past"
SLOT_CLOSED = "closed"


@dataclass
class AvailabilityIndex:
    """Non-cancelled bookings of one studio, keyed by (date, start_time)."""

    studio_name: str
    bookings: Sequence[Booking] = ()
    _by_slot: Dict[Tuple[date, time], Booking] = field(init=False, repr=False)

    def __post_init__(self):
        # Lookup dictionary for O(1) access
        self._by_slot = {
            (b.booking_date, b.start_time): b
            for b in self.bookings
            if b.studio_name == self.studio_name and b.is_active
        }

    def is_slot_booked(self, slot: Slot, day: date) -> bool:
        return (day, slot.start) in self._by_slot

    def is_my_booking(self, slot: Slot, day: date, user_id: str) -> bool:
        booking = self._by_slot.get((day, slot.start))
        return booking is not None and booking.user_id == user_id

    def slot_state(self, slot: Slot, day: date, user_id: str, today: date) -> str:
        if day.weekday() == SUNDAY:
            return SLOT_CLOSED
        if self.is_my_booking(slot, day, user_id):
            return SLOT_MINE
        if self.is_slot_booked(slot, day):
            return SLOT_BOOKED
        if day < today:
            return SLOT_PAST
        return SLOT_AVAILABLE

    def day_grid(self, day: date, user_id: str, today: date) -> List[Tuple[Slot, str]]:
        return [(slot, self.slot_state(slot, day, user_id, today)) for slot in SLOT_GRID]


async def load_month_index(session: AsyncSession, studio_name: str, month: date) -> AvailabilityIndex:
    """Fetch the studio's active bookings for the month containing ``month`` in one query."""
    first, last = month_bounds(month)
    statement = select(Booking).where(
        Booking.studio_name == studio_name,
        Booking.booking_date >= first,
        Booking.booking_date <= last,
        Booking.status == STATUS_CONFIRMED,
    )
    result = await session.execute(statement)
    return AvailabilityIndex(studio_name, result.scalars().all())


async def is_slot_taken(session: AsyncSession, studio_name: str, day: date, slot: Slot) -> bool:
    index = await load_month_index(session, studio_name, day)
    return index.is_slot_booked(slot, day)


async def monthly_hours_used(session: AsyncSession, user_id: str, today: date) -> int:
    """Hours the user has spent this month.

    Late cancellations keep their hours: only a plain ``cancelled`` booking
    gives its time back to the allocation.
    """
    first, last = month_bounds(today)
    statement = select(func.count(Booking.id)).where(
        Booking.user_id == user_id,
        Booking.booking_date >= first,
        Booking.booking_date <= last,
        Booking.status != STATUS_CANCELLED,
    )
    result = await session.execute(statement)
    return result.scalar_one() * SLOT_HOURS


async def upcoming_bookings(session: AsyncSession, user_id: str, today: date, limit: int = 5) -> List[Booking]:
    statement = (
        select(Booking)
        .where(
            Booking.user_id == user_id,
            Booking.booking_date >= today,
            Booking.status == STATUS_CONFIRMED,
        )
        .order_by(Booking.booking_date, Booking.start_time)
        .limit(limit)
    )
    result = await session.execute(statement)
    return list(result.scalars().all())
