"""Booking policy engine.

Pure decision functions: nothing here touches the database or reads the wall
clock. Callers pass "now" in from a :class:`clock.Clock`.

Booking requests are gated in a fixed order and rejected on the first
failing check::

    closed_sunday -> slot_taken -> past_date -> suspended -> no_hours_left

Cancellations are ruled on the hours left before the booking starts::

    >= 24h      cancelled       hours restored
    6h .. 24h   cancelled_late  hours forfeited
    < 6h        cancelled_late  hours forfeited, strike issued
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from clock import STUDIO_TZ, as_utc, end_of_month, hours_between
from models import STATUS_CANCELLED, STATUS_CANCELLED_LATE
from studio import SLOT_HOURS, SUNDAY, tier_hours

REASON_CLOSED_SUNDAY = "closed_sunday"
REASON_SLOT_TAKEN = "slot_taken"
REASON_PAST_DATE = "past_date"
REASON_SUSPENDED = "suspended"
REASON_NO_HOURS_LEFT = "no_hours_left"

FULL_REFUND_HOURS = 24
STRIKE_WINDOW_HOURS = 6

SHORT_SUSPENSION = timedelta(days=7)
SHORT_SUSPENSION_STRIKES = 2
MONTH_SUSPENSION_STRIKES = 3


@dataclass(frozen=True)
class CancellationRuling:
    status: str
    hours_restored: bool
    strike_issued: bool


@dataclass(frozen=True)
class StrikeUpdate:
    strikes: int
    suspended_until: Optional[datetime]


def remaining_hours(tier: str, hours_used: int) -> int:
    return max(tier_hours(tier) - hours_used, 0)


def is_suspended(suspended_until: Optional[datetime], now: datetime) -> bool:
    return suspended_until is not None and as_utc(suspended_until) > as_utc(now)


def evaluate_booking(
    *,
    booking_date: date,
    tier: str,
    hours_used: int,
    slot_taken: bool,
    suspended_until: Optional[datetime],
    now: datetime,
) -> Optional[str]:
    """Return the rejection reason for a booking request, or None to accept."""
    if booking_date.weekday() == SUNDAY:
        return REASON_CLOSED_SUNDAY
    if slot_taken:
        return REASON_SLOT_TAKEN
    if booking_date < now.astimezone(STUDIO_TZ).date():
        return REASON_PAST_DATE
    if is_suspended(suspended_until, now):
        return REASON_SUSPENDED
    if remaining_hours(tier, hours_used) < SLOT_HOURS:
        return REASON_NO_HOURS_LEFT
    return None


def evaluate_cancellation(start: datetime, now: datetime) -> CancellationRuling:
    hours_until_start = hours_between(now, start)

    if hours_until_start >= FULL_REFUND_HOURS:
        return CancellationRuling(STATUS_CANCELLED, hours_restored=True, strike_issued=False)
    if hours_until_start >= STRIKE_WINDOW_HOURS:
        return CancellationRuling(STATUS_CANCELLED_LATE, hours_restored=False, strike_issued=False)
    return CancellationRuling(STATUS_CANCELLED_LATE, hours_restored=False, strike_issued=True)


def escalate_strikes(prior_strikes: int, now: datetime) -> StrikeUpdate:
    """Add one strike and work out the suspension it triggers, if any.

    The first strike is a warning. The second suspends booking for a week,
    and any further strike suspends until the end of the current month.
    """
    strikes = prior_strikes + 1
    return StrikeUpdate(strikes, suspension_for(strikes, now))


def suspension_for(strikes: int, now: datetime) -> Optional[datetime]:
    """Suspension end for a member who has just reached ``strikes``."""
    if strikes >= MONTH_SUSPENSION_STRIKES:
        return end_of_month(now)
    if strikes == SHORT_SUSPENSION_STRIKES:
        return as_utc(now) + SHORT_SUSPENSION
    return None
