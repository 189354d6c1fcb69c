import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from availability import is_slot_taken, monthly_hours_used
from calendar_sync import CalendarSync
from clock import Clock, as_utc, studio_instant
from database import async_session
from errors import CancellationRejected, MemberNotFound
from models import Booking, Member, STATUS_CONFIRMED
from policy import (
    REASON_SLOT_TAKEN,
    REASON_SUSPENDED,
    evaluate_booking,
    evaluate_cancellation,
    remaining_hours,
    suspension_for,
)
from studio import Slot

logger = logging.getLogger(__name__)


@dataclass
class BookingDecision:
    accepted: bool
    reason: Optional[str] = None
    booking: Optional[Booking] = None
    remaining_hours: Optional[int] = None
    suspended_until: Optional[datetime] = None


@dataclass
class CancellationOutcome:
    booking: Booking
    status: str
    hours_restored: bool
    strike_issued: bool
    strike_count_after: int
    suspended_until: Optional[datetime] = None


async def get_member(session: AsyncSession, user_id: str) -> Member:
    member = await session.get(Member, user_id)
    if member is None:
        raise MemberNotFound(f"Member {user_id} not found")
    return member


async def request_booking(
    session: AsyncSession,
    clock: Clock,
    *,
    user_id: str,
    tier: str,
    studio_name: str,
    booking_date: date,
    slot: Slot,
    purpose: Optional[str] = None,
) -> BookingDecision:
    member = await get_member(session, user_id)
    now = clock.now()

    taken = await is_slot_taken(session, studio_name, booking_date, slot)
    used = await monthly_hours_used(session, user_id, now.date())

    reason = evaluate_booking(
        booking_date=booking_date,
        tier=tier,
        hours_used=used,
        slot_taken=taken,
        suspended_until=member.booking_suspended_until,
        now=now,
    )
    if reason is not None:
        logger.info(
            "Booking rejected (%s): user=%s studio=%s date=%s slot=%s",
            reason, user_id, studio_name, booking_date, slot.label,
        )
        return BookingDecision(
            accepted=False,
            reason=reason,
            remaining_hours=remaining_hours(tier, used),
            suspended_until=member.booking_suspended_until if reason == REASON_SUSPENDED else None,
        )

    booking = Booking(
        user_id=user_id,
        studio_name=studio_name,
        booking_date=booking_date,
        start_time=slot.start,
        end_time=slot.end,
        status=STATUS_CONFIRMED,
        purpose=purpose or None,
    )

    try:
        session.add(booking)
        await session.commit()
        await session.refresh(booking)
    except IntegrityError:
        # Another request took the slot between our read and this write
        await session.rollback()
        logger.info(
            "Booking lost slot race: user=%s studio=%s date=%s slot=%s",
            user_id, studio_name, booking_date, slot.label,
        )
        return BookingDecision(
            accepted=False,
            reason=REASON_SLOT_TAKEN,
            remaining_hours=remaining_hours(tier, used),
        )

    used = await monthly_hours_used(session, user_id, now.date())
    logger.info(
        "Booking %s confirmed: user=%s studio=%s date=%s slot=%s",
        booking.id, user_id, studio_name, booking_date, slot.label,
    )
    return BookingDecision(accepted=True, booking=booking, remaining_hours=remaining_hours(tier, used))


async def request_cancellation(
    session: AsyncSession,
    clock: Clock,
    *,
    booking_id: int,
    user_id: str,
) -> CancellationOutcome:
    result = await session.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    booking = result.scalars().first()
    if booking is None:
        raise CancellationRejected("Booking not found", CancellationRejected.NOT_FOUND)
    if booking.user_id != user_id:
        raise CancellationRejected("Booking belongs to another member", CancellationRejected.NOT_OWNER)
    if not booking.is_active:
        raise CancellationRejected("Booking already cancelled", CancellationRejected.ALREADY_CANCELLED)

    member = await get_member(session, user_id)
    now = clock.now()
    ruling = evaluate_cancellation(studio_instant(booking.booking_date, booking.start_time), now)

    # Only a row that is still confirmed flips, so a concurrent cancel matches nothing
    result = await session.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == STATUS_CONFIRMED)
        .values(status=ruling.status, cancelled_at=as_utc(now))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.rollback()
        raise CancellationRejected("Booking already cancelled", CancellationRejected.ALREADY_CANCELLED)

    suspended_until = None
    if ruling.strike_issued:
        # Increment in the database; the suspension follows the count it reports back
        await session.execute(
            update(Member)
            .where(Member.id == user_id)
            .values(late_cancellation_strikes=Member.late_cancellation_strikes + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(
            select(Member.late_cancellation_strikes).where(Member.id == user_id)
        )
        suspension = suspension_for(result.scalar_one(), now)
        if suspension is not None:
            # Timestamps are always persisted in UTC
            suspended_until = as_utc(suspension)
            await session.execute(
                update(Member)
                .where(Member.id == user_id)
                .values(booking_suspended_until=suspended_until)
                .execution_options(synchronize_session=False)
            )

    # Booking and ledger land in the same transaction
    await session.commit()
    await session.refresh(booking)
    await session.refresh(member)

    if ruling.strike_issued:
        logger.info(
            "Late cancellation strike for user=%s: strikes=%s suspended_until=%s",
            user_id, member.late_cancellation_strikes, suspended_until,
        )
    logger.info("Booking %s %s by user=%s", booking.id, ruling.status, user_id)

    return CancellationOutcome(
        booking=booking,
        status=ruling.status,
        hours_restored=ruling.hours_restored,
        strike_issued=ruling.strike_issued,
        strike_count_after=member.late_cancellation_strikes,
        suspended_until=suspended_until,
    )


async def push_booking_to_calendar(calendar: CalendarSync, booking_id: int):
    """Background task: mirror a confirmed booking onto the studio calendar."""
    if not calendar.enabled:
        return

    async with async_session() as session:
        booking = await session.get(Booking, booking_id)
        if booking is None or not booking.is_active:
            return
        member = await session.get(Member, booking.user_id)

        event_id = await calendar.create_event(booking, member)
        if not event_id:
            return

        try:
            # The booking may have been cancelled while the event was being created
            await session.refresh(booking)
            if not booking.is_active:
                logger.info("Booking %s cancelled during calendar sync, dropping event %s", booking_id, event_id)
                await calendar.delete_event(event_id)
                return

            booking.google_event_id = event_id
            session.add(booking)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("Could not store calendar event %s for booking %s: %s", event_id, booking_id, exc)


async def remove_booking_from_calendar(calendar: CalendarSync, booking_id: int):
    """Background task: drop a cancelled booking's calendar event."""
    if not calendar.enabled:
        return

    async with async_session() as session:
        booking = await session.get(Booking, booking_id)
        if booking is None or not booking.google_event_id:
            return

        if await calendar.delete_event(booking.google_event_id):
            booking.google_event_id = None
            session.add(booking)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("Could not clear calendar event for booking %s: %s", booking_id, exc)
