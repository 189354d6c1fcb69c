import logging
from datetime import date, datetime, time
from typing import List

from fastapi import BackgroundTasks, FastAPI, Depends, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from availability import load_month_index, monthly_hours_used, upcoming_bookings
from booking_service import (
    get_member,
    push_booking_to_calendar,
    remove_booking_from_calendar,
    request_booking,
    request_cancellation,
)
from calendar_sync import CalendarSync, add_to_calendar_link, get_calendar
from clock import STUDIO_TZ, Clock, as_utc, get_clock, month_bounds, parse_month
from config import CORS_ORIGINS, LOG_LEVEL
from database import close_db, get_session, init_db
from errors import CancellationRejected, MemberNotFound
from models import Member
from policy import (
    REASON_CLOSED_SUNDAY,
    REASON_NO_HOURS_LEFT,
    REASON_PAST_DATE,
    REASON_SLOT_TAKEN,
    REASON_SUSPENDED,
    is_suspended,
    remaining_hours,
)
from studio import SLOT_GRID, STUDIOS, TIER_HOURS, find_slot, tier_hours

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Studio Booking System")

# 1. Rejection reason -> HTTP status
REJECTION_STATUS = {
    REASON_CLOSED_SUNDAY: status.HTTP_400_BAD_REQUEST,
    REASON_PAST_DATE: status.HTTP_400_BAD_REQUEST,
    REASON_SLOT_TAKEN: status.HTTP_409_CONFLICT,
    REASON_SUSPENDED: status.HTTP_403_FORBIDDEN,
    REASON_NO_HOURS_LEFT: status.HTTP_403_FORBIDDEN,
    CancellationRejected.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CancellationRejected.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    CancellationRejected.ALREADY_CANCELLED: status.HTTP_409_CONFLICT,
}

REJECTION_MESSAGES = {
    REASON_CLOSED_SUNDAY: "The studio is closed on Sundays.",
    REASON_PAST_DATE: "Cannot book past dates.",
    REASON_SLOT_TAKEN: "This slot is already booked.",
    REASON_SUSPENDED: "Booking is suspended after repeated late cancellations.",
    REASON_NO_HOURS_LEFT: "No studio hours left this month.",
}


# Pydantic Schemas for Request/Response
class StudioInfo(BaseModel):
    name: str
    description: str


class SlotInfo(BaseModel):
    time_label: str
    start_time: time
    end_time: time


class StudiosResponse(BaseModel):
    studios: List[StudioInfo]
    slots: List[SlotInfo]


class SlotStatus(SlotInfo):
    status: str


class DaySchedule(BaseModel):
    day: date
    schedule: List[SlotStatus]


class StudioAvailability(BaseModel):
    studio_name: str
    month: str
    days: List[DaySchedule]


class BookingCreate(BaseModel):
    user_id: str
    studio_name: str
    booking_date: date
    start_time: time
    purpose: str | None = None


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    studio_name: str
    booking_date: date
    start_time: time
    end_time: time
    status: str
    purpose: str | None = None


class BookingResponse(BaseModel):
    accepted: bool
    booking: BookingRead
    remaining_hours: int
    calendar_link: str


class CancelRequest(BaseModel):
    user_id: str


class CancellationResponse(BaseModel):
    success: bool
    booking_id: int
    status: str
    hours_restored: bool
    strike_issued: bool
    strike_count_after: int
    suspended_until: datetime | None
    message: str


class MemberUpsert(BaseModel):
    tier: str
    name: str | None = None
    email: str | None = None


class MemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tier: str
    name: str | None = None
    email: str | None = None
    late_cancellation_strikes: int


class Allocation(BaseModel):
    user_id: str
    tier: str
    tier_hours: int
    hours_used: int
    hours_remaining: int
    late_cancellation_strikes: int
    suspended: bool
    booking_suspended_until: datetime | None


def _reject(reason: str, message: str, **extra):
    detail = {"accepted": False, "reason": reason, "message": message}
    detail.update(extra)
    raise HTTPException(status_code=REJECTION_STATUS.get(reason, status.HTTP_400_BAD_REQUEST), detail=detail)


def _long_date(value: datetime) -> str:
    local = as_utc(value).astimezone(STUDIO_TZ)
    return f"{local:%B} {local.day}, {local.year}"


def _cancellation_message(outcome) -> str:
    if outcome.strike_issued:
        message = f"Late cancellation recorded. Strike {outcome.strike_count_after}/3."
        if outcome.suspended_until is not None:
            message += f" Booking suspended until {_long_date(outcome.suspended_until)}."
        return message
    if outcome.hours_restored:
        return "Booking cancelled - hours restored to your allocation"
    return "Booking cancelled - hours forfeited (late cancellation)"


async def _member_or_404(session: AsyncSession, user_id: str) -> Member:
    try:
        return await get_member(session, user_id)
    except MemberNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)


@app.on_event("startup")
async def on_startup():
    await init_db()


@app.on_event("shutdown")
async def on_shutdown():
    await close_db()


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage failure. Please retry the request."},
    )


# --- GET /studios ---
@app.get("/studios", response_model=StudiosResponse)
async def list_studios():
    return StudiosResponse(
        studios=[StudioInfo(name=name, description=desc) for name, desc in STUDIOS.items()],
        slots=[SlotInfo(time_label=s.label, start_time=s.start, end_time=s.end) for s in SLOT_GRID],
    )


# --- GET /studios/{studio_name}/availability ---
@app.get("/studios/{studio_name}/availability", response_model=StudioAvailability)
async def get_availability(
    studio_name: str,
    month: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
    user_id: str | None = None,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    if studio_name not in STUDIOS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown studio")

    today = clock.today()
    try:
        month_start = parse_month(month) if month else today.replace(day=1)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid month")

    # Single range query for the whole month
    index = await load_month_index(session, studio_name, month_start)

    first, last = month_bounds(month_start)
    days = []
    for offset in range((last - first).days + 1):
        day = date.fromordinal(first.toordinal() + offset)
        schedule = [
            SlotStatus(time_label=slot.label, start_time=slot.start, end_time=slot.end, status=state)
            for slot, state in index.day_grid(day, user_id, today)
        ]
        days.append(DaySchedule(day=day, schedule=schedule))

    return StudioAvailability(studio_name=studio_name, month=f"{month_start:%Y-%m}", days=days)


# --- POST /bookings ---
@app.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    calendar: CalendarSync = Depends(get_calendar),
):
    # Validation
    if booking_data.studio_name not in STUDIOS:
        _reject("invalid_studio", "Invalid studio")

    slot = find_slot(booking_data.start_time)
    if slot is None:
        _reject("invalid_slot", "Invalid time slot. Studio slots start at 09:00, 11:00, 13:00, 15:00, 17:00 and 19:00")

    member = await _member_or_404(session, booking_data.user_id)

    decision = await request_booking(
        session,
        clock,
        user_id=member.id,
        tier=member.tier,
        studio_name=booking_data.studio_name,
        booking_date=booking_data.booking_date,
        slot=slot,
        purpose=booking_data.purpose,
    )

    if not decision.accepted:
        extra = {"remaining_hours": decision.remaining_hours}
        if decision.suspended_until is not None:
            extra["suspended_until"] = as_utc(decision.suspended_until).isoformat()
        _reject(decision.reason, REJECTION_MESSAGES[decision.reason], **extra)

    background_tasks.add_task(push_booking_to_calendar, calendar, decision.booking.id)

    return BookingResponse(
        accepted=True,
        booking=BookingRead.model_validate(decision.booking),
        remaining_hours=decision.remaining_hours,
        calendar_link=add_to_calendar_link(decision.booking),
    )


# --- POST /bookings/{booking_id}/cancel ---
@app.post("/bookings/{booking_id}/cancel", response_model=CancellationResponse)
async def cancel_booking(
    booking_id: int,
    cancel_data: CancelRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    calendar: CalendarSync = Depends(get_calendar),
):
    try:
        outcome = await request_cancellation(session, clock, booking_id=booking_id, user_id=cancel_data.user_id)
    except CancellationRejected as exc:
        _reject(exc.reason, exc.message)
    except MemberNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)

    # Fire-and-forget; the response never waits on the calendar
    background_tasks.add_task(remove_booking_from_calendar, calendar, booking_id)

    return CancellationResponse(
        success=True,
        booking_id=booking_id,
        status=outcome.status,
        hours_restored=outcome.hours_restored,
        strike_issued=outcome.strike_issued,
        strike_count_after=outcome.strike_count_after,
        suspended_until=as_utc(outcome.suspended_until) if outcome.suspended_until else None,
        message=_cancellation_message(outcome),
    )


# --- PUT /members/{user_id} ---
@app.put("/members/{user_id}", response_model=MemberRead)
async def upsert_member(
    user_id: str,
    member_data: MemberUpsert,
    session: AsyncSession = Depends(get_session),
):
    if member_data.tier not in TIER_HOURS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid membership tier")

    member = await session.get(Member, user_id)
    if member is None:
        member = Member(id=user_id, tier=member_data.tier)
    # Ledger fields are never touched here
    member.tier = member_data.tier
    member.name = member_data.name
    member.email = member_data.email

    session.add(member)
    await session.commit()
    await session.refresh(member)
    return MemberRead.model_validate(member)


# --- GET /members/{user_id}/allocation ---
@app.get("/members/{user_id}/allocation", response_model=Allocation)
async def get_allocation(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    member = await _member_or_404(session, user_id)
    now = clock.now()
    used = await monthly_hours_used(session, user_id, now.date())
    suspended_until = member.booking_suspended_until

    return Allocation(
        user_id=member.id,
        tier=member.tier,
        tier_hours=tier_hours(member.tier),
        hours_used=used,
        hours_remaining=remaining_hours(member.tier, used),
        late_cancellation_strikes=member.late_cancellation_strikes,
        suspended=is_suspended(suspended_until, now),
        booking_suspended_until=as_utc(suspended_until) if suspended_until else None,
    )


# --- GET /members/{user_id}/bookings/upcoming ---
@app.get("/members/{user_id}/bookings/upcoming", response_model=List[BookingRead])
async def get_upcoming_bookings(
    user_id: str,
    limit: int = Query(default=5, ge=1, le=50),
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    await _member_or_404(session, user_id)
    bookings = await upcoming_bookings(session, user_id, clock.today(), limit=limit)
    return [BookingRead.model_validate(b) for b in bookings]


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
