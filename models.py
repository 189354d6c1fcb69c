from typing import Optional
from datetime import date, datetime, time, timezone
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, Index, text

STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
STATUS_CANCELLED_LATE = "cancelled_late"

CANCELLED_STATUSES = frozenset({STATUS_CANCELLED, STATUS_CANCELLED_LATE})

ACTIVE_SLOT_WHERE = text("status = 'confirmed'")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Member(SQLModel, table=True):
    __tablename__ = "members"

    id: str = Field(primary_key=True)
    tier: str
    name: Optional[str] = None
    email: Optional[str] = None

    # Strike ledger: the counter only ever grows, the suspension is only ever set
    late_cancellation_strikes: int = Field(default=0)
    booking_suspended_until: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class Booking(SQLModel, table=True):
    __tablename__ = "studio_bookings"
    __table_args__ = (
        # CRITICAL: Database-level protection against double booking.
        # Partial, so a cancelled row never blocks the slot.
        Index(
            "uq_studio_booking_active_slot",
            "studio_name",
            "booking_date",
            "start_time",
            unique=True,
            postgresql_where=ACTIVE_SLOT_WHERE,
            sqlite_where=ACTIVE_SLOT_WHERE,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(foreign_key="members.id", index=True)
    studio_name: str = Field(index=True)
    booking_date: date = Field(index=True)
    start_time: time
    end_time: time
    status: str = Field(default=STATUS_CONFIRMED)
    purpose: Optional[str] = None
    google_event_id: Optional[str] = None
    cancelled_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def is_active(self) -> bool:
        return self.status not in CANCELLED_STATUSES
