import asyncio
import os
import tempfile
from datetime import datetime

import pytest

# Point the app at a throwaway SQLite file before anything imports config
_DB_DIR = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(_DB_DIR, "studio-test.db")
os.environ["GOOGLE_CALENDAR_ACCESS_TOKEN"] = ""

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from calendar_sync import CalendarSync, get_calendar  # noqa: E402
from clock import FixedClock, get_clock  # noqa: E402
from database import engine  # noqa: E402
from main import app  # noqa: E402

# Wednesday noon, studio local time
DEFAULT_NOW = datetime(2026, 10, 14, 12, 0)


class RecordingCalendar(CalendarSync):
    """Calendar stand-in that remembers what it was asked to do."""

    def __init__(self):
        super().__init__(calendar_id="studio", access_token="test-token")
        self.created = []
        self.deleted = []

    async def create_event(self, booking, member=None):
        self.created.append(booking.id)
        return f"evt-{booking.id}"

    async def delete_event(self, event_id):
        self.deleted.append(event_id)
        return True


async def _reset_db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)


@pytest.fixture
def db():
    asyncio.run(_reset_db())


@pytest.fixture
def calendar():
    return RecordingCalendar()


@pytest.fixture
def set_now():
    def _set(value):
        clock = FixedClock(value)
        app.dependency_overrides[get_clock] = lambda: clock
        return clock

    _set(DEFAULT_NOW)
    yield _set
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def client(db, calendar, set_now):
    app.dependency_overrides[get_calendar] = lambda: calendar
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def member(client):
    def _create(user_id="member-1", tier="Creator", **extra):
        resp = client.put(f"/members/{user_id}", json={"tier": tier, **extra})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _create


@pytest.fixture
def book(client):
    def _book(user_id, booking_date, start_time="09:00", studio_name="Studio A", **extra):
        payload = {
            "user_id": user_id,
            "studio_name": studio_name,
            "booking_date": booking_date,
            "start_time": start_time,
            **extra,
        }
        return client.post("/bookings", json=payload)

    return _book


@pytest.fixture
def cancel(client):
    def _cancel(booking_id, user_id):
        return client.post(f"/bookings/{booking_id}/cancel", json={"user_id": user_id})

    return _cancel
