"""Best-effort Google Calendar mirror of studio bookings.

Nothing in here is allowed to fail a booking or a cancellation: HTTP errors
are logged and swallowed, and nothing is retried.
"""
import logging
from datetime import timezone
from typing import Optional
from urllib.parse import quote

import httpx

from clock import studio_instant
from config import GOOGLE_CALENDAR_ACCESS_TOKEN, GOOGLE_CALENDAR_ID, STUDIO_TIMEZONE
from models import Booking, Member

logger = logging.getLogger(__name__)

CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"
TEMPLATE_URL = "https://calendar.google.com/calendar/render"
STUDIO_LOCATION = "WePlay Studios, Inglewood, CA"


class CalendarSync:
    def __init__(
        self,
        calendar_id: str = GOOGLE_CALENDAR_ID,
        access_token: Optional[str] = GOOGLE_CALENDAR_ACCESS_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.calendar_id = calendar_id
        self.access_token = access_token
        self.transport = transport
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.access_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=CALENDAR_API_URL,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    async def create_event(self, booking: Booking, member: Optional[Member] = None) -> Optional[str]:
        """Create the calendar event for a booking and return its id."""
        if not self.enabled:
            return None

        try:
            async with self._client() as client:
                response = await client.post(self._events_path(), json=event_body(booking, member))
                response.raise_for_status()
                event_id = response.json().get("id")
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.warning("Calendar create failed for booking %s: %s", booking.id, exc)
            return None

        if not event_id:
            logger.warning("Calendar returned no event id for booking %s", booking.id)
        return event_id

    async def delete_event(self, event_id: Optional[str]) -> bool:
        if not self.enabled or not event_id:
            return False

        try:
            async with self._client() as client:
                response = await client.delete(f"{self._events_path()}/{quote(event_id, safe='')}")
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Calendar delete failed for event %s: %s", event_id, exc)
            return False
        return True


def get_calendar() -> CalendarSync:
    return CalendarSync()


def event_body(booking: Booking, member: Optional[Member] = None) -> dict:
    description = []
    if member is not None and member.name:
        description.append(f"Member: {member.name}")
    if member is not None and member.email:
        description.append(f"Email: {member.email}")
    if booking.purpose:
        description.append(f"Purpose: {booking.purpose}")
    description.append(f"Booking ID: {booking.id}")

    return {
        "summary": f"{booking.studio_name} - ICWT Studio Booking",
        "description": "\n".join(description),
        "start": {
            "dateTime": f"{booking.booking_date.isoformat()}T{booking.start_time:%H:%M:%S}",
            "timeZone": STUDIO_TIMEZONE,
        },
        "end": {
            "dateTime": f"{booking.booking_date.isoformat()}T{booking.end_time:%H:%M:%S}",
            "timeZone": STUDIO_TIMEZONE,
        },
    }


def _utc_stamp(booking: Booking, at) -> str:
    instant = studio_instant(booking.booking_date, at).astimezone(timezone.utc)
    return instant.strftime("%Y%m%dT%H%M%SZ")


def add_to_calendar_link(booking: Booking) -> str:
    """Google Calendar "add event" link a member can open for their booking."""
    title = quote(f"{booking.studio_name} - ICWT Studio Session")
    details = quote(f"Purpose: {booking.purpose}" if booking.purpose else "ICWT Studio Booking")
    location = quote(STUDIO_LOCATION)
    dates = f"{_utc_stamp(booking, booking.start_time)}/{_utc_stamp(booking, booking.end_time)}"
    return f"{TEMPLATE_URL}?action=TEMPLATE&text={title}&dates={dates}&details={details}&location={location}"
