"""Cancellation outcomes, strikes and suspensions through the HTTP surface."""
from datetime import datetime


def _booking_id(resp):
    assert resp.status_code == 201, resp.text
    return resp.json()["booking"]["id"]


def _allocation(client, user_id="member-1"):
    return client.get(f"/members/{user_id}/allocation").json()


def test_early_cancellation_restores_hours(client, member, book, cancel, calendar):
    member("member-1", "Creator")
    booking_id = _booking_id(book("member-1", "2026-10-16", "09:00"))
    assert _allocation(client)["hours_used"] == 2

    resp = cancel(booking_id, "member-1")

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "cancelled"
    assert body["hours_restored"] is True
    assert body["strike_issued"] is False
    assert body["strike_count_after"] == 0
    assert body["suspended_until"] is None
    assert body["message"] == "Booking cancelled - hours restored to your allocation"

    assert _allocation(client)["hours_used"] == 0
    assert calendar.deleted == [f"evt-{booking_id}"]


def test_cancellation_ten_hours_out_forfeits_without_strike(client, member, book, cancel, set_now):
    member("member-1", "Creator")
    set_now(datetime(2026, 10, 14, 23, 0))
    booking_id = _booking_id(book("member-1", "2026-10-15", "09:00"))

    body = cancel(booking_id, "member-1").json()

    assert body["status"] == "cancelled_late"
    assert body["hours_restored"] is False
    assert body["strike_issued"] is False
    assert body["message"] == "Booking cancelled - hours forfeited (late cancellation)"

    allocation = _allocation(client)
    assert allocation["hours_used"] == 2
    assert allocation["late_cancellation_strikes"] == 0


def test_cancelled_slot_can_be_booked_again(client, member, book, cancel):
    member("member-1")
    member("member-2")
    booking_id = _booking_id(book("member-1", "2026-10-16", "11:00"))
    cancel(booking_id, "member-1")

    assert book("member-2", "2026-10-16", "11:00").status_code == 201


def test_first_strike_is_a_warning(client, member, book, cancel):
    member("member-1", "Executive")
    booking_id = _booking_id(book("member-1", "2026-10-14", "13:00"))

    body = cancel(booking_id, "member-1").json()

    assert body["status"] == "cancelled_late"
    assert body["strike_issued"] is True
    assert body["strike_count_after"] == 1
    assert body["suspended_until"] is None
    assert body["message"] == "Late cancellation recorded. Strike 1/3."


def test_second_strike_suspends_for_a_week(client, member, book, cancel):
    member("member-1", "Executive")
    cancel(_booking_id(book("member-1", "2026-10-14", "13:00")), "member-1")

    # Starts in three hours, one strike already on record
    booking_id = _booking_id(book("member-1", "2026-10-14", "15:00"))
    body = cancel(booking_id, "member-1").json()

    assert body["strike_count_after"] == 2
    assert body["hours_restored"] is False
    assert body["suspended_until"].startswith("2026-10-21T19:00:00")
    assert body["message"] == "Late cancellation recorded. Strike 2/3. Booking suspended until October 21, 2026."

    allocation = _allocation(client)
    assert allocation["late_cancellation_strikes"] == 2
    assert allocation["suspended"] is True


def test_third_strike_suspends_to_month_end(client, member, book, cancel, set_now):
    member("member-1", "Executive")
    for start in ["13:00", "15:00"]:
        cancel(_booking_id(book("member-1", "2026-10-14", start)), "member-1")

    set_now(datetime(2026, 10, 21, 12, 0, 1))
    booking_id = _booking_id(book("member-1", "2026-10-21", "19:00"))

    set_now(datetime(2026, 10, 21, 15, 0))
    body = cancel(booking_id, "member-1").json()

    assert body["strike_count_after"] == 3
    # 23:59:59 PDT on Oct 31
    assert body["suspended_until"].startswith("2026-11-01T06:59:59")
    assert body["message"].endswith("Booking suspended until October 31, 2026.")


def test_early_cancellation_keeps_existing_strikes(client, member, book, cancel):
    member("member-1", "Executive")
    cancel(_booking_id(book("member-1", "2026-10-14", "13:00")), "member-1")

    body = cancel(_booking_id(book("member-1", "2026-10-20", "09:00")), "member-1").json()

    assert body["strike_issued"] is False
    assert body["strike_count_after"] == 1
    assert _allocation(client)["late_cancellation_strikes"] == 1


def test_second_cancel_is_rejected_without_side_effects(client, member, book, cancel, calendar):
    member("member-1", "Executive")
    booking_id = _booking_id(book("member-1", "2026-10-14", "13:00"))
    assert cancel(booking_id, "member-1").status_code == 200

    resp = cancel(booking_id, "member-1")

    assert resp.status_code == 409
    assert resp.json()["detail"]["reason"] == "already_cancelled"
    assert _allocation(client)["late_cancellation_strikes"] == 1
    assert calendar.deleted == [f"evt-{booking_id}"]


def test_cannot_cancel_someone_elses_booking(client, member, book, cancel):
    member("member-1")
    member("member-2")
    booking_id = _booking_id(book("member-1", "2026-10-16"))

    resp = cancel(booking_id, "member-2")

    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "not_owner"
    assert _allocation(client)["hours_used"] == 2


def test_unknown_booking(client, member, cancel):
    member("member-1")
    resp = cancel(999, "member-1")
    assert resp.status_code == 404
    assert resp.json()["detail"]["reason"] == "not_found"
