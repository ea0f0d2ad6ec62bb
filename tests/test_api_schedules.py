from datetime import datetime, timedelta

import pytest

from conftest import make_client
from salonbook.errors import ScheduleValidationError
from salonbook.scheduling.timeutils import local_now
from salonbook.services import list_bookable_slots


def _upcoming_monday():
    day = local_now().date() + timedelta(days=7)
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day


def _salon_with_staff(client, names=("Aiko",)):
    salon = client.post("/api/salons", json={"name": "Ginza Hair"})
    assert salon.status_code == 201
    salon_id = salon.json()["id"]
    staff_ids = []
    for name in names:
        res = client.post(f"/api/salons/{salon_id}/staff", json={"name": name})
        assert res.status_code == 201
        staff_ids.append(res.json()["id"])
    return salon_id, staff_ids


def _open_mondays(client, salon_id, staff_ids):
    res = client.put(
        f"/api/salons/{salon_id}/week-schedule",
        json={"days": [{"day_of_week": 1, "is_open": True, "start_hour": "09:00", "end_hour": "18:00"}]},
    )
    assert res.status_code == 200
    for staff_id in staff_ids:
        res = client.put(
            f"/api/staff/{staff_id}/week-schedule",
            json={"days": [{"day_of_week": 1, "is_open": True, "start_hour": "09:00", "end_hour": "17:00"}]},
        )
        assert res.status_code == 200


def test_week_schedule_roundtrip_and_defaults(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)

    res = client.put(
        f"/api/salons/{salon_id}/week-schedule",
        json={
            "days": [
                {"day_of_week": 1, "is_open": True, "start_hour": "09:00", "end_hour": "18:00"},
                {"day_of_week": 0, "is_open": False},
            ]
        },
    )
    assert res.status_code == 200
    rows = res.json()
    assert len(rows) == 7
    assert rows[1]["day_name"] == "mon"
    assert rows[1]["source"] == "weekly"
    assert rows[1]["start_hour"] == "09:00"
    assert rows[0]["is_open"] is False
    assert rows[0]["source"] == "weekly"
    assert rows[2]["source"] == "default"

    listed = client.get(f"/api/salons/{salon_id}/week-schedule")
    assert listed.status_code == 200
    assert listed.json() == rows


def test_week_schedule_rejects_bad_hours(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)
    url = f"/api/salons/{salon_id}/week-schedule"

    malformed = client.put(
        url, json={"days": [{"day_of_week": 1, "is_open": True, "start_hour": "9:00", "end_hour": "18:00"}]}
    )
    assert malformed.status_code == 422
    assert malformed.json()["detail"]["code"] == "VALIDATION_ERROR"

    inverted = client.put(
        url, json={"days": [{"day_of_week": 1, "is_open": True, "start_hour": "18:00", "end_hour": "09:00"}]}
    )
    assert inverted.status_code == 422

    duplicated = client.put(
        url,
        json={
            "days": [
                {"day_of_week": 1, "is_open": False},
                {"day_of_week": 1, "is_open": False},
            ]
        },
    )
    assert duplicated.status_code == 422

    assert all(row["source"] == "default" for row in client.get(url).json())


def test_week_schedule_for_unknown_owner_is_404(tmp_path):
    client = make_client(tmp_path)

    res = client.put("/api/staff/404/week-schedule", json={"days": [{"day_of_week": 1, "is_open": False}]})
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "NOT_FOUND"


def test_availability_intersects_salon_and_staff(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    _open_mondays(client, salon_id, [staff_id])
    monday = _upcoming_monday()

    res = client.get(
        f"/api/salons/{salon_id}/availability",
        params={"date": monday.isoformat(), "staff_id": staff_id},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["is_open"] is True
    assert body["start"].endswith("T09:00:00")
    assert body["end"].endswith("T17:00:00")

    tuesday = client.get(
        f"/api/salons/{salon_id}/availability",
        params={"date": (monday + timedelta(days=1)).isoformat()},
    )
    assert tuesday.json()["is_open"] is False


def test_salon_exception_closes_and_reopens_a_day(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)
    _open_mondays(client, salon_id, [])
    monday = _upcoming_monday().isoformat()

    put = client.put(f"/api/salons/{salon_id}/exceptions/{monday}", json={"kind": "holiday"})
    assert put.status_code == 200
    assert put.json()["is_all_day"] is True

    closed = client.get(f"/api/salons/{salon_id}/availability", params={"date": monday})
    assert closed.json()["is_open"] is False

    short_day = client.put(
        f"/api/salons/{salon_id}/exceptions/{monday}",
        json={"kind": "irregular_hours", "start_time": f"{monday}T12:00:00", "end_time": f"{monday}T15:00:00"},
    )
    assert short_day.status_code == 200
    assert len(client.get(f"/api/salons/{salon_id}/exceptions").json()) == 1
    opened = client.get(f"/api/salons/{salon_id}/availability", params={"date": monday}).json()
    assert opened["start"].endswith("T12:00:00")

    assert client.delete(f"/api/salons/{salon_id}/exceptions/{monday}").status_code == 200
    restored = client.get(f"/api/salons/{salon_id}/availability", params={"date": monday}).json()
    assert restored["start"].endswith("T09:00:00")
    assert client.delete(f"/api/salons/{salon_id}/exceptions/{monday}").status_code == 404


def test_exception_with_half_a_range_is_rejected(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)
    monday = _upcoming_monday().isoformat()

    res = client.put(
        f"/api/salons/{salon_id}/exceptions/{monday}",
        json={"kind": "irregular_hours", "start_time": f"{monday}T12:00:00"},
    )
    assert res.status_code == 422


def test_staff_exception_reconcile_replaces_the_set(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    monday = _upcoming_monday()
    d1, d2, d3 = (monday + timedelta(days=i) for i in range(3))

    first = client.put(
        f"/api/staff/{staff_id}/exceptions",
        json={"exceptions": [{"date": d1.isoformat(), "kind": "leave"}, {"date": d2.isoformat(), "kind": "leave"}]},
    )
    assert first.status_code == 200
    assert [row["date"] for row in first.json()] == [d1.isoformat(), d2.isoformat()]

    second = client.put(
        f"/api/staff/{staff_id}/exceptions",
        json={"exceptions": [{"date": d2.isoformat(), "kind": "other", "notes": "seminar"}, {"date": d3.isoformat()}]},
    )
    assert second.status_code == 200
    rows = second.json()
    assert [row["date"] for row in rows] == [d2.isoformat(), d3.isoformat()]
    assert rows[0]["kind"] == "other"
    assert rows[0]["notes"] == "seminar"
    assert rows[1]["kind"] == "holiday"

    cleared = client.put(f"/api/staff/{staff_id}/exceptions", json={"exceptions": []})
    assert cleared.status_code == 200
    assert cleared.json() == []
    assert client.get(f"/api/staff/{staff_id}/exceptions").json() == []


def test_staff_exception_reconcile_rejects_duplicate_dates(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    day = _upcoming_monday().isoformat()

    res = client.put(
        f"/api/staff/{staff_id}/exceptions",
        json={"exceptions": [{"date": day}, {"date": day}]},
    )
    assert res.status_code == 422


def test_reservation_config_defaults_and_override(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)

    default = client.get(f"/api/salons/{salon_id}/reservation-config").json()
    assert default["source"] == "default"
    assert default["available_sheets"] == 3
    assert default["reservation_interval_minutes"] == 30

    res = client.put(
        f"/api/salons/{salon_id}/reservation-config",
        json={"available_sheets": 2, "reservation_interval_minutes": 15},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["source"] == "salon"
    assert body["available_sheets"] == 2
    assert body["reservation_interval_minutes"] == 15
    assert body["reservation_limit_days"] == 60

    bad = client.put(f"/api/salons/{salon_id}/reservation-config", json={"available_sheets": 0})
    assert bad.status_code == 422


def test_slots_follow_the_monday_example(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    _open_mondays(client, salon_id, [staff_id])
    monday = _upcoming_monday().isoformat()

    res = client.get(
        f"/api/salons/{salon_id}/slots",
        params={"date": monday, "staff_id": staff_id, "duration_min": 60, "granularity_min": 30},
    )
    assert res.status_code == 200
    body = res.json()
    starts = [s["start"][11:16] for s in body["slots"]]
    assert starts[0] == "09:00"
    assert starts[-1] == "16:00"
    assert len(starts) == 15
    assert body["duration_min"] == 60


def test_slots_use_menu_duration_and_hide_taken_times(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    _open_mondays(client, salon_id, [staff_id])
    monday = _upcoming_monday().isoformat()
    menu = client.post(f"/api/salons/{salon_id}/menus", json={"name": "Cut", "duration_min": 60})
    assert menu.status_code == 201

    booked = client.post(
        "/api/reservations",
        json={
            "salon_id": salon_id,
            "staff_id": staff_id,
            "customer_id": "cust-1",
            "date": monday,
            "start_time": f"{monday}T09:00:00",
            "end_time": f"{monday}T10:00:00",
        },
    )
    assert booked.status_code == 201

    res = client.get(
        f"/api/salons/{salon_id}/slots",
        params={"date": monday, "staff_id": staff_id, "menu_id": menu.json()["id"]},
    )
    assert res.status_code == 200
    starts = [s["start"][11:16] for s in res.json()["slots"]]
    assert starts[0] == "10:00"
    assert "09:30" not in starts


def test_slots_without_duration_or_menu_are_rejected(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)

    res = client.get(f"/api/salons/{salon_id}/slots", params={"date": _upcoming_monday().isoformat()})
    assert res.status_code == 422


def test_same_day_slots_respect_lead_time(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    _open_mondays(client, salon_id, [staff_id])
    monday = _upcoming_monday()

    with client.app.state.session_local() as db:
        slots, _, _ = list_bookable_slots(
            db,
            salon_id,
            staff_id,
            monday,
            duration_min=60,
            granularity_min=30,
            now=datetime(monday.year, monday.month, monday.day, 10, 41),
        )
        # 10:41 + 30 min lead rounds up to 11:20; next grid start is 11:30
        assert slots[0].start.strftime("%H:%M") == "11:30"

        later, _, _ = list_bookable_slots(
            db, salon_id, staff_id, monday, duration_min=60, now=datetime(monday.year, monday.month, monday.day) - timedelta(days=61)
        )
        assert later == []


def test_salon_week_day_can_be_archived(tmp_path):
    client = make_client(tmp_path)
    salon_id, _ = _salon_with_staff(client)
    _open_mondays(client, salon_id, [])

    assert client.delete(f"/api/salons/{salon_id}/week-schedule/1").status_code == 200
    monday = client.get(f"/api/salons/{salon_id}/week-schedule").json()[1]
    assert monday["source"] == "default"
    assert monday["is_open"] is False
    assert client.delete(f"/api/salons/{salon_id}/week-schedule/1").status_code == 404


def test_explicit_zero_granularity_is_rejected(tmp_path):
    client = make_client(tmp_path)
    salon_id, (staff_id,) = _salon_with_staff(client)
    _open_mondays(client, salon_id, [staff_id])

    with client.app.state.session_local() as db:
        with pytest.raises(ScheduleValidationError):
            list_bookable_slots(db, salon_id, staff_id, _upcoming_monday(), duration_min=60, granularity_min=0)
