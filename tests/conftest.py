from contextlib import contextmanager
from datetime import date, datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from salonbook.api import get_db, router
from salonbook.db import Base
from salonbook.scheduling.locks import KeyedLock
from salonbook.scheduling.store import (
    CapacityConfig,
    ReservationRecord,
    ScheduleExceptionRecord,
    WeeklyScheduleRecord,
)
from salonbook.scheduling.timeutils import date_key


class FakeStore:
    """In-memory ScheduleStore used by the core unit tests."""

    def __init__(self):
        self.salons: set[int] = set()
        self.staff: dict[int, int] = {}
        self.menus: dict[int, int] = {}
        self.weekly: dict[tuple, WeeklyScheduleRecord] = {}
        self.exceptions: dict[tuple, ScheduleExceptionRecord] = {}
        self.configs: dict[int, CapacityConfig] = {}
        self.reservations: list[ReservationRecord] = []
        self.commits = 0
        self.rollbacks = 0
        self._next_id = 1

    def add_salon(self, salon_id, sheets=None):
        self.salons.add(salon_id)
        if sheets is not None:
            defaults = CapacityConfig.defaults(salon_id)
            self.configs[salon_id] = CapacityConfig(
                salon_id=salon_id,
                available_sheets=sheets,
                reservation_limit_days=defaults.reservation_limit_days,
                available_cancel_days=defaults.available_cancel_days,
                today_first_later_minutes=defaults.today_first_later_minutes,
                reservation_interval_minutes=defaults.reservation_interval_minutes,
            )

    def add_staff(self, staff_id, salon_id):
        self.staff[staff_id] = salon_id

    def set_weekly(self, owner_type, owner_id, day_of_week, start_hour, end_hour, is_open=True):
        self.weekly[(owner_type, owner_id, day_of_week)] = WeeklyScheduleRecord(
            owner_type=owner_type,
            owner_id=owner_id,
            day_of_week=day_of_week,
            is_open=is_open,
            start_hour=start_hour,
            end_hour=end_hour,
        )

    def set_exception(self, owner_type, owner_id, day, start_time=None, end_time=None, kind="holiday"):
        self.exceptions[(owner_type, owner_id, date_key(day))] = ScheduleExceptionRecord(
            owner_type=owner_type,
            owner_id=owner_id,
            date=date_key(day),
            start_time=start_time,
            end_time=end_time,
            kind=kind,
        )

    def book(self, salon_id, staff_id, start, end, status="confirmed"):
        rid = self._next_id
        self._next_id += 1
        self.reservations.append(
            ReservationRecord(
                id=rid,
                salon_id=salon_id,
                staff_id=staff_id,
                date=start.date().isoformat(),
                start_time=start,
                end_time=end,
                status=status,
            )
        )
        return rid

    def get_weekly_schedule(self, owner_type, owner_id, day_of_week):
        return self.weekly.get((owner_type, owner_id, day_of_week))

    def get_schedule_exception(self, owner_type, owner_id, day):
        return self.exceptions.get((owner_type, owner_id, date_key(day)))

    def get_capacity_config(self, salon_id):
        return self.configs.get(salon_id)

    def list_confirmed_reservations_for_salon(self, salon_id, day):
        key = date_key(day)
        return [
            r for r in self.reservations
            if r.salon_id == salon_id and r.date == key and r.status == "confirmed"
        ]

    def list_confirmed_reservations_for_staff(self, staff_id, day):
        key = date_key(day)
        return [
            r for r in self.reservations
            if r.staff_id == staff_id and r.date == key and r.status == "confirmed"
        ]

    def write_reservation(self, candidate):
        return self.book(
            candidate.salon_id,
            candidate.staff_id,
            candidate.start_time,
            candidate.end_time,
            status=candidate.status,
        )

    def update_reservation(self, reservation_id, candidate):
        self.reservations = [
            ReservationRecord(
                id=r.id,
                salon_id=candidate.salon_id,
                staff_id=candidate.staff_id,
                date=candidate.date,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                status=candidate.status,
            )
            if r.id == reservation_id
            else r
            for r in self.reservations
        ]
        return reservation_id

    def salon_exists(self, salon_id):
        return salon_id in self.salons

    def staff_exists(self, staff_id, salon_id=None):
        if staff_id not in self.staff:
            return False
        return salon_id is None or self.staff[staff_id] == salon_id

    def menu_exists(self, menu_id, salon_id=None):
        if menu_id not in self.menus:
            return False
        return salon_id is None or self.menus[menu_id] == salon_id

    @contextmanager
    def transaction(self, salon_id):
        snapshot = list(self.reservations)
        try:
            yield
        except Exception:
            self.reservations = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1


# 2026-03-02 is a Monday
MONDAY = date(2026, 3, 2)


def at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def locks():
    return KeyedLock(redis_url="")


def make_client(tmp_path):
    db_path = tmp_path / "test_salonbook.db"
    database_url = f"sqlite:///{db_path}"
    engine = create_engine(database_url, connect_args={"check_same_thread": False})
    testing_session_local = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.include_router(router)
    app.state.session_local = testing_session_local
    app.state.booking_locks = KeyedLock(redis_url="")

    def override_get_db():
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)
