from datetime import date, timedelta

import structlog

from ..errors import NotFoundError
from ..models import OWNER_SALON, OWNER_STAFF
from .store import ScheduleExceptionRecord, ScheduleStore, WeeklyScheduleRecord
from .timeutils import TimeRange, Window, at, date_key, day_of_week, parse_date

log = structlog.get_logger(__name__)


class _Closed:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLOSED"

    def __bool__(self) -> bool:
        return False


CLOSED = _Closed()


def window_from_weekly(day: date, row: WeeklyScheduleRecord | None) -> Window | None:
    if row is None or not row.is_open:
        return None
    if not row.start_hour or not row.end_hour:
        return None
    start = at(day, row.start_hour)
    end = at(day, row.end_hour)
    if start >= end:
        return None
    return TimeRange(start, end)


def window_from_exception(day: date, row: ScheduleExceptionRecord) -> Window | None:
    if row.is_all_day:
        return None
    if row.start_time >= row.end_time:
        return None
    # exception instants may run past midnight; clamp to the requested day
    midnight = at(day, "00:00")
    own_day = TimeRange(midnight, midnight + timedelta(days=1))
    return TimeRange(row.start_time, row.end_time).intersect(own_day)


class AvailabilityResolver:
    """Effective open window of a salon (and optionally one staff member) on a date.

    For each owner an exception row for the date wins over the weekly row. The
    salon and staff windows are then intersected; anything closed or empty
    collapses to ``CLOSED``.
    """

    def __init__(self, store: ScheduleStore):
        self.store = store

    def owner_window(self, owner_type: str, owner_id: int, day: date) -> Window | None:
        exception = self.store.get_schedule_exception(owner_type, owner_id, day)
        if exception is not None:
            return window_from_exception(day, exception)
        weekly = self.store.get_weekly_schedule(owner_type, owner_id, day_of_week(day))
        return window_from_weekly(day, weekly)

    def resolve(self, salon_id: int, staff_id: int | None, day: date | str):
        target = parse_date(day)
        if not self.store.salon_exists(salon_id):
            raise NotFoundError("Salon not found", details={"salon_id": salon_id})
        if staff_id is not None and not self.store.staff_exists(staff_id, salon_id):
            raise NotFoundError("Staff not found", details={"staff_id": staff_id})

        window = self.owner_window(OWNER_SALON, salon_id, target)
        if window is None:
            log.debug("availability_closed", salon_id=salon_id, date=date_key(target), owner="salon")
            return CLOSED

        if staff_id is not None:
            staff_window = self.owner_window(OWNER_STAFF, staff_id, target)
            if staff_window is None:
                log.debug(
                    "availability_closed",
                    salon_id=salon_id,
                    staff_id=staff_id,
                    date=date_key(target),
                    owner="staff",
                )
                return CLOSED
            window = window.intersect(staff_window)
            if window is None:
                return CLOSED
        return window


def resolve_availability(store: ScheduleStore, salon_id: int, staff_id: int | None, day: date | str):
    return AvailabilityResolver(store).resolve(salon_id, staff_id, day)
