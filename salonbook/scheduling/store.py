"""Persistence seam of the booking core.

The resolver and the guard only talk to a ``ScheduleStore``. ``SqlScheduleStore``
is the SQLAlchemy implementation used by the API; tests use an in-memory one.
Records crossing the seam are plain frozen dataclasses, never ORM rows.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import SchedulingError, StoreError
from ..models import (
    Menu,
    Reservation,
    ReservationConfig,
    ReservationDetail,
    Salon,
    ScheduleException,
    Staff,
    WeeklySchedule,
)
from .timeutils import date_key

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WeeklyScheduleRecord:
    owner_type: str
    owner_id: int
    day_of_week: int
    is_open: bool
    start_hour: str | None
    end_hour: str | None


@dataclass(frozen=True)
class ScheduleExceptionRecord:
    owner_type: str
    owner_id: int
    date: str
    start_time: datetime | None
    end_time: datetime | None
    kind: str = "holiday"
    notes: str | None = None

    @property
    def is_all_day(self) -> bool:
        return self.start_time is None or self.end_time is None


@dataclass(frozen=True)
class CapacityConfig:
    salon_id: int
    available_sheets: int
    reservation_limit_days: int
    available_cancel_days: int
    today_first_later_minutes: int
    reservation_interval_minutes: int

    @classmethod
    def defaults(cls, salon_id: int) -> "CapacityConfig":
        return cls(
            salon_id=salon_id,
            available_sheets=settings.DEFAULT_AVAILABLE_SHEETS,
            reservation_limit_days=settings.DEFAULT_RESERVATION_LIMIT_DAYS,
            available_cancel_days=settings.DEFAULT_AVAILABLE_CANCEL_DAYS,
            today_first_later_minutes=settings.DEFAULT_TODAY_FIRST_LATER_MINUTES,
            reservation_interval_minutes=settings.DEFAULT_RESERVATION_INTERVAL_MINUTES,
        )


@dataclass(frozen=True)
class ReservationRecord:
    id: int
    salon_id: int
    staff_id: int
    date: str
    start_time: datetime
    end_time: datetime
    status: str = "confirmed"


@dataclass(frozen=True)
class ReservationCandidate:
    salon_id: int
    staff_id: int
    date: str
    start_time: datetime
    end_time: datetime
    customer_id: str = ""
    menu_id: int | None = None
    status: str = "confirmed"
    notes: str | None = None
    extra_charge: float = 0.0


class ScheduleStore(Protocol):
    def get_weekly_schedule(
        self, owner_type: str, owner_id: int, day_of_week: int
    ) -> WeeklyScheduleRecord | None: ...

    def get_schedule_exception(
        self, owner_type: str, owner_id: int, day: date | str
    ) -> ScheduleExceptionRecord | None: ...

    def get_capacity_config(self, salon_id: int) -> CapacityConfig | None: ...

    def list_confirmed_reservations_for_salon(
        self, salon_id: int, day: date | str
    ) -> list[ReservationRecord]: ...

    def list_confirmed_reservations_for_staff(
        self, staff_id: int, day: date | str
    ) -> list[ReservationRecord]: ...

    def write_reservation(self, candidate: ReservationCandidate) -> int: ...

    def update_reservation(self, reservation_id: int, candidate: ReservationCandidate) -> int: ...

    def salon_exists(self, salon_id: int) -> bool: ...

    def staff_exists(self, staff_id: int, salon_id: int | None = None) -> bool: ...

    def menu_exists(self, menu_id: int, salon_id: int | None = None) -> bool: ...

    def transaction(self, salon_id: int): ...


def _weekly_record(row: WeeklySchedule) -> WeeklyScheduleRecord:
    return WeeklyScheduleRecord(
        owner_type=row.owner_type,
        owner_id=int(row.owner_id),
        day_of_week=int(row.day_of_week),
        is_open=bool(row.is_open),
        start_hour=row.start_hour,
        end_hour=row.end_hour,
    )


def _exception_record(row: ScheduleException) -> ScheduleExceptionRecord:
    return ScheduleExceptionRecord(
        owner_type=row.owner_type,
        owner_id=int(row.owner_id),
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        kind=row.kind,
        notes=row.notes,
    )


def _reservation_record(row: Reservation) -> ReservationRecord:
    return ReservationRecord(
        id=int(row.id),
        salon_id=int(row.salon_id),
        staff_id=int(row.staff_id),
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
    )


class SqlScheduleStore:
    def __init__(self, db: Session):
        self.db = db

    def _run(self, fn, *args):
        try:
            return fn(*args)
        except SQLAlchemyError as exc:
            log.error("store_read_failed", op=getattr(fn, "__name__", "?"), error=str(exc))
            raise StoreError() from exc

    def get_weekly_schedule(self, owner_type, owner_id, day_of_week):
        def _q():
            return self.db.execute(
                select(WeeklySchedule).where(
                    WeeklySchedule.owner_type == owner_type,
                    WeeklySchedule.owner_id == owner_id,
                    WeeklySchedule.day_of_week == int(day_of_week),
                    WeeklySchedule.is_archive.is_(False),
                )
            ).scalar_one_or_none()

        row = self._run(_q)
        return _weekly_record(row) if row else None

    def get_schedule_exception(self, owner_type, owner_id, day):
        def _q():
            return self.db.execute(
                select(ScheduleException).where(
                    ScheduleException.owner_type == owner_type,
                    ScheduleException.owner_id == owner_id,
                    ScheduleException.date == date_key(day),
                    ScheduleException.is_archive.is_(False),
                )
            ).scalar_one_or_none()

        row = self._run(_q)
        return _exception_record(row) if row else None

    def get_capacity_config(self, salon_id):
        def _q():
            return self.db.execute(
                select(ReservationConfig).where(ReservationConfig.salon_id == salon_id)
            ).scalar_one_or_none()

        row = self._run(_q)
        if row is None:
            return None
        return CapacityConfig(
            salon_id=int(row.salon_id),
            available_sheets=int(row.available_sheets),
            reservation_limit_days=int(row.reservation_limit_days),
            available_cancel_days=int(row.available_cancel_days),
            today_first_later_minutes=int(row.today_first_later_minutes),
            reservation_interval_minutes=int(row.reservation_interval_minutes),
        )

    def _confirmed(self, *criteria) -> list[ReservationRecord]:
        def _q():
            return (
                self.db.execute(
                    select(Reservation)
                    .where(
                        Reservation.status == "confirmed",
                        Reservation.is_archive.is_(False),
                        *criteria,
                    )
                    .order_by(Reservation.start_time.asc(), Reservation.id.asc())
                )
                .scalars()
                .all()
            )

        return [_reservation_record(r) for r in self._run(_q)]

    def list_confirmed_reservations_for_salon(self, salon_id, day):
        return self._confirmed(Reservation.salon_id == salon_id, Reservation.date == date_key(day))

    def list_confirmed_reservations_for_staff(self, staff_id, day):
        return self._confirmed(Reservation.staff_id == staff_id, Reservation.date == date_key(day))

    def write_reservation(self, candidate: ReservationCandidate) -> int:
        reservation = Reservation(
            master_id=str(uuid.uuid4()),
            salon_id=candidate.salon_id,
            staff_id=candidate.staff_id,
            customer_id=candidate.customer_id,
            menu_id=candidate.menu_id,
            date=candidate.date,
            start_time=candidate.start_time,
            end_time=candidate.end_time,
            status=candidate.status,
        )
        self.db.add(reservation)
        self.db.flush()
        self.db.add(
            ReservationDetail(
                reservation_id=reservation.id,
                notes=candidate.notes,
                extra_charge=candidate.extra_charge,
            )
        )
        self.db.flush()
        return int(reservation.id)

    def update_reservation(self, reservation_id: int, candidate: ReservationCandidate) -> int:
        row = self.db.get(Reservation, reservation_id)
        row.staff_id = candidate.staff_id
        row.customer_id = candidate.customer_id
        row.menu_id = candidate.menu_id
        row.date = candidate.date
        row.start_time = candidate.start_time
        row.end_time = candidate.end_time
        row.status = candidate.status
        if row.detail is not None:
            row.detail.notes = candidate.notes
            row.detail.extra_charge = candidate.extra_charge
        self.db.flush()
        return int(row.id)

    def salon_exists(self, salon_id):
        row = self._run(self.db.get, Salon, salon_id)
        return row is not None and not row.is_archive

    def staff_exists(self, staff_id, salon_id=None):
        row = self._run(self.db.get, Staff, staff_id)
        if row is None or row.is_archive:
            return False
        return salon_id is None or int(row.salon_id) == int(salon_id)

    def menu_exists(self, menu_id, salon_id=None):
        row = self._run(self.db.get, Menu, menu_id)
        if row is None or row.is_archive:
            return False
        return salon_id is None or int(row.salon_id) == int(salon_id)

    @contextmanager
    def transaction(self, salon_id: int) -> Iterator[None]:
        """Commit on success, roll back on any error.

        Selecting the salon row ``FOR UPDATE`` serializes bookings per salon on
        backends with row locks; SQLite ignores the clause and relies on the
        caller's ``KeyedLock``.
        """
        try:
            self.db.execute(select(Salon.id).where(Salon.id == salon_id).with_for_update())
            yield
            self.db.commit()
        except SchedulingError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            log.error("store_transaction_failed", salon_id=salon_id, error=str(exc))
            raise StoreError() from exc
        except Exception:
            self.db.rollback()
            raise
