"""Admission control for reservations.

``ConflictGuard.check`` is the only place a booking conflict is decided. It is
run again, under the per-salon/day lock and inside the write transaction, by
``check_and_reserve`` so that slots shown to a client earlier are never trusted.
"""

from dataclasses import dataclass
from typing import Callable

import structlog

from ..errors import (
    BookingConflictError,
    CapacityConflictError,
    DoubleBookingError,
    ScheduleValidationError,
)
from .locks import KeyedLock, booking_lock_key
from .store import CapacityConfig, ReservationCandidate, ReservationRecord, ScheduleStore
from .timeutils import overlaps

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReservationOutcome:
    ok: bool
    reservation_id: int | None = None
    reason: str | None = None
    error: BookingConflictError | None = None


def _overlapping(
    rows: list[ReservationRecord],
    candidate: ReservationCandidate,
    exclude_reservation_id: int | None,
) -> list[ReservationRecord]:
    return [
        r
        for r in rows
        if not (exclude_reservation_id is not None and r.id == exclude_reservation_id)
        and overlaps(r.start_time, r.end_time, candidate.start_time, candidate.end_time)
    ]


class ConflictGuard:
    def __init__(self, store: ScheduleStore, locks: KeyedLock):
        self.store = store
        self.locks = locks

    def capacity(self, salon_id: int) -> CapacityConfig:
        return self.store.get_capacity_config(salon_id) or CapacityConfig.defaults(salon_id)

    def check(self, candidate: ReservationCandidate, exclude_reservation_id: int | None = None) -> None:
        if not candidate.start_time < candidate.end_time:
            raise ScheduleValidationError("start_time must be before end_time")
        # only confirmed rows occupy a seat or a staff member
        if candidate.status != "confirmed":
            return

        salon_rows = self.store.list_confirmed_reservations_for_salon(
            candidate.salon_id, candidate.date
        )
        overlap_count = len(_overlapping(salon_rows, candidate, exclude_reservation_id))
        available_sheets = max(1, int(self.capacity(candidate.salon_id).available_sheets))
        if overlap_count >= available_sheets:
            raise CapacityConflictError(
                details={
                    "salon_id": candidate.salon_id,
                    "date": candidate.date,
                    "overlap_count": overlap_count,
                    "available_sheets": available_sheets,
                }
            )

        staff_rows = self.store.list_confirmed_reservations_for_staff(
            candidate.staff_id, candidate.date
        )
        clashes = _overlapping(staff_rows, candidate, exclude_reservation_id)
        if clashes:
            raise DoubleBookingError(
                details={
                    "staff_id": candidate.staff_id,
                    "date": candidate.date,
                    "reservation_ids": [r.id for r in clashes],
                }
            )

    def check_and_reserve(
        self,
        candidate: ReservationCandidate,
        exclude_reservation_id: int | None = None,
        write: Callable[[ReservationCandidate], int] | None = None,
    ) -> ReservationOutcome:
        """Check and write as one linearizable step per (salon, date).

        Conflicts come back as a rejected outcome; validation and store errors
        propagate. ``write`` defaults to inserting a new reservation.
        """
        writer = write or self.store.write_reservation
        key = booking_lock_key(candidate.salon_id, candidate.date)
        try:
            with self.locks.hold(key):
                with self.store.transaction(candidate.salon_id):
                    self.check(candidate, exclude_reservation_id)
                    reservation_id = writer(candidate)
        except BookingConflictError as exc:
            log.info(
                "reservation_rejected",
                reason=exc.reason,
                salon_id=candidate.salon_id,
                staff_id=candidate.staff_id,
                date=candidate.date,
                start_time=candidate.start_time.isoformat(),
                end_time=candidate.end_time.isoformat(),
                exclude_reservation_id=exclude_reservation_id,
            )
            return ReservationOutcome(ok=False, reason=exc.reason, error=exc)

        log.info(
            "reservation_written",
            reservation_id=reservation_id,
            salon_id=candidate.salon_id,
            staff_id=candidate.staff_id,
            date=candidate.date,
        )
        return ReservationOutcome(ok=True, reservation_id=reservation_id)
