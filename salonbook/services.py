from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, ScheduleValidationError, StoreError
from .models import (
    EXCEPTION_KINDS,
    OWNER_SALON,
    OWNER_STAFF,
    OWNER_TYPES,
    RESERVATION_STATUSES,
    Menu,
    Reservation,
    ReservationConfig,
    ReservationDetail,
    Salon,
    ScheduleException,
    Staff,
    WeeklySchedule,
)
from .scheduling.guard import ConflictGuard, ReservationOutcome
from .scheduling.locks import KeyedLock
from .scheduling.resolver import CLOSED, AvailabilityResolver, resolve_availability
from .scheduling.slots import generate_slots
from .scheduling.store import CapacityConfig, ReservationCandidate, SqlScheduleStore
from .scheduling.timeutils import (
    DAY_NAMES,
    TimeRange,
    ceil_to_step,
    date_key,
    local_now,
    overlaps,
    parse_date,
    parse_hhmm,
    to_local_naive,
)

log = structlog.get_logger(__name__)

# same-day earliest start is rounded up to this grid
LEAD_TIME_STEP_MIN = 10


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log.error("commit_failed", error=str(exc))
        raise StoreError() from exc


def create_salon(db: Session, name: str) -> Salon:
    row = Salon(name=name.strip())
    db.add(row)
    _commit(db)
    db.refresh(row)
    return row


def create_staff(db: Session, salon_id: int, name: str) -> Staff:
    if not SqlScheduleStore(db).salon_exists(salon_id):
        raise NotFoundError("Salon not found", details={"salon_id": salon_id})
    row = Staff(salon_id=salon_id, name=name.strip())
    db.add(row)
    _commit(db)
    db.refresh(row)
    return row


def create_menu(db: Session, salon_id: int, name: str, duration_min: int) -> Menu:
    if int(duration_min) <= 0:
        raise ScheduleValidationError("duration_min must be > 0")
    if not SqlScheduleStore(db).salon_exists(salon_id):
        raise NotFoundError("Salon not found", details={"salon_id": salon_id})
    row = Menu(salon_id=salon_id, name=name.strip(), duration_min=int(duration_min))
    db.add(row)
    _commit(db)
    db.refresh(row)
    return row


def _require_owner(store: SqlScheduleStore, owner_type: str, owner_id: int) -> None:
    if owner_type not in OWNER_TYPES:
        raise ScheduleValidationError("owner_type must be salon or staff")
    if owner_type == OWNER_SALON and not store.salon_exists(owner_id):
        raise NotFoundError("Salon not found", details={"salon_id": owner_id})
    if owner_type == OWNER_STAFF and not store.staff_exists(owner_id):
        raise NotFoundError("Staff not found", details={"staff_id": owner_id})


def _normalize_week_day(item: dict) -> tuple[int, bool, str | None, str | None]:
    day = int(item.get("day_of_week"))
    if not 0 <= day <= 6:
        raise ScheduleValidationError("day_of_week must be between 0 and 6")
    is_open = bool(item.get("is_open"))
    start_hour = item.get("start_hour")
    end_hour = item.get("end_hour")
    if not is_open and start_hour is None and end_hour is None:
        return day, False, None, None
    start = parse_hhmm(start_hour, "start_hour")
    end = parse_hhmm(end_hour, "end_hour")
    if is_open and start >= end:
        raise ScheduleValidationError(
            "start_hour must be before end_hour",
            details={"day_of_week": day, "start_hour": start_hour, "end_hour": end_hour},
        )
    return day, is_open, start.strftime("%H:%M"), end.strftime("%H:%M")


def list_week_schedule(db: Session, owner_type: str, owner_id: int) -> list[dict]:
    store = SqlScheduleStore(db)
    _require_owner(store, owner_type, owner_id)
    rows = (
        db.execute(
            select(WeeklySchedule).where(
                WeeklySchedule.owner_type == owner_type,
                WeeklySchedule.owner_id == owner_id,
                WeeklySchedule.is_archive.is_(False),
            )
        )
        .scalars()
        .all()
    )
    by_day = {int(r.day_of_week): r for r in rows}

    out: list[dict] = []
    for day in range(7):
        rule = by_day.get(day)
        if rule is None:
            out.append(
                {
                    "day_of_week": day,
                    "day_name": DAY_NAMES[day],
                    "is_open": False,
                    "start_hour": None,
                    "end_hour": None,
                    "source": "default",
                }
            )
            continue
        out.append(
            {
                "day_of_week": day,
                "day_name": DAY_NAMES[day],
                "is_open": bool(rule.is_open),
                "start_hour": rule.start_hour,
                "end_hour": rule.end_hour,
                "source": "weekly",
            }
        )
    return out


def set_week_schedule(db: Session, owner_type: str, owner_id: int, days: list[dict]) -> list[dict]:
    """Upsert one row per given day; days not mentioned keep their current rows."""
    store = SqlScheduleStore(db)
    normalized = [_normalize_week_day(item) for item in days]
    _require_owner(store, owner_type, owner_id)

    for day, is_open, start_hour, end_hour in normalized:
        row = db.execute(
            select(WeeklySchedule).where(
                WeeklySchedule.owner_type == owner_type,
                WeeklySchedule.owner_id == owner_id,
                WeeklySchedule.day_of_week == day,
            )
        ).scalar_one_or_none()
        if row is None:
            row = WeeklySchedule(owner_type=owner_type, owner_id=owner_id, day_of_week=day)
            db.add(row)
        row.is_open = is_open
        row.start_hour = start_hour
        row.end_hour = end_hour
        row.is_archive = False

    _commit(db)
    log.info("week_schedule_set", owner_type=owner_type, owner_id=owner_id, days=len(normalized))
    return list_week_schedule(db, owner_type, owner_id)


def archive_week_schedule_day(db: Session, owner_type: str, owner_id: int, day_of_week: int) -> bool:
    row = db.execute(
        select(WeeklySchedule).where(
            WeeklySchedule.owner_type == owner_type,
            WeeklySchedule.owner_id == owner_id,
            WeeklySchedule.day_of_week == int(day_of_week),
            WeeklySchedule.is_archive.is_(False),
        )
    ).scalar_one_or_none()
    if row is None:
        return False
    row.is_archive = True
    _commit(db)
    return True


def _normalize_exception(
    day: date | str,
    start_time: datetime | None,
    end_time: datetime | None,
    kind: str,
) -> tuple[str, datetime | None, datetime | None, str]:
    day_str = date_key(day)
    if kind not in EXCEPTION_KINDS:
        raise ScheduleValidationError("kind is not supported", details={"kind": kind})
    if (start_time is None) != (end_time is None):
        raise ScheduleValidationError("start_time and end_time must be given together")
    if start_time is not None:
        start_time = to_local_naive(start_time)
        end_time = to_local_naive(end_time)
        if start_time >= end_time:
            raise ScheduleValidationError("start_time must be before end_time")
    return day_str, start_time, end_time, kind


def exception_out(row: ScheduleException) -> dict:
    return {
        "id": row.id,
        "owner_type": row.owner_type,
        "owner_id": row.owner_id,
        "date": row.date,
        "is_all_day": row.start_time is None or row.end_time is None,
        "start_time": row.start_time,
        "end_time": row.end_time,
        "kind": row.kind,
        "notes": row.notes,
    }


def _upsert_exception_row(
    db: Session,
    owner_type: str,
    owner_id: int,
    day_str: str,
    start_time: datetime | None,
    end_time: datetime | None,
    kind: str,
    notes: str | None,
) -> ScheduleException:
    row = db.execute(
        select(ScheduleException).where(
            ScheduleException.owner_type == owner_type,
            ScheduleException.owner_id == owner_id,
            ScheduleException.date == day_str,
        )
    ).scalar_one_or_none()
    if row is None:
        row = ScheduleException(owner_type=owner_type, owner_id=owner_id, date=day_str)
        db.add(row)
    row.start_time = start_time
    row.end_time = end_time
    row.kind = kind
    row.notes = (notes or "").strip() or None
    row.is_archive = False
    return row


def upsert_schedule_exception(
    db: Session,
    owner_type: str,
    owner_id: int,
    day: date | str,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    kind: str = "holiday",
    notes: str | None = None,
) -> ScheduleException:
    day_str, start_time, end_time, kind = _normalize_exception(day, start_time, end_time, kind)
    _require_owner(SqlScheduleStore(db), owner_type, owner_id)
    row = _upsert_exception_row(db, owner_type, owner_id, day_str, start_time, end_time, kind, notes)
    _commit(db)
    db.refresh(row)
    return row


def delete_schedule_exception(db: Session, owner_type: str, owner_id: int, day: date | str) -> bool:
    result = db.execute(
        delete(ScheduleException).where(
            ScheduleException.owner_type == owner_type,
            ScheduleException.owner_id == owner_id,
            ScheduleException.date == date_key(day),
        )
    )
    _commit(db)
    return bool(result.rowcount)


def list_schedule_exceptions(db: Session, owner_type: str, owner_id: int) -> list[ScheduleException]:
    return (
        db.execute(
            select(ScheduleException)
            .where(
                ScheduleException.owner_type == owner_type,
                ScheduleException.owner_id == owner_id,
                ScheduleException.is_archive.is_(False),
            )
            .order_by(ScheduleException.date.asc())
        )
        .scalars()
        .all()
    )


def reconcile_staff_exceptions(db: Session, staff_id: int, items: list[dict]) -> list[ScheduleException]:
    """Make the staff member's exception set equal to ``items``.

    Rows on dates missing from ``items`` are deleted, the others are upserted,
    all in one commit.
    """
    normalized = []
    for item in items:
        day_str, start_time, end_time, kind = _normalize_exception(
            item.get("date"),
            item.get("start_time"),
            item.get("end_time"),
            item.get("kind") or "leave",
        )
        normalized.append((day_str, start_time, end_time, kind, item.get("notes")))
    _require_owner(SqlScheduleStore(db), OWNER_STAFF, staff_id)

    keep_dates = {n[0] for n in normalized}
    stale = delete(ScheduleException).where(
        ScheduleException.owner_type == OWNER_STAFF,
        ScheduleException.owner_id == staff_id,
    )
    if keep_dates:
        stale = stale.where(ScheduleException.date.not_in(sorted(keep_dates)))
    removed = db.execute(stale).rowcount

    for day_str, start_time, end_time, kind, notes in normalized:
        _upsert_exception_row(db, OWNER_STAFF, staff_id, day_str, start_time, end_time, kind, notes)

    _commit(db)
    log.info(
        "staff_exceptions_reconciled",
        staff_id=staff_id,
        kept=len(keep_dates),
        removed=int(removed or 0),
    )
    return list_schedule_exceptions(db, OWNER_STAFF, staff_id)


def get_reservation_config(db: Session, salon_id: int) -> dict:
    store = SqlScheduleStore(db)
    _require_owner(store, OWNER_SALON, salon_id)
    cfg = store.get_capacity_config(salon_id)
    source = "salon"
    if cfg is None:
        cfg = CapacityConfig.defaults(salon_id)
        source = "default"
    return {
        "salon_id": salon_id,
        "available_sheets": cfg.available_sheets,
        "reservation_limit_days": cfg.reservation_limit_days,
        "available_cancel_days": cfg.available_cancel_days,
        "today_first_later_minutes": cfg.today_first_later_minutes,
        "reservation_interval_minutes": cfg.reservation_interval_minutes,
        "source": source,
    }


def set_reservation_config(
    db: Session,
    salon_id: int,
    available_sheets: int,
    reservation_limit_days: int | None = None,
    available_cancel_days: int | None = None,
    today_first_later_minutes: int | None = None,
    reservation_interval_minutes: int | None = None,
) -> dict:
    if int(available_sheets) < 1:
        raise ScheduleValidationError("available_sheets must be >= 1")
    _require_owner(SqlScheduleStore(db), OWNER_SALON, salon_id)
    defaults = CapacityConfig.defaults(salon_id)

    row = db.execute(
        select(ReservationConfig).where(ReservationConfig.salon_id == salon_id)
    ).scalar_one_or_none()
    if row is None:
        row = ReservationConfig(
            salon_id=salon_id,
            reservation_limit_days=defaults.reservation_limit_days,
            available_cancel_days=defaults.available_cancel_days,
            today_first_later_minutes=defaults.today_first_later_minutes,
            reservation_interval_minutes=defaults.reservation_interval_minutes,
        )
        db.add(row)
    row.available_sheets = int(available_sheets)
    if reservation_limit_days is not None:
        row.reservation_limit_days = int(reservation_limit_days)
    if available_cancel_days is not None:
        row.available_cancel_days = int(available_cancel_days)
    if today_first_later_minutes is not None:
        row.today_first_later_minutes = int(today_first_later_minutes)
    if reservation_interval_minutes is not None:
        row.reservation_interval_minutes = int(reservation_interval_minutes)
    _commit(db)
    return get_reservation_config(db, salon_id)


def resolve_day(db: Session, salon_id: int, staff_id: int | None, day: date | str):
    return resolve_availability(SqlScheduleStore(db), salon_id, staff_id, day)


def _resolve_duration(db: Session, salon_id: int, duration_min: int | None, menu_id: int | None) -> int:
    if duration_min is not None:
        if int(duration_min) <= 0:
            raise ScheduleValidationError("duration_min must be > 0")
        return int(duration_min)
    if menu_id is None:
        raise ScheduleValidationError("duration_min or menu_id is required")
    menu = db.get(Menu, menu_id)
    if menu is None or menu.is_archive or int(menu.salon_id) != int(salon_id):
        raise NotFoundError("Menu not found", details={"menu_id": menu_id})
    return int(menu.duration_min)


def list_bookable_slots(
    db: Session,
    salon_id: int,
    staff_id: int | None,
    day: date | str,
    duration_min: int | None = None,
    menu_id: int | None = None,
    granularity_min: int | None = None,
    now: datetime | None = None,
) -> tuple[list[TimeRange], int, int]:
    """Slots a customer may pick, with the duration and granularity used.

    Applies the salon's booking horizon and same-day lead time, and hides
    candidates that already clash with the staff member or fill the salon.
    The guard re-checks whatever is picked.
    """
    target = parse_date(day)
    duration = _resolve_duration(db, salon_id, duration_min, menu_id)
    store = SqlScheduleStore(db)
    window = AvailabilityResolver(store).resolve(salon_id, staff_id, target)

    cfg = store.get_capacity_config(salon_id) or CapacityConfig.defaults(salon_id)
    granularity = int(
        granularity_min if granularity_min is not None else cfg.reservation_interval_minutes
    )
    if granularity <= 0:
        raise ScheduleValidationError("granularity_min must be > 0")

    current = now or local_now()
    today = current.date()
    if window is CLOSED or target < today:
        return [], duration, granularity
    if target > today + timedelta(days=int(cfg.reservation_limit_days)):
        return [], duration, granularity

    earliest = None
    if target == today:
        earliest = ceil_to_step(
            current + timedelta(minutes=int(cfg.today_first_later_minutes)), LEAD_TIME_STEP_MIN
        )

    slots = generate_slots(window, duration, granularity, now=earliest)
    salon_rows = store.list_confirmed_reservations_for_salon(salon_id, target)
    staff_rows = (
        store.list_confirmed_reservations_for_staff(staff_id, target) if staff_id is not None else []
    )
    sheets = max(1, int(cfg.available_sheets))

    out: list[TimeRange] = []
    for slot in slots:
        if any(overlaps(r.start_time, r.end_time, slot.start, slot.end) for r in staff_rows):
            continue
        used = sum(1 for r in salon_rows if overlaps(r.start_time, r.end_time, slot.start, slot.end))
        if used >= sheets:
            continue
        out.append(slot)
    return out, duration, granularity


def reservation_out(row: Reservation) -> dict:
    detail = row.detail
    return {
        "id": row.id,
        "master_id": row.master_id,
        "salon_id": row.salon_id,
        "staff_id": row.staff_id,
        "customer_id": row.customer_id,
        "menu_id": row.menu_id,
        "date": row.date,
        "start_time": row.start_time,
        "end_time": row.end_time,
        "status": row.status,
        "is_archive": bool(row.is_archive),
        "notes": detail.notes if detail else None,
        "extra_charge": float(detail.extra_charge or 0) if detail else 0.0,
    }


def get_reservation(db: Session, reservation_id: int) -> Reservation:
    row = db.get(Reservation, reservation_id)
    if row is None or row.is_archive:
        raise NotFoundError("Reservation not found", details={"reservation_id": reservation_id})
    return row


def _build_candidate(
    store: SqlScheduleStore,
    salon_id: int,
    staff_id: int,
    day: date | str,
    start_time: datetime,
    end_time: datetime,
    customer_id: str,
    menu_id: int | None,
    status: str,
    notes: str | None,
    extra_charge: float,
    today: date,
    check_horizon: bool = True,
) -> ReservationCandidate:
    # validation first, existence second; no reservation rows are read here
    target = parse_date(day)
    start_time = to_local_naive(start_time)
    end_time = to_local_naive(end_time)
    if not start_time < end_time:
        raise ScheduleValidationError("start_time must be before end_time")
    if start_time.date() != target:
        raise ScheduleValidationError("start_time must fall on date")
    if status not in RESERVATION_STATUSES:
        raise ScheduleValidationError("status is not supported", details={"status": status})
    if not (customer_id or "").strip():
        raise ScheduleValidationError("customer_id is required")

    if not store.salon_exists(salon_id):
        raise NotFoundError("Salon not found", details={"salon_id": salon_id})
    if not store.staff_exists(staff_id, salon_id):
        raise NotFoundError("Staff not found", details={"staff_id": staff_id})
    if menu_id is not None and not store.menu_exists(menu_id, salon_id):
        raise NotFoundError("Menu not found", details={"menu_id": menu_id})

    if check_horizon:
        cfg = store.get_capacity_config(salon_id) or CapacityConfig.defaults(salon_id)
        if target < today:
            raise ScheduleValidationError("date is in the past")
        if target > today + timedelta(days=int(cfg.reservation_limit_days)):
            raise ScheduleValidationError(
                f"reservations open at most {cfg.reservation_limit_days} days ahead"
            )

    return ReservationCandidate(
        salon_id=salon_id,
        staff_id=staff_id,
        date=target.isoformat(),
        start_time=start_time,
        end_time=end_time,
        customer_id=customer_id.strip(),
        menu_id=menu_id,
        status=status,
        notes=(notes or "").strip() or None,
        extra_charge=float(extra_charge or 0),
    )


def _raise_rejected(outcome: ReservationOutcome) -> None:
    if not outcome.ok:
        raise outcome.error


def create_reservation(
    db: Session,
    locks: KeyedLock,
    salon_id: int,
    staff_id: int,
    day: date | str,
    start_time: datetime,
    end_time: datetime,
    customer_id: str,
    menu_id: int | None = None,
    status: str = "confirmed",
    notes: str | None = None,
    extra_charge: float = 0,
    now: datetime | None = None,
) -> Reservation:
    store = SqlScheduleStore(db)
    candidate = _build_candidate(
        store,
        salon_id,
        staff_id,
        day,
        start_time,
        end_time,
        customer_id,
        menu_id,
        status,
        notes,
        extra_charge,
        today=(now or local_now()).date(),
    )
    outcome = ConflictGuard(store, locks).check_and_reserve(candidate)
    _raise_rejected(outcome)
    return db.get(Reservation, outcome.reservation_id)


def _check_cancel_deadline(store: SqlScheduleStore, row: Reservation, today: date) -> None:
    cfg = store.get_capacity_config(row.salon_id) or CapacityConfig.defaults(row.salon_id)
    deadline = parse_date(row.date) - timedelta(days=int(cfg.available_cancel_days))
    if today > deadline:
        raise ScheduleValidationError(
            f"Reservations can be cancelled up to {cfg.available_cancel_days} days before"
        )


def update_reservation(
    db: Session,
    locks: KeyedLock,
    reservation_id: int,
    staff_id: int,
    day: date | str,
    start_time: datetime,
    end_time: datetime,
    customer_id: str,
    menu_id: int | None = None,
    status: str | None = None,
    notes: str | None = None,
    extra_charge: float = 0,
    now: datetime | None = None,
) -> Reservation:
    """Rewrite a reservation; ``status=None`` keeps the current status.

    Cancelling here follows the same deadline as the status endpoint, and the
    booking horizon only applies when the reservation moves to another date.
    """
    row = get_reservation(db, reservation_id)
    if row.status == "cancelled":
        raise ScheduleValidationError("Reservation is already cancelled")
    store = SqlScheduleStore(db)
    today = (now or local_now()).date()
    new_status = row.status if status is None else status
    if new_status == "cancelled":
        _check_cancel_deadline(store, row, today)

    candidate = _build_candidate(
        store,
        int(row.salon_id),
        staff_id,
        day,
        start_time,
        end_time,
        customer_id,
        menu_id,
        new_status,
        notes,
        extra_charge,
        today=today,
        check_horizon=date_key(day) != row.date,
    )

    def _write(c: ReservationCandidate) -> int:
        return store.update_reservation(reservation_id, c)

    outcome = ConflictGuard(store, locks).check_and_reserve(
        candidate, exclude_reservation_id=reservation_id, write=_write
    )
    _raise_rejected(outcome)
    db.refresh(row)
    return row


def update_reservation_status(
    db: Session,
    locks: KeyedLock,
    reservation_id: int,
    status: str,
    now: datetime | None = None,
) -> Reservation:
    if status not in RESERVATION_STATUSES:
        raise ScheduleValidationError("status is not supported", details={"status": status})
    row = get_reservation(db, reservation_id)
    if row.status == "cancelled":
        raise ScheduleValidationError("Reservation is already cancelled")

    store = SqlScheduleStore(db)
    if status == "cancelled":
        _check_cancel_deadline(store, row, (now or local_now()).date())

    if status == "confirmed" and row.status != "confirmed":
        candidate = ReservationCandidate(
            salon_id=int(row.salon_id),
            staff_id=int(row.staff_id),
            date=row.date,
            start_time=row.start_time,
            end_time=row.end_time,
            customer_id=row.customer_id,
            menu_id=row.menu_id,
            status="confirmed",
        )

        def _confirm(c: ReservationCandidate) -> int:
            row.status = "confirmed"
            db.flush()
            return int(row.id)

        outcome = ConflictGuard(store, locks).check_and_reserve(
            candidate, exclude_reservation_id=int(row.id), write=_confirm
        )
        _raise_rejected(outcome)
        db.refresh(row)
        return row

    from_status = row.status
    row.status = status
    _commit(db)
    db.refresh(row)
    log.info("reservation_status_changed", reservation_id=row.id, from_status=from_status, to_status=status)
    return row


def _detail_for(db: Session, reservation_id: int) -> ReservationDetail | None:
    return db.execute(
        select(ReservationDetail).where(ReservationDetail.reservation_id == reservation_id)
    ).scalar_one_or_none()


def archive_reservation(db: Session, reservation_id: int) -> bool:
    """Soft-delete a reservation together with its detail row."""
    row = get_reservation(db, reservation_id)
    detail = _detail_for(db, reservation_id)
    if detail is None:
        log.warning("reservation_detail_missing", reservation_id=reservation_id)
    else:
        detail.is_archive = True
    row.is_archive = True
    _commit(db)
    return True


def delete_reservation(db: Session, reservation_id: int) -> bool:
    """Hard-delete a reservation together with its detail row."""
    row = db.get(Reservation, reservation_id)
    if row is None:
        raise NotFoundError("Reservation not found", details={"reservation_id": reservation_id})
    detail = _detail_for(db, reservation_id)
    if detail is None:
        log.warning("reservation_detail_missing", reservation_id=reservation_id)
    else:
        db.delete(detail)
    db.delete(row)
    _commit(db)
    return True


def list_reservations(db: Session, salon_id: int, day: date | str, staff_id: int | None = None) -> list[Reservation]:
    stmt = select(Reservation).where(
        Reservation.salon_id == salon_id,
        Reservation.date == date_key(day),
        Reservation.is_archive.is_(False),
    )
    if staff_id is not None:
        stmt = stmt.where(Reservation.staff_id == staff_id)
    return db.execute(stmt.order_by(Reservation.start_time.asc())).scalars().all()
