from contextlib import contextmanager
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from .db import get_db
from .errors import SchedulingError
from .models import OWNER_SALON, OWNER_STAFF
from .scheduling.locks import KeyedLock
from .scheduling.resolver import CLOSED
from .schemas import (
    AvailabilityOut,
    MenuCreate,
    ReservationConfigOut,
    ReservationConfigSet,
    ReservationCreate,
    ReservationOut,
    ReservationStatusUpdate,
    ReservationUpdate,
    SalonCreate,
    ScheduleExceptionOut,
    ScheduleExceptionSet,
    SlotOut,
    SlotsOut,
    StaffCreate,
    StaffExceptionReconcile,
    WeekScheduleDayOut,
    WeekScheduleSet,
)
from .services import (
    archive_reservation,
    archive_week_schedule_day,
    create_menu,
    create_reservation,
    create_salon,
    create_staff,
    delete_reservation,
    delete_schedule_exception,
    exception_out,
    get_reservation,
    get_reservation_config,
    list_bookable_slots,
    list_reservations,
    list_schedule_exceptions,
    list_week_schedule,
    reconcile_staff_exceptions,
    reservation_out,
    resolve_day,
    set_reservation_config,
    set_week_schedule,
    update_reservation,
    update_reservation_status,
    upsert_schedule_exception,
)

router = APIRouter(prefix="/api")

_default_locks = KeyedLock()


def get_booking_locks(request: Request) -> KeyedLock:
    return getattr(request.app.state, "booking_locks", None) or _default_locks


@contextmanager
def _service_errors():
    try:
        yield
    except SchedulingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc


@router.post("/salons", status_code=status.HTTP_201_CREATED)
def add_salon(payload: SalonCreate, db: Session = Depends(get_db)):
    row = create_salon(db, payload.name)
    return {"id": row.id, "name": row.name}


@router.post("/salons/{salon_id}/staff", status_code=status.HTTP_201_CREATED)
def add_staff(salon_id: int, payload: StaffCreate, db: Session = Depends(get_db)):
    with _service_errors():
        row = create_staff(db, salon_id, payload.name)
    return {"id": row.id, "salon_id": row.salon_id, "name": row.name}


@router.post("/salons/{salon_id}/menus", status_code=status.HTTP_201_CREATED)
def add_menu(salon_id: int, payload: MenuCreate, db: Session = Depends(get_db)):
    with _service_errors():
        row = create_menu(db, salon_id, payload.name, payload.duration_min)
    return {"id": row.id, "salon_id": row.salon_id, "name": row.name, "duration_min": row.duration_min}


@router.get("/salons/{salon_id}/week-schedule", response_model=List[WeekScheduleDayOut])
def get_salon_week(salon_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        return list_week_schedule(db, OWNER_SALON, salon_id)


@router.put("/salons/{salon_id}/week-schedule", response_model=List[WeekScheduleDayOut])
def put_salon_week(salon_id: int, payload: WeekScheduleSet, db: Session = Depends(get_db)):
    with _service_errors():
        return set_week_schedule(db, OWNER_SALON, salon_id, [d.model_dump() for d in payload.days])


@router.get("/staff/{staff_id}/week-schedule", response_model=List[WeekScheduleDayOut])
def get_staff_week(staff_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        return list_week_schedule(db, OWNER_STAFF, staff_id)


@router.put("/staff/{staff_id}/week-schedule", response_model=List[WeekScheduleDayOut])
def put_staff_week(staff_id: int, payload: WeekScheduleSet, db: Session = Depends(get_db)):
    with _service_errors():
        return set_week_schedule(db, OWNER_STAFF, staff_id, [d.model_dump() for d in payload.days])


@router.delete("/salons/{salon_id}/week-schedule/{day_of_week}")
def delete_salon_week_day(salon_id: int, day_of_week: int, db: Session = Depends(get_db)):
    if not archive_week_schedule_day(db, OWNER_SALON, salon_id, day_of_week):
        raise HTTPException(status_code=404, detail="Weekly schedule not found")
    return {"ok": True}


@router.delete("/staff/{staff_id}/week-schedule/{day_of_week}")
def delete_staff_week_day(staff_id: int, day_of_week: int, db: Session = Depends(get_db)):
    if not archive_week_schedule_day(db, OWNER_STAFF, staff_id, day_of_week):
        raise HTTPException(status_code=404, detail="Weekly schedule not found")
    return {"ok": True}


@router.get("/salons/{salon_id}/exceptions", response_model=List[ScheduleExceptionOut])
def get_salon_exceptions(salon_id: int, db: Session = Depends(get_db)):
    return [exception_out(r) for r in list_schedule_exceptions(db, OWNER_SALON, salon_id)]


@router.put("/salons/{salon_id}/exceptions/{day}", response_model=ScheduleExceptionOut)
def put_salon_exception(
    salon_id: int,
    day: date,
    payload: ScheduleExceptionSet,
    db: Session = Depends(get_db),
):
    with _service_errors():
        row = upsert_schedule_exception(
            db,
            OWNER_SALON,
            salon_id,
            day,
            start_time=payload.start_time,
            end_time=payload.end_time,
            kind=payload.kind,
            notes=payload.notes,
        )
    return exception_out(row)


@router.delete("/salons/{salon_id}/exceptions/{day}")
def remove_salon_exception(salon_id: int, day: date, db: Session = Depends(get_db)):
    with _service_errors():
        removed = delete_schedule_exception(db, OWNER_SALON, salon_id, day)
    if not removed:
        raise HTTPException(status_code=404, detail="Exception not found")
    return {"ok": True}


@router.get("/staff/{staff_id}/exceptions", response_model=List[ScheduleExceptionOut])
def get_staff_exceptions(staff_id: int, db: Session = Depends(get_db)):
    return [exception_out(r) for r in list_schedule_exceptions(db, OWNER_STAFF, staff_id)]


@router.put("/staff/{staff_id}/exceptions", response_model=List[ScheduleExceptionOut])
def put_staff_exceptions(
    staff_id: int,
    payload: StaffExceptionReconcile,
    db: Session = Depends(get_db),
):
    with _service_errors():
        rows = reconcile_staff_exceptions(
            db, staff_id, [item.model_dump() for item in payload.exceptions]
        )
    return [exception_out(r) for r in rows]


@router.get("/salons/{salon_id}/reservation-config", response_model=ReservationConfigOut)
def get_salon_reservation_config(salon_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        return get_reservation_config(db, salon_id)


@router.put("/salons/{salon_id}/reservation-config", response_model=ReservationConfigOut)
def put_salon_reservation_config(
    salon_id: int,
    payload: ReservationConfigSet,
    db: Session = Depends(get_db),
):
    with _service_errors():
        return set_reservation_config(db, salon_id, **payload.model_dump())


@router.get("/salons/{salon_id}/availability", response_model=AvailabilityOut)
def get_availability(
    salon_id: int,
    day: date = Query(..., alias="date"),
    staff_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    with _service_errors():
        window = resolve_day(db, salon_id, staff_id, day)
    if window is CLOSED:
        return AvailabilityOut(salon_id=salon_id, staff_id=staff_id, date=day, is_open=False)
    return AvailabilityOut(
        salon_id=salon_id,
        staff_id=staff_id,
        date=day,
        is_open=True,
        start=window.start,
        end=window.end,
    )


@router.get("/salons/{salon_id}/slots", response_model=SlotsOut)
def get_slots(
    salon_id: int,
    day: date = Query(..., alias="date"),
    staff_id: Optional[int] = Query(None),
    duration_min: Optional[int] = Query(None, ge=5, le=480),
    menu_id: Optional[int] = Query(None),
    granularity_min: Optional[int] = Query(None, ge=5, le=240),
    db: Session = Depends(get_db),
):
    with _service_errors():
        slots, duration, granularity = list_bookable_slots(
            db,
            salon_id,
            staff_id,
            day,
            duration_min=duration_min,
            menu_id=menu_id,
            granularity_min=granularity_min,
        )
    return SlotsOut(
        salon_id=salon_id,
        staff_id=staff_id,
        date=day,
        duration_min=duration,
        granularity_min=granularity,
        slots=[SlotOut(start=s.start, end=s.end) for s in slots],
    )


@router.get("/salons/{salon_id}/reservations", response_model=List[ReservationOut])
def get_reservations(
    salon_id: int,
    day: date = Query(..., alias="date"),
    staff_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    return [reservation_out(r) for r in list_reservations(db, salon_id, day, staff_id)]


@router.post("/reservations", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
def add_reservation(
    payload: ReservationCreate,
    db: Session = Depends(get_db),
    locks: KeyedLock = Depends(get_booking_locks),
):
    with _service_errors():
        row = create_reservation(
            db,
            locks,
            salon_id=payload.salon_id,
            staff_id=payload.staff_id,
            day=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            customer_id=payload.customer_id,
            menu_id=payload.menu_id,
            status=payload.status,
            notes=payload.notes,
            extra_charge=payload.extra_charge,
        )
    return reservation_out(row)


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
def read_reservation(reservation_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        return reservation_out(get_reservation(db, reservation_id))


@router.patch("/reservations/{reservation_id}", response_model=ReservationOut)
def patch_reservation(
    reservation_id: int,
    payload: ReservationUpdate,
    db: Session = Depends(get_db),
    locks: KeyedLock = Depends(get_booking_locks),
):
    with _service_errors():
        row = update_reservation(
            db,
            locks,
            reservation_id,
            staff_id=payload.staff_id,
            day=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            customer_id=payload.customer_id,
            menu_id=payload.menu_id,
            status=payload.status,
            notes=payload.notes,
            extra_charge=payload.extra_charge,
        )
    return reservation_out(row)


@router.patch("/reservations/{reservation_id}/status", response_model=ReservationOut)
def patch_reservation_status(
    reservation_id: int,
    payload: ReservationStatusUpdate,
    db: Session = Depends(get_db),
    locks: KeyedLock = Depends(get_booking_locks),
):
    with _service_errors():
        row = update_reservation_status(db, locks, reservation_id, payload.status)
    return reservation_out(row)


@router.post("/reservations/{reservation_id}/archive")
def post_reservation_archive(reservation_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        archive_reservation(db, reservation_id)
    return {"ok": True}


@router.delete("/reservations/{reservation_id}")
def remove_reservation(reservation_id: int, db: Session = Depends(get_db)):
    with _service_errors():
        delete_reservation(db, reservation_id)
    return {"ok": True}
