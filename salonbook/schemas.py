from datetime import date, datetime

from pydantic import BaseModel, Field, validator

STATUS_PATTERN = "^(pending|confirmed|completed|cancelled)$"
KIND_PATTERN = "^(holiday|leave|irregular_hours|other)$"


class SalonCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)


class StaffCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)


class MenuCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    duration_min: int = Field(gt=0, le=480)


class WeekScheduleDaySet(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    is_open: bool = False
    start_hour: str | None = Field(default=None, max_length=5)
    end_hour: str | None = Field(default=None, max_length=5)


class WeekScheduleSet(BaseModel):
    days: list[WeekScheduleDaySet] = Field(min_length=1, max_length=7)

    @validator("days")
    def validate_unique_days(cls, value: list[WeekScheduleDaySet]):
        days = [day.day_of_week for day in value]
        if len(days) != len(set(days)):
            raise ValueError("day_of_week must be unique")
        return value


class WeekScheduleDayOut(BaseModel):
    day_of_week: int
    day_name: str
    is_open: bool
    start_hour: str | None = None
    end_hour: str | None = None
    source: str


class ScheduleExceptionSet(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    kind: str = Field(default="holiday", pattern=KIND_PATTERN)
    notes: str | None = Field(default=None, max_length=500)


class StaffExceptionItem(ScheduleExceptionSet):
    date: date


class StaffExceptionReconcile(BaseModel):
    exceptions: list[StaffExceptionItem] = Field(default_factory=list, max_length=366)

    @validator("exceptions")
    def validate_unique_dates(cls, value: list[StaffExceptionItem]):
        dates = [item.date for item in value]
        if len(dates) != len(set(dates)):
            raise ValueError("date must be unique")
        return value


class ScheduleExceptionOut(BaseModel):
    id: int
    owner_type: str
    owner_id: int
    date: date
    is_all_day: bool
    start_time: datetime | None = None
    end_time: datetime | None = None
    kind: str
    notes: str | None = None


class ReservationConfigSet(BaseModel):
    available_sheets: int = Field(ge=1, le=100)
    reservation_limit_days: int | None = Field(default=None, ge=1, le=365)
    available_cancel_days: int | None = Field(default=None, ge=0, le=365)
    today_first_later_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    reservation_interval_minutes: int | None = Field(default=None, ge=5, le=240)


class ReservationConfigOut(BaseModel):
    salon_id: int
    available_sheets: int
    reservation_limit_days: int
    available_cancel_days: int
    today_first_later_minutes: int
    reservation_interval_minutes: int
    source: str


class AvailabilityOut(BaseModel):
    salon_id: int
    staff_id: int | None = None
    date: date
    is_open: bool
    start: datetime | None = None
    end: datetime | None = None


class SlotOut(BaseModel):
    start: datetime
    end: datetime


class SlotsOut(BaseModel):
    salon_id: int
    staff_id: int | None = None
    date: date
    duration_min: int
    granularity_min: int
    slots: list[SlotOut]


class ReservationWrite(BaseModel):
    staff_id: int = Field(gt=0)
    customer_id: str = Field(min_length=1, max_length=120)
    menu_id: int | None = Field(default=None, gt=0)
    date: date
    start_time: datetime
    end_time: datetime
    status: str = Field(default="confirmed", pattern=STATUS_PATTERN)
    notes: str | None = Field(default=None, max_length=500)
    extra_charge: float = Field(default=0, ge=0)

    @validator("end_time")
    def validate_end_after_start(cls, value: datetime, values: dict) -> datetime:
        start_time = values.get("start_time")
        if start_time and value <= start_time:
            raise ValueError("end_time must be after start_time")
        return value


class ReservationCreate(ReservationWrite):
    salon_id: int = Field(gt=0)


class ReservationUpdate(ReservationWrite):
    # omitted status keeps the stored one
    status: str | None = Field(default=None, pattern=STATUS_PATTERN)


class ReservationStatusUpdate(BaseModel):
    status: str = Field(pattern=STATUS_PATTERN)


class ReservationOut(BaseModel):
    id: int
    master_id: str
    salon_id: int
    staff_id: int
    customer_id: str
    menu_id: int | None = None
    date: date
    start_time: datetime
    end_time: datetime
    status: str
    is_archive: bool
    notes: str | None = None
    extra_charge: float = 0
