import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import settings
from ..errors import ScheduleValidationError

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self):
        if not self.start < self.end:
            raise ScheduleValidationError(
                "start must be before end",
                details={"start": self.start.isoformat(), "end": self.end.isoformat()},
            )

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return TimeRange(start, end)


# An open window is just a time range; the alias keeps call sites readable.
Window = TimeRange


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval test: touching ranges do not overlap."""
    return a_start < b_end and b_start < a_end


def parse_hhmm(value: str | None, field: str = "time") -> time:
    raw = (value or "").strip()
    match = _HHMM_RE.match(raw)
    if not match:
        raise ScheduleValidationError(
            f"{field} must be in HH:MM format", details={field: value}
        )
    return time(int(match.group(1)), int(match.group(2)))


def parse_date(value: str | date | None, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    if not _DATE_RE.match(raw):
        raise ScheduleValidationError(
            f"{field} must be in YYYY-MM-DD format", details={field: value}
        )
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ScheduleValidationError(f"{field} is not a valid date", details={field: value}) from exc


def date_key(value: date | str) -> str:
    return parse_date(value).isoformat()


def day_of_week(day: date) -> int:
    # date.weekday() is Monday=0; stored schedules use Sunday=0
    return (day.weekday() + 1) % 7


def at(day: date, hhmm: str) -> datetime:
    return datetime.combine(day, parse_hhmm(hhmm))


def ceil_to_step(value: datetime, step_min: int) -> datetime:
    """Round up to the next multiple of ``step_min`` minutes past midnight."""
    midnight = datetime.combine(value.date(), time.min)
    elapsed = (value - midnight).total_seconds() / 60.0
    steps = math.ceil(elapsed / step_min)
    return midnight + timedelta(minutes=steps * step_min)


def salon_zone() -> ZoneInfo | timezone:
    try:
        return ZoneInfo(settings.SALON_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_now() -> datetime:
    """Current wall-clock time in the salon's zone, as a naive datetime."""
    return datetime.now(salon_zone()).replace(tzinfo=None, microsecond=0)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(salon_zone()).replace(tzinfo=None)
