from datetime import datetime, timedelta
from typing import Iterator

from ..errors import ScheduleValidationError
from .timeutils import TimeRange, Window


def _check_positive(value: int, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ScheduleValidationError(f"{field} must be an integer", details={field: value}) from exc
    if number <= 0:
        raise ScheduleValidationError(f"{field} must be > 0", details={field: value})
    return number


def iter_slots(
    window: Window,
    duration_min: int,
    granularity_min: int,
    now: datetime | None = None,
) -> Iterator[TimeRange]:
    """Yield candidate ranges inside ``window``, one every ``granularity_min`` minutes.

    Each yielded range is ``duration_min`` long and ends no later than the
    window. Starts earlier than ``now`` are skipped.
    """
    duration = timedelta(minutes=_check_positive(duration_min, "duration_min"))
    step = timedelta(minutes=_check_positive(granularity_min, "granularity_min"))

    start = window.start
    while start + duration <= window.end:
        if now is None or start >= now:
            yield TimeRange(start, start + duration)
        start += step


class SlotSequence:
    """Re-iterable view over ``iter_slots``; every iteration starts from scratch."""

    def __init__(self, window, duration_min, granularity_min, now=None):
        _check_positive(duration_min, "duration_min")
        _check_positive(granularity_min, "granularity_min")
        self.window = window
        self.duration_min = int(duration_min)
        self.granularity_min = int(granularity_min)
        self.now = now

    def __iter__(self) -> Iterator[TimeRange]:
        return iter_slots(self.window, self.duration_min, self.granularity_min, self.now)

    def __len__(self) -> int:
        return sum(1 for _ in self)


def generate_slots(
    window: Window,
    duration_min: int,
    granularity_min: int,
    now: datetime | None = None,
) -> list[TimeRange]:
    return list(iter_slots(window, duration_min, granularity_min, now))
