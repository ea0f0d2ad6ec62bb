VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
CAPACITY_CONFLICT = "CAPACITY_CONFLICT"
DOUBLE_BOOKING_CONFLICT = "DOUBLE_BOOKING_CONFLICT"
INTERNAL_ERROR = "INTERNAL_ERROR"


class SchedulingError(Exception):
    """Base class for every error the booking core reports to its callers.

    ``code`` is the stable machine-readable kind, ``message`` is safe to show
    to the end user and ``status_code`` is what the HTTP layer answers with.
    """

    code = INTERNAL_ERROR
    status_code = 500
    default_message = "Unexpected scheduling error"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ScheduleValidationError(SchedulingError):
    code = VALIDATION_ERROR
    status_code = 422
    default_message = "Invalid input"


class NotFoundError(SchedulingError):
    code = NOT_FOUND
    status_code = 404
    default_message = "Not found"


class BookingConflictError(SchedulingError):
    status_code = 409
    reason = ""


class CapacityConflictError(BookingConflictError):
    code = CAPACITY_CONFLICT
    reason = "capacity"
    default_message = "This time slot has no remaining capacity. Select another time."


class DoubleBookingError(BookingConflictError):
    code = DOUBLE_BOOKING_CONFLICT
    reason = "double_booked"
    default_message = "The selected staff member is unavailable at this time."


class StoreError(SchedulingError):
    code = INTERNAL_ERROR
    status_code = 500
    default_message = "Storage failure, try again later"
