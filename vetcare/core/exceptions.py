"""Custom application exceptions."""

from datetime import date


class AppException(Exception):
    """Base application exception."""

    retryable: bool = False

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ValidationFailedException(AppException):
    """A transition payload is missing or has an invalid field."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class InvalidDateException(ValidationFailedException):
    """Appointment slot is not strictly in the future."""

    def __init__(self, message: str = "Appointment date must be in the future"):
        """Initialize with 422 status code."""
        super().__init__(message)


class InvalidTransitionException(AppException):
    """Requested action is not legal from the current status."""

    def __init__(self, message: str = "Invalid transition"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ConcurrentModificationException(InvalidTransitionException):
    """Record changed between read and write."""

    def __init__(self, message: str = "Appointment was modified concurrently"):
        """Initialize with 409 status code."""
        super().__init__(message)


class SlotConflictException(AppException):
    """Veterinarian already holds a non-terminal appointment at this slot."""

    def __init__(
        self,
        veterinarian_id: object = None,
        appointment_date: date | None = None,
        appointment_time: str | None = None,
        message: str | None = None,
    ):
        """Initialize with 409 status code and the conflicting slot."""
        self.veterinarian_id = veterinarian_id
        self.appointment_date = appointment_date
        self.appointment_time = appointment_time
        if message is None:
            if appointment_date is not None and appointment_time is not None:
                message = (
                    f"Time slot {appointment_date.isoformat()} {appointment_time} "
                    "is already booked for this veterinarian"
                )
            else:
                message = "Time slot is already booked for this veterinarian"
        super().__init__(message, status_code=409)


class AlreadyRatedException(AppException):
    """Appointment already carries a rating."""

    def __init__(self, message: str = "Appointment has already been rated"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class LockTimeoutException(AppException):
    """Lock could not be acquired in time; safe to retry."""

    retryable = True

    def __init__(self, key: str = "", message: str | None = None):
        """Initialize with 503 status code."""
        self.key = key
        super().__init__(message or f"Timed out waiting for lock {key}".strip(), status_code=503)


class StorageUnavailableException(AppException):
    """Persistence layer failed (connectivity, driver errors)."""

    def __init__(self, message: str = "Storage unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
