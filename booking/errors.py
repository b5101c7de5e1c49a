"""
Booking error taxonomy.

Every failure the reservation engine reports to a caller is a BookingError
subclass carrying a stable ``error_code``, a human-readable message and a
``details`` dict. The HTTP layer maps codes to status codes; callers use
``retryable`` to decide between backing off and re-querying availability.
"""

from typing import Any


class BookingError(Exception):
    """Base class for all booking engine errors."""

    error_code = "BOOKING_ERROR"
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "error_message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class NotFound(BookingError):
    """Referenced slot, appointment or notification does not exist."""

    error_code = "NOT_FOUND"


class SlotUnavailable(BookingError):
    """Slot is already held or booked by a live claim."""

    error_code = "SLOT_UNAVAILABLE"


class SlotExpiredOrTaken(BookingError):
    """Hold expired, or the slot changed between hold and commit."""

    error_code = "SLOT_EXPIRED_OR_TAKEN"


class Collision(BookingError):
    """External calendar shows a conflicting event at commit time."""

    error_code = "COLLISION"


class BookingValidationError(BookingError):
    """Malformed or incomplete patient/booking input."""

    error_code = "VALIDATION_ERROR"


class RateLimited(BookingError):
    """Caller origin exceeded its request budget."""

    error_code = "RATE_LIMITED"
    retryable = True

    def __init__(self, message: str, retry_after: int, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class VerificationFailed(BookingError):
    """Human-verification token was rejected."""

    error_code = "VERIFICATION_FAILED"


class UpstreamError(BookingError):
    """External calendar or notification channel failure."""

    error_code = "UPSTREAM_ERROR"
    retryable = True


class AlreadyCancelled(BookingError):
    error_code = "ALREADY_CANCELLED"


class AlreadyCompleted(BookingError):
    error_code = "ALREADY_COMPLETED"


class ConcurrentModification(BookingError):
    """
    The store aborted a transaction because a concurrent one touched the same rows.

    Raised by store implementations only; services translate it into the
    contention error of the operation that lost the race.
    """

    error_code = "CONCURRENT_MODIFICATION"
