"""
Booking validators.

Validators:
- parse_booking_request: schema gate for booking input (names, contact, consent)
- validate_no_collision: commit-time overlap check against calendar busy intervals
"""

from booking.validators.booking_validators import (
    BookingRequest,
    PatientPayload,
    parse_booking_request,
    validate_no_collision,
)

__all__ = [
    "BookingRequest",
    "PatientPayload",
    "parse_booking_request",
    "validate_no_collision",
]
