"""
Booking services module.

Services:
- availability_service: candidate slots from working hours minus claims and calendar busy time
- hold_service: short-lived slot holds
- cancellation_service: appointment cancellation and slot release
- notification_service: notification planning and idempotent dispatch
- calendar_adapter / gcal_service: external calendar contract and Google implementation
"""

from booking.services.availability_service import AvailabilityService, build_candidates
from booking.services.calendar_adapter import CalendarAdapter
from booking.services.cancellation_service import CancellationResult, CancellationService
from booking.services.hold_service import HoldResult, HoldService
from booking.services.notification_service import (
    NotificationScheduler,
    NotificationSender,
    SendResult,
)

__all__ = [
    # Availability
    "AvailabilityService",
    "build_candidates",
    # Calendar
    "CalendarAdapter",
    # Holds
    "HoldResult",
    "HoldService",
    # Cancellation
    "CancellationResult",
    "CancellationService",
    # Notifications
    "NotificationScheduler",
    "NotificationSender",
    "SendResult",
]
