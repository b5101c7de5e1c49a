"""
Utility functions shared by services and routes.

- calendar_link: "Add to Google Calendar" URLs for confirmation emails
- ics: iCalendar export of an appointment
"""

from booking.utils.calendar_link import generate_google_calendar_link
from booking.utils.ics import build_appointment_ics

__all__ = [
    "build_appointment_ics",
    "generate_google_calendar_link",
]
