"""
iCalendar (RFC 5545) export of a single appointment.
"""

from datetime import UTC, datetime

from booking.models import Appointment, AppointmentStatus

PRODID = "-//slotbook//booking engine//FR"


def _ics_time(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    """Fold content lines longer than 75 octets."""
    encoded = line.encode("utf-8")
    if len(encoded) <= 75:
        return line

    parts = []
    current = ""
    for char in line:
        limit = 75 if not parts else 74
        if len((current + char).encode("utf-8")) > limit:
            parts.append(current)
            current = char
        else:
            current += char
    parts.append(current)
    return "\r\n ".join(parts)


def build_appointment_ics(
    appointment: Appointment,
    title: str,
    description: str = "",
    location: str = "",
    stamp: datetime | None = None,
) -> str:
    """
    Render an appointment as a one-event VCALENDAR.

    A cancelled appointment is exported with STATUS:CANCELLED and METHOD:CANCEL
    so calendar clients remove a previously imported copy.
    """
    cancelled = appointment.status == AppointmentStatus.CANCELLED
    stamp = stamp or appointment.updated_at or appointment.created_at or appointment.start_time

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        f"METHOD:{'CANCEL' if cancelled else 'PUBLISH'}",
        "BEGIN:VEVENT",
        f"UID:{appointment.id}@slotbook",
        f"DTSTAMP:{_ics_time(stamp)}",
        f"DTSTART:{_ics_time(appointment.start_time)}",
        f"DTEND:{_ics_time(appointment.end_time)}",
        f"SUMMARY:{_escape(title)}",
        f"STATUS:{'CANCELLED' if cancelled else 'CONFIRMED'}",
    ]
    if description:
        lines.append(f"DESCRIPTION:{_escape(description)}")
    if location:
        lines.append(f"LOCATION:{_escape(location)}")
    lines += ["END:VEVENT", "END:VCALENDAR"]

    return "\r\n".join(_fold(line) for line in lines) + "\r\n"
