"""
Slot keys and working-hour arithmetic.

Slot identifiers are derived from (provider, service, start) so that
availability queries are idempotent and a cancelled appointment can find
its slot again without an auxiliary index.
"""

import hashlib
import logging
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from booking.models import BusyInterval, Provider

logger = logging.getLogger(__name__)

SLOT_KEY_LENGTH = 28

DAY_KEYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def format_instant(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2024-06-10T07:00:00.000Z."""
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def slot_key(provider_id: str, service_id: str, start: datetime) -> str:
    """
    Deterministic slot identifier.

    Args:
        provider_id: Provider identifier
        service_id: Service identifier
        start: Slot start (timezone-aware)

    Returns:
        First 28 hex chars of SHA-1("{provider}|{service}|{start}")
    """
    if start.tzinfo is None:
        raise ValueError("slot start must be timezone-aware")
    digest = hashlib.sha1(f"{provider_id}|{service_id}|{format_instant(start)}".encode())
    return digest.hexdigest()[:SLOT_KEY_LENGTH]


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def working_windows(provider: Provider, day: date) -> list[tuple[datetime, datetime]]:
    """
    Working windows of a provider for one calendar day, as UTC intervals.

    The weekly template is interpreted in the provider's own timezone. A day
    entry is either a list of {"start", "end"} windows or a dict with
    "is_open" and "slots". Malformed entries are skipped with a warning.
    """
    tz = ZoneInfo(provider.timezone)
    day_schedule = provider.weekly_schedule.get(DAY_KEYS[day.weekday()]) or {}
    if isinstance(day_schedule, list):
        day_schedule = {"is_open": True, "slots": day_schedule}
    if not day_schedule.get("is_open", True):
        return []

    windows = []
    for entry in day_schedule.get("slots", []):
        try:
            start = datetime.combine(day, _parse_hhmm(entry["start"]), tzinfo=tz)
            end = datetime.combine(day, _parse_hhmm(entry["end"]), tzinfo=tz)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"Skipping malformed working window for provider {provider.id}: {entry} ({e})",
                extra={"provider_id": provider.id},
            )
            continue
        if end > start:
            windows.append((start.astimezone(UTC), end.astimezone(UTC)))
    return sorted(windows)


def split_window(
    window_start: datetime, window_end: datetime, slot_minutes: int
) -> list[tuple[datetime, datetime]]:
    """Cut a working window into back-to-back slots of slot_minutes; a short tail is dropped."""
    if slot_minutes <= 0:
        raise ValueError("slot length must be positive")

    step = timedelta(minutes=slot_minutes)
    slots = []
    current = window_start
    while current + step <= window_end:
        slots.append((current, current + step))
        current += step
    return slots


def overlaps_any(start: datetime, end: datetime, busy: list[BusyInterval]) -> bool:
    return any(interval.overlaps(start, end) for interval in busy)


def days_between(start_day: date, end_day: date) -> list[date]:
    """Inclusive list of days from start_day to end_day."""
    days = []
    current = start_day
    while current <= end_day:
        days.append(current)
        current += timedelta(days=1)
    return days
