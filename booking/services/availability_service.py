"""
Slot availability.

Candidate slots come from the provider's weekly working-hour template cut
at the service's slot length. A candidate is unavailable when it overlaps a
slot of the same provider that is booked or under a live hold (whatever the
service), or a busy interval reported by the provider's external calendar.

Listing is query-only: two calls with no state change in between return
the same sequence, ordered by start time. A candidate may not have a slot
record yet; holding it with its provider, service and start creates one.

Usage:
    service = AvailabilityService(store, calendar)
    slots = await service.list_slots("dr-martin", "consult-30", date(2024, 6, 10))
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from booking.errors import BookingValidationError, NotFound
from booking.models import BusyInterval, CandidateSlot, Provider, Service, utc_now
from booking.services.calendar_adapter import CalendarAdapter
from booking.slots import days_between, overlaps_any, slot_key, split_window, working_windows
from booking.store.base import BookingStore

logger = logging.getLogger(__name__)

# Widest range a single listing may cover
MAX_RANGE_DAYS = 62


def build_candidates(
    provider: Provider,
    service: Service,
    days: list[date],
    now: datetime,
    blocked: list[BusyInterval],
) -> list[CandidateSlot]:
    """
    Candidate slots of a provider/service over days.

    Starts at or before now are dropped; a candidate overlapping any blocked
    interval is returned with available=False.
    """
    candidates = []
    for day in days:
        for window_start, window_end in working_windows(provider, day):
            for start, end in split_window(window_start, window_end, service.slot_minutes):
                if start <= now:
                    continue
                candidates.append(
                    CandidateSlot(
                        slot_id=slot_key(provider.id, service.id, start),
                        start=start,
                        end=end,
                        available=not overlaps_any(start, end, blocked),
                    )
                )
    candidates.sort(key=lambda c: c.start)
    return candidates


async def load_catalog(tx, provider_id: str, service_id: str) -> tuple[Provider, Service]:
    """Fetch an active provider and one of its active services, or raise NotFound."""
    provider = await tx.get_provider(provider_id)
    if provider is None or not provider.is_active:
        raise NotFound(f"Provider {provider_id} not found", details={"provider_id": provider_id})

    service = await tx.get_service(service_id)
    if service is None or not service.is_active or service.provider_id != provider_id:
        raise NotFound(
            f"Service {service_id} not found for provider {provider_id}",
            details={"provider_id": provider_id, "service_id": service_id},
        )
    return provider, service


class AvailabilityService:
    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarAdapter,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.calendar = calendar
        self.clock = clock

    async def list_slots(
        self,
        provider_id: str,
        service_id: str,
        start_day: date,
        end_day: Optional[date] = None,
        only_available: bool = False,
    ) -> list[CandidateSlot]:
        """
        List candidate slots for a provider/service over a day range.

        Args:
            provider_id: Provider identifier
            service_id: Service identifier (must belong to the provider)
            start_day: First day, in the provider's timezone
            end_day: Last day (inclusive), defaults to start_day
            only_available: Drop unavailable candidates from the result

        Returns:
            Candidates ordered by start time

        Raises:
            NotFound: unknown or inactive provider/service
            BookingValidationError: inverted or too wide day range
            UpstreamError: the external calendar could not be queried
        """
        end_day = end_day or start_day
        if end_day < start_day:
            raise BookingValidationError(
                "End date is before start date",
                details={"start": start_day.isoformat(), "end": end_day.isoformat()},
            )
        if (end_day - start_day).days >= MAX_RANGE_DAYS:
            raise BookingValidationError(
                f"Date range cannot exceed {MAX_RANGE_DAYS} days",
                details={"start": start_day.isoformat(), "end": end_day.isoformat()},
            )

        now = self.clock()
        days = days_between(start_day, end_day)

        async with self.store.transaction() as tx:
            provider, service = await load_catalog(tx, provider_id, service_id)

            windows = [w for day in days for w in working_windows(provider, day)]
            if not windows:
                logger.info(
                    f"No working hours for provider {provider_id} between {start_day} and {end_day}",
                    extra={"provider_id": provider_id},
                )
                return []

            range_start = min(w[0] for w in windows)
            range_end = max(w[1] for w in windows)
            existing = await tx.list_slots(provider_id, range_start, range_end)

        blocked = [
            BusyInterval(start=s.start_time, end=s.end_time)
            for s in existing
            if s.is_claimed(now)
        ]
        blocked += await self.calendar.list_busy_events(provider_id, range_start, range_end)

        candidates = build_candidates(provider, service, days, now, blocked)
        if only_available:
            candidates = [c for c in candidates if c.available]

        logger.debug(
            f"Availability for {provider_id}/{service_id} {start_day}..{end_day}: "
            f"{sum(c.available for c in candidates)}/{len(candidates)} free",
            extra={"provider_id": provider_id},
        )
        return candidates
