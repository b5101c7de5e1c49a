"""
External calendar contract.

The provider's own calendar is the source of truth for conflicts. The
engine only needs three operations from it; every implementation raises
UpstreamError when the calendar cannot be reached or rejects a request.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from booking.models import BusyInterval, PatientInfo


class CalendarAdapter(ABC):
    @abstractmethod
    async def list_busy_events(
        self, provider_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        """Busy intervals of the provider overlapping [start, end]. Read-only."""

    @abstractmethod
    async def create_event(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        patient: PatientInfo,
        service_id: str,
        source: str,
    ) -> str:
        """Create an event and return its external reference."""

    @abstractmethod
    async def cancel_event(self, external_event_id: str) -> None:
        """Cancel an event. Cancelling an already-deleted event succeeds."""
