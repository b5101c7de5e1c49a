"""
Store contract for the reservation engine.

All reads and writes of slots, holds, appointments and notifications go
through a StoreTransaction obtained from ``BookingStore.transaction()``:

    async with store.transaction() as tx:
        slot = await tx.get_slot(slot_id, for_update=True)
        ...
        await tx.save_slot(slot)

The context manager commits on clean exit and rolls back when the block
raises, so a check-then-act sequence inside one block is all-or-nothing.
Implementations raise ConcurrentModification when the engine aborts a
transaction because a concurrent one touched the same rows.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Optional

from booking.models import Appointment, Hold, Notification, Provider, Service, Slot


class StoreTransaction(ABC):
    """Operations available inside one atomic store transaction."""

    # Catalog (read-only here; managed by the admin side)

    @abstractmethod
    async def get_provider(self, provider_id: str) -> Optional[Provider]: ...

    @abstractmethod
    async def list_active_providers(self) -> list[Provider]: ...

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[Service]: ...

    @abstractmethod
    async def list_active_services(self, provider_id: str) -> list[Service]: ...

    # Slots

    @abstractmethod
    async def get_slot(self, slot_id: str, for_update: bool = False) -> Optional[Slot]: ...

    @abstractmethod
    async def list_slots(self, provider_id: str, start: datetime, end: datetime) -> list[Slot]:
        """Slots of a provider (any service) overlapping [start, end)."""

    @abstractmethod
    async def save_slot(self, slot: Slot) -> None: ...

    @abstractmethod
    async def insert_slot_if_absent(self, slot: Slot) -> bool:
        """Insert a slot unless its id exists. Returns True when inserted."""

    @abstractmethod
    async def list_expired_held_slots(self, now: datetime) -> list[Slot]: ...

    @abstractmethod
    async def delete_past_free_slots(self, now: datetime) -> int: ...

    # Holds

    @abstractmethod
    async def get_hold(self, slot_id: str, requester_id: str) -> Optional[Hold]: ...

    @abstractmethod
    async def save_hold(self, hold: Hold) -> None: ...

    @abstractmethod
    async def delete_holds(self, slot_id: str) -> int:
        """Delete every hold record of a slot. Returns the number removed."""

    # Appointments

    @abstractmethod
    async def get_appointment(
        self, appointment_id: str, for_update: bool = False
    ) -> Optional[Appointment]: ...

    @abstractmethod
    async def save_appointment(self, appointment: Appointment) -> None: ...

    # Notifications

    @abstractmethod
    async def get_notification(
        self, notification_id: str, for_update: bool = False
    ) -> Optional[Notification]: ...

    @abstractmethod
    async def save_notification(self, notification: Notification) -> None: ...

    @abstractmethod
    async def list_notifications(self, appointment_id: str) -> list[Notification]: ...

    @abstractmethod
    async def list_due_notifications(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[Notification]:
        """Unsent notifications scheduled at or before now, oldest first."""


class BookingStore(ABC):
    """Factory of atomic transactions against the backing store."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]: ...
