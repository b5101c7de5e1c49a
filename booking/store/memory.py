"""
In-memory BookingStore for single-process deployments and tests.

Transactions are serialized by one asyncio.Lock. Each transaction works on
the live dicts and keeps an undo log of the records it writes; if the block
raises, those records are put back, which gives the same all-or-nothing
behaviour as the SQL store.
Records are copied on the way in and out so callers never alias stored
state.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from booking.models import (
    Appointment,
    Hold,
    Notification,
    Provider,
    Service,
    Slot,
    SlotStatus,
)
from booking.store.base import BookingStore, StoreTransaction

logger = logging.getLogger(__name__)

_ABSENT = object()


class _MemoryState:
    def __init__(self) -> None:
        self.providers: dict[str, Provider] = {}
        self.services: dict[str, Service] = {}
        self.slots: dict[str, Slot] = {}
        self.holds: dict[tuple[str, str], Hold] = {}
        self.appointments: dict[str, Appointment] = {}
        self.notifications: dict[str, Notification] = {}


class InMemoryTransaction(StoreTransaction):
    def __init__(self, state: _MemoryState):
        self._state = state
        # (table, key) -> record before this transaction first wrote it
        self._undo: dict[tuple[str, Any], Any] = {}

    def _remember(self, table: str, key: Any) -> None:
        # Stored records are replaced on write, never mutated, so a reference suffices
        if (table, key) not in self._undo:
            self._undo[(table, key)] = getattr(self._state, table).get(key, _ABSENT)

    def rollback(self) -> None:
        for (table, key), previous in self._undo.items():
            records = getattr(self._state, table)
            if previous is _ABSENT:
                records.pop(key, None)
            else:
                records[key] = previous
        self._undo.clear()

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        return copy.deepcopy(self._state.providers.get(provider_id))

    async def list_active_providers(self) -> list[Provider]:
        return [copy.deepcopy(p) for p in self._state.providers.values() if p.is_active]

    async def get_service(self, service_id: str) -> Optional[Service]:
        return copy.deepcopy(self._state.services.get(service_id))

    async def list_active_services(self, provider_id: str) -> list[Service]:
        return [
            copy.deepcopy(s)
            for s in self._state.services.values()
            if s.provider_id == provider_id and s.is_active
        ]

    async def get_slot(self, slot_id: str, for_update: bool = False) -> Optional[Slot]:
        return copy.deepcopy(self._state.slots.get(slot_id))

    async def list_slots(self, provider_id: str, start: datetime, end: datetime) -> list[Slot]:
        slots = [
            copy.deepcopy(s)
            for s in self._state.slots.values()
            if s.provider_id == provider_id and s.start_time < end and s.end_time > start
        ]
        return sorted(slots, key=lambda s: (s.start_time, s.service_id))

    async def save_slot(self, slot: Slot) -> None:
        self._remember("slots", slot.id)
        self._state.slots[slot.id] = copy.deepcopy(slot)

    async def insert_slot_if_absent(self, slot: Slot) -> bool:
        if slot.id in self._state.slots:
            return False
        self._remember("slots", slot.id)
        self._state.slots[slot.id] = copy.deepcopy(slot)
        return True

    async def list_expired_held_slots(self, now: datetime) -> list[Slot]:
        return [
            copy.deepcopy(s)
            for s in self._state.slots.values()
            if s.status == SlotStatus.HELD and (s.held_until is None or s.held_until <= now)
        ]

    async def delete_past_free_slots(self, now: datetime) -> int:
        stale = [
            slot_id
            for slot_id, s in self._state.slots.items()
            if s.status == SlotStatus.FREE and s.start_time < now
        ]
        for slot_id in stale:
            self._remember("slots", slot_id)
            del self._state.slots[slot_id]
        return len(stale)

    async def get_hold(self, slot_id: str, requester_id: str) -> Optional[Hold]:
        return copy.deepcopy(self._state.holds.get((slot_id, requester_id)))

    async def save_hold(self, hold: Hold) -> None:
        self._remember("holds", (hold.slot_id, hold.requester_id))
        self._state.holds[(hold.slot_id, hold.requester_id)] = copy.deepcopy(hold)

    async def delete_holds(self, slot_id: str) -> int:
        keys = [key for key in self._state.holds if key[0] == slot_id]
        for key in keys:
            self._remember("holds", key)
            del self._state.holds[key]
        return len(keys)

    async def get_appointment(
        self, appointment_id: str, for_update: bool = False
    ) -> Optional[Appointment]:
        return copy.deepcopy(self._state.appointments.get(appointment_id))

    async def save_appointment(self, appointment: Appointment) -> None:
        self._remember("appointments", appointment.id)
        self._state.appointments[appointment.id] = copy.deepcopy(appointment)

    async def get_notification(
        self, notification_id: str, for_update: bool = False
    ) -> Optional[Notification]:
        return copy.deepcopy(self._state.notifications.get(notification_id))

    async def save_notification(self, notification: Notification) -> None:
        self._remember("notifications", notification.id)
        self._state.notifications[notification.id] = copy.deepcopy(notification)

    async def list_notifications(self, appointment_id: str) -> list[Notification]:
        notifications = [
            copy.deepcopy(n)
            for n in self._state.notifications.values()
            if n.appointment_id == appointment_id
        ]
        return sorted(notifications, key=lambda n: n.scheduled_at)

    async def list_due_notifications(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[Notification]:
        due = [
            copy.deepcopy(n)
            for n in self._state.notifications.values()
            if n.sent_at is None and n.scheduled_at <= now and n.attempts < max_attempts
        ]
        return sorted(due, key=lambda n: n.scheduled_at)[:limit]


class InMemoryBookingStore(BookingStore):
    """Dict-backed store; one transaction at a time."""

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._lock:
            tx = InMemoryTransaction(self._state)
            try:
                yield tx
            except BaseException:
                tx.rollback()
                raise

    # Catalog seeding (admin side)

    def add_provider(self, provider: Provider) -> None:
        self._state.providers[provider.id] = copy.deepcopy(provider)

    def add_service(self, service: Service) -> None:
        self._state.services[service.id] = copy.deepcopy(service)
