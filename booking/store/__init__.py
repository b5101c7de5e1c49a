"""Transactional stores for slots, holds, appointments and notifications."""

from booking.store.base import BookingStore, StoreTransaction
from booking.store.memory import InMemoryBookingStore

__all__ = [
    "BookingStore",
    "StoreTransaction",
    "InMemoryBookingStore",
]
