"""
Domain records for the reservation engine.

These plain dataclasses are what services read and write through a
BookingStore. They are storage-agnostic: the SQL store maps them onto the
ORM tables in database/models.py, the in-memory store keeps copies of them.

All datetimes are timezone-aware UTC.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import uuid4


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (default clock)."""
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


class SlotStatus(str, PyEnum):
    """Slot lifecycle: free -> held -> booked (or back to free)."""

    FREE = "free"
    HELD = "held"
    BOOKED = "booked"


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    def __str__(self):
        return self.value


class NotificationType(str, PyEnum):
    CONFIRM = "confirm"
    REMINDER = "reminder"
    CANCEL = "cancel"


class NotificationChannel(str, PyEnum):
    EMAIL = "email"
    SMS = "sms"


@dataclass
class PatientInfo:
    """Contact data captured at booking time (no account reference)."""

    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatientInfo":
        return cls(
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass
class Provider:
    """
    A bookable practitioner.

    weekly_schedule maps lowercase English weekday names to day templates:
    {"monday": {"is_open": True, "slots": [{"start": "09:00", "end": "12:00"}]}}
    """

    id: str
    tenant_id: str
    name: str
    timezone: str
    weekly_schedule: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


@dataclass
class Service:
    id: str
    provider_id: str
    name: str
    duration_minutes: int = 60
    buffer_minutes: int = 0
    is_active: bool = True

    @property
    def slot_minutes(self) -> int:
        return self.duration_minutes + self.buffer_minutes


@dataclass
class Slot:
    id: str
    tenant_id: str
    provider_id: str
    service_id: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus = SlotStatus.FREE
    held_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_live_hold(self, now: datetime) -> bool:
        return self.status == SlotStatus.HELD and self.held_until is not None and self.held_until > now

    def is_claimed(self, now: datetime) -> bool:
        """True when a live hold or a booking owns the slot."""
        return self.status == SlotStatus.BOOKED or self.is_live_hold(now)


@dataclass
class Hold:
    slot_id: str
    requester_id: str
    tenant_id: str
    expires_at: datetime
    created_at: datetime

    @property
    def key(self) -> str:
        return f"{self.slot_id}_{self.requester_id}"


@dataclass
class Appointment:
    id: str
    tenant_id: str
    provider_id: str
    service_id: str
    slot_id: str
    start_time: datetime
    end_time: datetime
    patient: PatientInfo
    external_event_id: Optional[str]
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    source: str = "online"
    created_by: str = "patient"
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Notification:
    id: str
    appointment_id: str
    type: NotificationType
    channel: NotificationChannel
    scheduled_at: datetime
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None
    attempts: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class CandidateSlot:
    """One entry of an availability listing."""

    slot_id: str
    start: datetime
    end: datetime
    available: bool
