"""
SQLAlchemy ORM models for the reservation tables.

This module defines:
- providers: Bookable practitioners with weekly working-hour templates
- services: Services offered by a provider (duration + buffer)
- slots: Bookable intervals keyed by the deterministic slot hash
- slot_holds: Short-lived exclusive claims on a slot
- appointments: Committed bookings (never physically deleted)
- notifications: Scheduled/sent patient messages

All models use:
- String primary keys (uuid hex, or slot hash for slots)
- TIMESTAMP WITH TIME ZONE for datetime fields
- JSONB for templates and patient contact data
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from booking.models import (
    AppointmentStatus,
    NotificationChannel,
    NotificationType,
    SlotStatus,
    utc_now,
)

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _enum_values(enum_cls: Any) -> list[str]:
    return [member.value for member in enum_cls]


# ============================================================================
# Catalog
# ============================================================================


class Provider(Base):
    """
    Provider model - practitioner whose calendar is the source of truth.

    weekly_schedule: {"monday": {"is_open": true, "slots": [{"start": "09:00", "end": "12:00"}]}}
    """

    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Europe/Paris")
    weekly_schedule: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name='{self.name}')>"


class Service(Base):
    """Service model - one bookable service with its duration."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("providers.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    buffer_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes})>"


# ============================================================================
# Reservation tables
# ============================================================================


class Slot(Base):
    """
    Slot model - one bookable interval for a provider/service pair.

    Primary key is slot_key(provider_id, service_id, start_time).
    status=held implies held_until is set; status=booked implies it is null.
    """

    __tablename__ = "slots"

    id: Mapped[str] = mapped_column(String(28), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        SQLEnum(SlotStatus, name="slot_status", values_callable=_enum_values),
        nullable=False,
        default=SlotStatus.FREE,
    )
    held_until: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("provider_id", "service_id", "start_time", name="uq_slots_provider_service_start"),
        Index("idx_slots_provider_start", "provider_id", "start_time"),
        Index(
            "idx_slots_held_until",
            "held_until",
            postgresql_where=text("status = 'held'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, start={self.start_time}, status='{self.status.value}')>"


class SlotHold(Base):
    """Hold model - one requester's claim on a slot, keyed by (slot_id, requester_id)."""

    __tablename__ = "slot_holds"

    slot_id: Mapped[str] = mapped_column(
        String(28), ForeignKey("slots.id", ondelete="CASCADE"), primary_key=True
    )
    requester_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )


class Appointment(Base):
    """
    Appointment model - committed booking, retained for audit.

    A confirmed appointment always references its external calendar event.
    """

    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    slot_id: Mapped[str] = mapped_column(String(28), nullable=False)
    start_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    patient: Mapped[dict] = mapped_column(JSONB, nullable=False)
    external_event_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.CONFIRMED,
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="online")
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="patient")
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, start={self.start_time}, status='{self.status}')>"


class Notification(Base):
    """
    Notification model - one scheduled patient message.

    sent_at is written once and never cleared.
    """

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    appointment_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("appointments.id"), nullable=False, index=True
    )
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    channel: Mapped[NotificationChannel] = mapped_column(
        SQLEnum(NotificationChannel, name="notification_channel", values_callable=_enum_values),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index(
            "idx_notifications_due",
            "scheduled_at",
            postgresql_where=text("sent_at IS NULL"),
        ),
    )
