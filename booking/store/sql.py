"""
PostgreSQL BookingStore over SQLAlchemy async sessions.

Each transaction runs with SERIALIZABLE isolation and locks the rows it
intends to change (SELECT ... FOR UPDATE), so concurrent holds or bookings
of the same slot are serialized by the database. A serialization failure
(SQLSTATE 40001) or deadlock (40P01) surfaces as ConcurrentModification.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import and_, delete, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from booking.errors import ConcurrentModification
from booking.models import (
    Appointment,
    Hold,
    Notification,
    PatientInfo,
    Provider,
    Service,
    Slot,
    SlotStatus,
)
from booking.store.base import BookingStore, StoreTransaction
from database import models as orm
from database.connection import get_async_session

logger = logging.getLogger(__name__)

SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def _is_serialization_failure(error: DBAPIError) -> bool:
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in SERIALIZATION_SQLSTATES


# ============================================================================
# Row <-> record mapping
# ============================================================================


def _provider(row: orm.Provider) -> Provider:
    return Provider(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        timezone=row.timezone,
        weekly_schedule=dict(row.weekly_schedule or {}),
        is_active=row.is_active,
    )


def _service(row: orm.Service) -> Service:
    return Service(
        id=row.id,
        provider_id=row.provider_id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        buffer_minutes=row.buffer_minutes,
        is_active=row.is_active,
    )


def _slot(row: orm.Slot) -> Slot:
    return Slot(
        id=row.id,
        tenant_id=row.tenant_id,
        provider_id=row.provider_id,
        service_id=row.service_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        held_until=row.held_until,
        updated_at=row.updated_at,
    )


def _hold(row: orm.SlotHold) -> Hold:
    return Hold(
        slot_id=row.slot_id,
        requester_id=row.requester_id,
        tenant_id=row.tenant_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _appointment(row: orm.Appointment) -> Appointment:
    return Appointment(
        id=row.id,
        tenant_id=row.tenant_id,
        provider_id=row.provider_id,
        service_id=row.service_id,
        slot_id=row.slot_id,
        start_time=row.start_time,
        end_time=row.end_time,
        patient=PatientInfo.from_dict(row.patient or {}),
        external_event_id=row.external_event_id,
        status=row.status,
        source=row.source,
        created_by=row.created_by,
        cancellation_reason=row.cancellation_reason,
        cancelled_at=row.cancelled_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _notification(row: orm.Notification) -> Notification:
    return Notification(
        id=row.id,
        appointment_id=row.appointment_id,
        type=row.type,
        channel=row.channel,
        scheduled_at=row.scheduled_at,
        sent_at=row.sent_at,
        last_error=row.last_error,
        attempts=row.attempts,
        created_at=row.created_at,
    )


# ============================================================================
# Transaction
# ============================================================================


class SqlStoreTransaction(StoreTransaction):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        row = await self.session.get(orm.Provider, provider_id)
        return _provider(row) if row else None

    async def list_active_providers(self) -> list[Provider]:
        result = await self.session.execute(
            select(orm.Provider).where(orm.Provider.is_active.is_(True)).order_by(orm.Provider.id)
        )
        return [_provider(row) for row in result.scalars().all()]

    async def get_service(self, service_id: str) -> Optional[Service]:
        row = await self.session.get(orm.Service, service_id)
        return _service(row) if row else None

    async def list_active_services(self, provider_id: str) -> list[Service]:
        result = await self.session.execute(
            select(orm.Service)
            .where(and_(orm.Service.provider_id == provider_id, orm.Service.is_active.is_(True)))
            .order_by(orm.Service.id)
        )
        return [_service(row) for row in result.scalars().all()]

    async def get_slot(self, slot_id: str, for_update: bool = False) -> Optional[Slot]:
        stmt = select(orm.Slot).where(orm.Slot.id == slot_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _slot(row) if row else None

    async def list_slots(self, provider_id: str, start: datetime, end: datetime) -> list[Slot]:
        result = await self.session.execute(
            select(orm.Slot)
            .where(
                and_(
                    orm.Slot.provider_id == provider_id,
                    orm.Slot.start_time < end,
                    orm.Slot.end_time > start,
                )
            )
            .order_by(orm.Slot.start_time, orm.Slot.service_id)
        )
        return [_slot(row) for row in result.scalars().all()]

    async def save_slot(self, slot: Slot) -> None:
        await self.session.merge(
            orm.Slot(
                id=slot.id,
                tenant_id=slot.tenant_id,
                provider_id=slot.provider_id,
                service_id=slot.service_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=slot.status,
                held_until=slot.held_until,
            )
        )
        await self.session.flush()

    async def insert_slot_if_absent(self, slot: Slot) -> bool:
        stmt = (
            pg_insert(orm.Slot)
            .values(
                id=slot.id,
                tenant_id=slot.tenant_id,
                provider_id=slot.provider_id,
                service_id=slot.service_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=slot.status,
                held_until=slot.held_until,
            )
            .on_conflict_do_nothing(index_elements=[orm.Slot.id])
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def list_expired_held_slots(self, now: datetime) -> list[Slot]:
        result = await self.session.execute(
            select(orm.Slot)
            .where(and_(orm.Slot.status == SlotStatus.HELD, orm.Slot.held_until <= now))
            .with_for_update(skip_locked=True)
        )
        return [_slot(row) for row in result.scalars().all()]

    async def delete_past_free_slots(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(orm.Slot).where(
                and_(orm.Slot.status == SlotStatus.FREE, orm.Slot.start_time < now)
            )
        )
        return result.rowcount or 0

    async def get_hold(self, slot_id: str, requester_id: str) -> Optional[Hold]:
        row = await self.session.get(orm.SlotHold, (slot_id, requester_id))
        return _hold(row) if row else None

    async def save_hold(self, hold: Hold) -> None:
        await self.session.merge(
            orm.SlotHold(
                slot_id=hold.slot_id,
                requester_id=hold.requester_id,
                tenant_id=hold.tenant_id,
                expires_at=hold.expires_at,
                created_at=hold.created_at,
            )
        )
        await self.session.flush()

    async def delete_holds(self, slot_id: str) -> int:
        result = await self.session.execute(
            delete(orm.SlotHold).where(orm.SlotHold.slot_id == slot_id)
        )
        return result.rowcount or 0

    async def get_appointment(
        self, appointment_id: str, for_update: bool = False
    ) -> Optional[Appointment]:
        stmt = select(orm.Appointment).where(orm.Appointment.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _appointment(row) if row else None

    async def save_appointment(self, appointment: Appointment) -> None:
        await self.session.merge(
            orm.Appointment(
                id=appointment.id,
                tenant_id=appointment.tenant_id,
                provider_id=appointment.provider_id,
                service_id=appointment.service_id,
                slot_id=appointment.slot_id,
                start_time=appointment.start_time,
                end_time=appointment.end_time,
                patient=appointment.patient.to_dict(),
                external_event_id=appointment.external_event_id,
                status=appointment.status,
                source=appointment.source,
                created_by=appointment.created_by,
                cancellation_reason=appointment.cancellation_reason,
                cancelled_at=appointment.cancelled_at,
            )
        )
        await self.session.flush()

    async def get_notification(
        self, notification_id: str, for_update: bool = False
    ) -> Optional[Notification]:
        stmt = select(orm.Notification).where(orm.Notification.id == notification_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _notification(row) if row else None

    async def save_notification(self, notification: Notification) -> None:
        await self.session.merge(
            orm.Notification(
                id=notification.id,
                appointment_id=notification.appointment_id,
                type=notification.type,
                channel=notification.channel,
                scheduled_at=notification.scheduled_at,
                sent_at=notification.sent_at,
                last_error=notification.last_error,
                attempts=notification.attempts,
            )
        )
        await self.session.flush()

    async def list_notifications(self, appointment_id: str) -> list[Notification]:
        result = await self.session.execute(
            select(orm.Notification)
            .where(orm.Notification.appointment_id == appointment_id)
            .order_by(orm.Notification.scheduled_at)
        )
        return [_notification(row) for row in result.scalars().all()]

    async def list_due_notifications(
        self, now: datetime, max_attempts: int, limit: int
    ) -> list[Notification]:
        result = await self.session.execute(
            select(orm.Notification)
            .where(
                and_(
                    orm.Notification.sent_at.is_(None),
                    orm.Notification.scheduled_at <= now,
                    orm.Notification.attempts < max_attempts,
                )
            )
            .order_by(orm.Notification.scheduled_at)
            .limit(limit)
        )
        return [_notification(row) for row in result.scalars().all()]


class SqlAlchemyBookingStore(BookingStore):
    """BookingStore backed by PostgreSQL through the shared async engine."""

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with get_async_session() as session:
            try:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
                yield SqlStoreTransaction(session)
                await session.commit()
            except DBAPIError as e:
                await session.rollback()
                if _is_serialization_failure(e):
                    logger.warning(f"Transaction aborted by concurrent update: {e.orig}")
                    raise ConcurrentModification(
                        "Concurrent update detected, transaction rolled back"
                    ) from e
                raise
            except BaseException:
                await session.rollback()
                raise
