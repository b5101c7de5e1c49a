"""
Unit tests for the SQLAlchemy store: transaction handling and row mapping.

The async session is mocked; no database is needed.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import DBAPIError

from booking.errors import ConcurrentModification
from booking.models import AppointmentStatus, Slot, SlotStatus
from booking.store.sql import SqlAlchemyBookingStore, SqlStoreTransaction
from database import models as orm

START = datetime(2024, 6, 10, 7, 0, tzinfo=UTC)


class FakePgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE slots ...", {}, FakePgError(sqlstate))


@pytest.fixture
def session():
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.merge = AsyncMock()
    session.flush = AsyncMock()
    session.get = AsyncMock()
    return session


@pytest.fixture
def sql_store(session):
    @asynccontextmanager
    async def fake_session():
        yield session

    with patch("booking.store.sql.get_async_session", fake_session):
        yield SqlAlchemyBookingStore()


class TestTransaction:
    @pytest.mark.asyncio
    async def test_commit_on_success(self, sql_store, session):
        async with sql_store.transaction() as tx:
            assert isinstance(tx, SqlStoreTransaction)

        isolation = session.execute.await_args_list[0].args[0]
        assert "SERIALIZABLE" in str(isolation)
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    async def test_serialization_failure_becomes_concurrent_modification(self, sql_store, session, sqlstate):
        session.commit.side_effect = _dbapi_error(sqlstate)

        with pytest.raises(ConcurrentModification):
            async with sql_store.transaction():
                pass

        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(self, sql_store, session):
        with pytest.raises(DBAPIError):
            async with sql_store.transaction():
                raise _dbapi_error("23505")

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_application_error_rolls_back(self, sql_store, session):
        with pytest.raises(ValueError):
            async with sql_store.transaction():
                raise ValueError("boom")

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()


class TestRowMapping:
    @pytest.mark.asyncio
    async def test_get_slot(self, session):
        row = orm.Slot(
            id="abc",
            tenant_id="t1",
            provider_id="dr-martin",
            service_id="consult-30",
            start_time=START,
            end_time=START + timedelta(minutes=30),
            status=SlotStatus.HELD,
            held_until=START - timedelta(hours=1),
        )
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        session.execute.return_value = result

        slot = await SqlStoreTransaction(session).get_slot("abc", for_update=True)

        assert slot.id == "abc"
        assert slot.status == SlotStatus.HELD
        assert slot.held_until == START - timedelta(hours=1)
        assert "FOR UPDATE" in str(session.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_missing_appointment(self, session):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute.return_value = result

        assert await SqlStoreTransaction(session).get_appointment("nope") is None

    @pytest.mark.asyncio
    async def test_get_appointment_maps_patient(self, session):
        row = orm.Appointment(
            id="appt-1",
            tenant_id="t1",
            provider_id="dr-martin",
            service_id="consult-30",
            slot_id="abc",
            start_time=START,
            end_time=START + timedelta(minutes=30),
            patient={"first_name": "Marie", "last_name": "Dupont", "email": "marie@example.com", "phone": None},
            external_event_id="cal::evt1",
            status=AppointmentStatus.CONFIRMED,
            source="online",
            created_by="patient",
        )
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        session.execute.return_value = result

        appointment = await SqlStoreTransaction(session).get_appointment("appt-1")

        assert appointment.patient.full_name == "Marie Dupont"
        assert appointment.patient.phone is None
        assert appointment.status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_insert_slot_if_absent_reports_rowcount(self, session):
        result = MagicMock()
        result.rowcount = 0
        session.execute.return_value = result
        slot = Slot(
            id="abc",
            tenant_id="t1",
            provider_id="dr-martin",
            service_id="consult-30",
            start_time=START,
            end_time=START + timedelta(minutes=30),
        )

        assert await SqlStoreTransaction(session).insert_slot_if_absent(slot) is False

        result.rowcount = 1
        assert await SqlStoreTransaction(session).insert_slot_if_absent(slot) is True
