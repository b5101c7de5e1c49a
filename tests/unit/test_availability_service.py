"""
Unit tests for availability_service.py.
"""

from datetime import date, timedelta

import pytest

from booking.errors import BookingValidationError, NotFound, UpstreamError
from booking.models import BusyInterval, SlotStatus
from booking.slots import slot_key
from tests.conftest import MONDAY_9AM, OTHER_SERVICE_ID, PROVIDER_ID, SERVICE_ID

MONDAY = date(2024, 6, 10)
FRIDAY = date(2024, 6, 7)
SATURDAY = date(2024, 6, 8)


class TestListSlots:
    @pytest.mark.asyncio
    async def test_full_working_day(self, engine):
        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY)

        assert len(slots) == 14
        assert all(s.available for s in slots)
        assert slots[0].start == MONDAY_9AM
        assert slots[0].slot_id == slot_key(PROVIDER_ID, SERVICE_ID, MONDAY_9AM)
        assert [s.start for s in slots] == sorted(s.start for s in slots)
        # Lunch break: 12:00-14:00 Paris
        assert MONDAY_9AM + timedelta(hours=3) not in {s.start for s in slots}

    @pytest.mark.asyncio
    async def test_slot_length_follows_service(self, engine):
        slots = await engine.availability.list_slots(PROVIDER_ID, OTHER_SERVICE_ID, MONDAY)

        assert len(slots) == 7
        assert all(s.end - s.start == timedelta(minutes=60) for s in slots)

    @pytest.mark.asyncio
    async def test_past_starts_dropped(self, engine):
        # Clock is Friday 10:00 Paris; the 10:00 start itself is not offered
        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, FRIDAY)

        assert len(slots) == 11
        assert all(s.start > engine.clock() for s in slots)

    @pytest.mark.asyncio
    async def test_held_and_booked_slots_blocked(self, engine, make_slot, clock):
        await make_slot(status=SlotStatus.HELD, held_until=clock.now + timedelta(minutes=5))
        await make_slot(start=MONDAY_9AM + timedelta(minutes=30), status=SlotStatus.BOOKED)

        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY)

        assert [s.available for s in slots[:3]] == [False, False, True]

    @pytest.mark.asyncio
    async def test_claim_blocks_overlapping_slots_of_other_services(self, engine, make_slot, clock):
        await make_slot(
            start=MONDAY_9AM + timedelta(minutes=30),
            status=SlotStatus.HELD,
            held_until=clock.now + timedelta(minutes=5),
        )

        slots = await engine.availability.list_slots(PROVIDER_ID, OTHER_SERVICE_ID, MONDAY)

        assert [s.available for s in slots[:2]] == [False, True]

    @pytest.mark.asyncio
    async def test_expired_hold_does_not_block(self, engine, make_slot, clock):
        await make_slot(status=SlotStatus.HELD, held_until=clock.now - timedelta(seconds=1))

        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY)

        assert slots[0].available

    @pytest.mark.asyncio
    async def test_calendar_busy_time_blocks(self, engine, calendar):
        calendar.busy = [BusyInterval(MONDAY_9AM + timedelta(minutes=45), MONDAY_9AM + timedelta(minutes=75))]

        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY)

        assert [s.available for s in slots[:4]] == [True, False, False, True]

    @pytest.mark.asyncio
    async def test_only_available(self, engine, make_slot):
        await make_slot(status=SlotStatus.BOOKED)

        slots = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY, only_available=True)

        assert len(slots) == 13
        assert slots[0].start == MONDAY_9AM + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_listing_is_repeatable(self, engine, store, make_slot):
        await make_slot(status=SlotStatus.BOOKED)

        first = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY, MONDAY + timedelta(days=1))
        second = await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY, MONDAY + timedelta(days=1))

        assert first == second
        assert len(first) == 28

    @pytest.mark.asyncio
    async def test_closed_day_skips_calendar(self, engine, calendar):
        assert await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, SATURDAY) == []
        assert calendar.busy_queries == []

    @pytest.mark.asyncio
    async def test_calendar_failure_propagates(self, engine, calendar):
        calendar.fail_busy = True

        with pytest.raises(UpstreamError):
            await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY)


class TestListSlotsRejected:
    @pytest.mark.asyncio
    async def test_inverted_range(self, engine):
        with pytest.raises(BookingValidationError):
            await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY, FRIDAY)

    @pytest.mark.asyncio
    async def test_range_too_wide(self, engine):
        with pytest.raises(BookingValidationError):
            await engine.availability.list_slots(PROVIDER_ID, SERVICE_ID, MONDAY, MONDAY + timedelta(days=62))

    @pytest.mark.asyncio
    async def test_unknown_provider(self, engine):
        with pytest.raises(NotFound):
            await engine.availability.list_slots("dr-nobody", SERVICE_ID, MONDAY)

    @pytest.mark.asyncio
    async def test_unknown_service(self, engine):
        with pytest.raises(NotFound):
            await engine.availability.list_slots(PROVIDER_ID, "massage", MONDAY)
