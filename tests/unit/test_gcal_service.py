"""
Unit tests for the Google Calendar adapter (Google client mocked).
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from booking.errors import UpstreamError
from booking.models import BusyInterval, PatientInfo
from booking.services.gcal_service import GoogleCalendarAdapter, make_event_ref, split_event_ref

START = datetime(2024, 6, 10, 7, 0, tzinfo=UTC)
END = START + timedelta(minutes=30)


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"error")


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def adapter(service):
    return GoogleCalendarAdapter(
        calendar_ids={"dr-martin": "martin@group.calendar.google.com"},
        service=service,
        base_delay=0,
    )


class TestEventRef:
    def test_round_trip_keeps_calendar_id(self):
        ref = make_event_ref("martin@group.calendar.google.com", "abc123")
        assert split_event_ref(ref) == ("martin@group.calendar.google.com", "abc123")

    @pytest.mark.parametrize("ref", ["abc123", "::abc123", "cal::"])
    def test_malformed_ref(self, ref):
        with pytest.raises(ValueError):
            split_event_ref(ref)


class TestListBusyEvents:
    @pytest.mark.asyncio
    async def test_busy_intervals_parsed(self, adapter, service):
        service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {
                "martin@group.calendar.google.com": {
                    "busy": [{"start": "2024-06-10T07:10:00Z", "end": "2024-06-10T07:20:00Z"}]
                }
            }
        }

        busy = await adapter.list_busy_events("dr-martin", START, END)

        assert busy == [
            BusyInterval(START + timedelta(minutes=10), START + timedelta(minutes=20))
        ]
        body = service.freebusy.return_value.query.call_args.kwargs["body"]
        assert body["items"] == [{"id": "martin@group.calendar.google.com"}]
        assert body["timeMin"] == START.isoformat()

    @pytest.mark.asyncio
    async def test_unmapped_provider_uses_its_id(self, adapter, service):
        service.freebusy.return_value.query.return_value.execute.return_value = {"calendars": {}}

        assert await adapter.list_busy_events("dr-other", START, END) == []
        body = service.freebusy.return_value.query.call_args.kwargs["body"]
        assert body["items"] == [{"id": "dr-other"}]

    @pytest.mark.asyncio
    async def test_calendar_errors_raise(self, adapter, service):
        service.freebusy.return_value.query.return_value.execute.return_value = {
            "calendars": {"martin@group.calendar.google.com": {"errors": [{"reason": "notFound"}]}}
        }

        with pytest.raises(UpstreamError):
            await adapter.list_busy_events("dr-martin", START, END)

    @pytest.mark.asyncio
    async def test_retries_then_upstream_error(self, adapter, service):
        execute = service.freebusy.return_value.query.return_value.execute
        execute.side_effect = _http_error(500)

        with pytest.raises(UpstreamError):
            await adapter.list_busy_events("dr-martin", START, END)

        assert execute.call_count == 3

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, adapter, service):
        execute = service.freebusy.return_value.query.return_value.execute
        execute.side_effect = [_http_error(503), {"calendars": {}}]

        assert await adapter.list_busy_events("dr-martin", START, END) == []
        assert execute.call_count == 2


class TestCreateEvent:
    @pytest.mark.asyncio
    async def test_event_created(self, adapter, service):
        service.events.return_value.insert.return_value.execute.return_value = {"id": "evt42"}
        patient = PatientInfo("Marie", "Dupont", "marie@example.com", "+33612345678")

        ref = await adapter.create_event("dr-martin", START, END, patient, "consult-30", "online")

        assert ref == "martin@group.calendar.google.com::evt42"
        kwargs = service.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "martin@group.calendar.google.com"
        assert kwargs["body"]["summary"] == "Marie Dupont (online)"
        assert "marie@example.com - +33612345678" in kwargs["body"]["description"]
        assert kwargs["body"]["extendedProperties"]["private"]["source"] == "online"

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, adapter, service):
        execute = service.events.return_value.insert.return_value.execute
        execute.side_effect = _http_error(400)

        with pytest.raises(UpstreamError):
            await adapter.create_event("dr-martin", START, END, PatientInfo("A", "B", "a@b.fr"), "s", "online")

        assert execute.call_count == 1


class TestCancelEvent:
    @pytest.mark.asyncio
    async def test_delete_addresses_calendar_from_ref(self, adapter, service):
        await adapter.cancel_event("other@group.calendar.google.com::evt7")

        service.events.return_value.delete.assert_called_once_with(
            calendarId="other@group.calendar.google.com", eventId="evt7"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 410])
    async def test_already_deleted_is_success(self, adapter, service, status):
        execute = service.events.return_value.delete.return_value.execute
        execute.side_effect = _http_error(status)

        await adapter.cancel_event("cal::evt7")

        assert execute.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_retried_then_raised(self, adapter, service):
        execute = service.events.return_value.delete.return_value.execute
        execute.side_effect = _http_error(500)

        with pytest.raises(UpstreamError):
            await adapter.cancel_event("cal::evt7")

        assert execute.call_count == 3

    @pytest.mark.asyncio
    async def test_malformed_ref(self, adapter, service):
        with pytest.raises(UpstreamError):
            await adapter.cancel_event("not-a-ref")

        service.events.assert_not_called()
