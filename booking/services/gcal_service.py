"""
Google Calendar adapter.

Implements the CalendarAdapter contract against the provider's Google
Calendar using a service account:

- list_busy_events -> freebusy().query
- create_event     -> events().insert
- cancel_event     -> events().delete

The Google client is blocking, so every call runs in a worker thread and
is retried with exponential backoff (never on 400/404). External event
references have the form "{calendar_id}::{event_id}" so that a
cancellation can address the right calendar without a lookup.

Usage:
    adapter = GoogleCalendarAdapter()
    busy = await adapter.list_busy_events("dr-martin", start, end)
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from booking.errors import UpstreamError
from booking.models import BusyInterval, PatientInfo
from booking.services.calendar_adapter import CalendarAdapter
from shared.config import get_settings

logger = logging.getLogger(__name__)

# Retry configuration for GCal API calls
GCAL_MAX_RETRIES = 3
GCAL_RETRY_BASE_DELAY = 1.0  # seconds

EVENT_REF_SEPARATOR = "::"

# Event color for online bookings (Google "Basil")
ONLINE_BOOKING_COLOR = "10"


async def _retry_with_backoff(
    operation: Callable[[], Awaitable[Any]],
    operation_name: str,
    max_retries: int = GCAL_MAX_RETRIES,
    base_delay: float = GCAL_RETRY_BASE_DELAY,
) -> Any:
    """
    Execute an operation with exponential backoff retry.

    Args:
        operation: Async callable to execute
        operation_name: Name for logging
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds (doubles each retry)

    Raises:
        Last exception if all retries fail; HttpError 400/404/410 immediately
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except HttpError as e:
            if e.resp.status in (400, 404, 410):
                raise
            last_exception = e
        except Exception as e:
            last_exception = e

        if attempt < max_retries - 1:
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"GCal {operation_name} failed (attempt {attempt + 1}/{max_retries}), "
                f"retrying in {delay}s: {last_exception}"
            )
            await asyncio.sleep(delay)

    logger.error(f"GCal {operation_name} failed after {max_retries} attempts")
    raise last_exception


def make_event_ref(calendar_id: str, event_id: str) -> str:
    return f"{calendar_id}{EVENT_REF_SEPARATOR}{event_id}"


def split_event_ref(external_event_id: str) -> tuple[str, str]:
    calendar_id, sep, event_id = external_event_id.rpartition(EVENT_REF_SEPARATOR)
    if not sep or not calendar_id or not event_id:
        raise ValueError(f"Malformed external event reference: {external_event_id!r}")
    return calendar_id, event_id


def _parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GoogleCalendarAdapter(CalendarAdapter):
    """CalendarAdapter backed by the Google Calendar v3 API."""

    def __init__(
        self,
        calendar_ids: Optional[dict[str, str]] = None,
        service: Any = None,
        base_delay: float = GCAL_RETRY_BASE_DELAY,
    ):
        settings = get_settings()
        self.calendar_ids = calendar_ids if calendar_ids is not None else settings.calendar_ids
        self._service = service
        self.base_delay = base_delay
        self.clinic_name = settings.CLINIC_NAME

    def _get_calendar_service(self) -> Any:
        """Create (once) a Google Calendar API service instance."""
        if self._service is None:
            settings = get_settings()
            credentials = service_account.Credentials.from_service_account_file(
                settings.GOOGLE_SERVICE_ACCOUNT_JSON,
                scopes=["https://www.googleapis.com/auth/calendar"],
            )
            self._service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        return self._service

    def calendar_for(self, provider_id: str) -> str:
        return self.calendar_ids.get(provider_id, provider_id)

    async def _call(self, request_factory: Callable[[Any], Any], operation_name: str) -> Any:
        service = self._get_calendar_service()

        async def run():
            return await asyncio.to_thread(lambda: request_factory(service).execute())

        return await _retry_with_backoff(run, operation_name, base_delay=self.base_delay)

    async def list_busy_events(
        self, provider_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        calendar_id = self.calendar_for(provider_id)
        body = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "items": [{"id": calendar_id}],
        }

        try:
            result = await self._call(
                lambda service: service.freebusy().query(body=body),
                f"freebusy {calendar_id}",
            )
        except Exception as e:
            logger.error(
                f"Google Calendar free/busy query failed for provider {provider_id}: {e}",
                extra={"provider_id": provider_id},
                exc_info=True,
            )
            raise UpstreamError(
                "Calendar availability could not be checked",
                details={"provider_id": provider_id, "error": str(e)},
            ) from e

        calendar = result.get("calendars", {}).get(calendar_id, {})
        if calendar.get("errors"):
            raise UpstreamError(
                "Calendar availability could not be checked",
                details={"provider_id": provider_id, "errors": calendar["errors"]},
            )

        return [
            BusyInterval(start=_parse_rfc3339(b["start"]), end=_parse_rfc3339(b["end"]))
            for b in calendar.get("busy", [])
        ]

    async def create_event(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        patient: PatientInfo,
        service_id: str,
        source: str,
    ) -> str:
        calendar_id = self.calendar_for(provider_id)

        contact = " - ".join(part for part in (patient.email, patient.phone) if part)
        event_body = {
            "summary": f"{patient.full_name} ({source})",
            "description": (
                f"Patient: {patient.full_name}\n"
                f"Contact: {contact}\n"
                f"Service: {service_id}\n"
                f"Source: {source}"
            ),
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
            "colorId": ONLINE_BOOKING_COLOR,
            "extendedProperties": {
                "private": {"source": source, "service_id": service_id},
            },
        }

        try:
            event = await self._call(
                lambda service: service.events().insert(calendarId=calendar_id, body=event_body),
                f"insert event {calendar_id}",
            )
        except Exception as e:
            logger.error(
                f"Google Calendar event creation failed for provider {provider_id}: {e}",
                extra={"provider_id": provider_id},
                exc_info=True,
            )
            raise UpstreamError(
                "Calendar event could not be created",
                details={"provider_id": provider_id, "error": str(e)},
            ) from e

        event_ref = make_event_ref(calendar_id, event["id"])
        logger.info(
            f"Created Google Calendar event {event_ref}",
            extra={"provider_id": provider_id},
        )
        return event_ref

    async def cancel_event(self, external_event_id: str) -> None:
        try:
            calendar_id, event_id = split_event_ref(external_event_id)
        except ValueError as e:
            raise UpstreamError(str(e)) from e

        try:
            await self._call(
                lambda service: service.events().delete(calendarId=calendar_id, eventId=event_id),
                f"delete event {event_id}",
            )
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.info(f"Google Calendar event {event_id} already deleted")
                return
            raise UpstreamError(
                "Calendar event could not be cancelled",
                details={"external_event_id": external_event_id, "error": str(e)},
            ) from e
        except Exception as e:
            raise UpstreamError(
                "Calendar event could not be cancelled",
                details={"external_event_id": external_event_id, "error": str(e)},
            ) from e

        logger.info(f"Cancelled Google Calendar event {external_event_id}")
