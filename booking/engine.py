"""
Wiring of the reservation engine.

build_engine() assembles store, calendar, abuse guard, channels and the
services on top of them from Settings; get_engine() caches one instance per
process for the API and the workers.
"""

import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Optional

from booking.errors import NotFound
from booking.guards import AbuseGuard, InMemoryCounterStore, RateLimiter, RecaptchaVerifier, RedisCounterStore
from booking.models import Appointment, utc_now
from booking.services.availability_service import AvailabilityService
from booking.services.calendar_adapter import CalendarAdapter
from booking.services.cancellation_service import CancellationService
from booking.services.hold_service import HoldService
from booking.services.notification_service import NotificationScheduler, NotificationSender
from booking.store.base import BookingStore
from booking.store.memory import InMemoryBookingStore
from booking.transactions.booking_transaction import BookingTransaction
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class BookingEngine:
    """All booking operations over one store and one calendar."""

    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarAdapter,
        guard: AbuseGuard,
        email_client: Any,
        sms_client: Any,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.calendar = calendar
        self.guard = guard
        self.clock = clock

        self.availability = AvailabilityService(store, calendar, clock)
        self.holds = HoldService(store, timedelta(minutes=settings.HOLD_TTL_MINUTES), clock)
        self.scheduler = NotificationScheduler(settings.reminder_schedule, clock)
        self.booking = BookingTransaction(
            store,
            calendar,
            guard,
            self.scheduler,
            clock,
            timedelta(seconds=settings.COLLISION_MARGIN_SECONDS),
        )
        self.cancellations = CancellationService(store, calendar, self.scheduler, clock)
        self.sender = NotificationSender(
            store, email_client, sms_client, clock, settings.NOTIFICATION_MAX_ATTEMPTS
        )

    async def get_appointment(self, appointment_id: str) -> Appointment:
        async with self.store.transaction() as tx:
            appointment = await tx.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound(
                f"Appointment {appointment_id} not found",
                details={"appointment_id": appointment_id},
            )
        return appointment

    async def get_service_name(self, service_id: str) -> Optional[str]:
        async with self.store.transaction() as tx:
            service = await tx.get_service(service_id)
        return service.name if service else None


def build_store(settings: Settings) -> BookingStore:
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory booking store")
        return InMemoryBookingStore()

    from booking.store.sql import SqlAlchemyBookingStore

    return SqlAlchemyBookingStore()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.RATE_LIMIT_BACKEND == "redis":
        from shared.redis_client import get_redis_client

        counter_store = RedisCounterStore(get_redis_client())
    else:
        counter_store = InMemoryCounterStore()

    return RateLimiter(
        counter_store,
        max_requests=settings.BOOKING_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.BOOKING_RATE_LIMIT_WINDOW_SECONDS,
    )


def build_engine(settings: Optional[Settings] = None) -> BookingEngine:
    """Assemble the production engine from settings."""
    from booking.services.gcal_service import GoogleCalendarAdapter
    from shared.email_client import ResendEmailClient
    from shared.sms_client import TwilioSmsClient

    settings = settings or get_settings()
    guard = AbuseGuard(build_rate_limiter(settings), RecaptchaVerifier())

    logger.info(
        f"Building booking engine: store={settings.STORE_BACKEND}, "
        f"rate_limit={settings.RATE_LIMIT_BACKEND}, recaptcha={settings.RECAPTCHA_ENABLED}"
    )
    return BookingEngine(
        store=build_store(settings),
        calendar=GoogleCalendarAdapter(),
        guard=guard,
        email_client=ResendEmailClient(),
        sms_client=TwilioSmsClient(),
        settings=settings,
    )


@lru_cache
def get_engine() -> BookingEngine:
    """Process-wide engine instance."""
    return build_engine()
