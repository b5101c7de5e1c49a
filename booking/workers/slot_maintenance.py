"""
Slot maintenance worker - keeps the slots collection ready for booking.

Jobs:
1. sweep_expired_holds (every MAINTENANCE_INTERVAL_SECONDS): reset held slots
   whose hold expired back to free and drop their hold records
2. materialize_slots (hourly): upsert free slots for the next
   SLOT_HORIZON_DAYS days of every active provider/service, skipping
   calendar busy time; existing slots are never modified
3. purge_past_slots (hourly): delete free slots that already started

Architecture:
    - Single event loop with asyncio.sleep() between iterations
    - Graceful shutdown on SIGTERM/SIGINT
    - Health check file in /tmp/health
"""

import asyncio
import logging
import signal
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from booking.engine import get_engine
from booking.errors import BookingError
from booking.models import Slot, SlotStatus, utc_now
from booking.services.availability_service import build_candidates
from booking.services.calendar_adapter import CalendarAdapter
from booking.services.hold_service import free_slot
from booking.slots import days_between
from booking.store.base import BookingStore
from booking.workers.health import update_health_check
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

WORKER_NAME = "slot_maintenance"
MATERIALIZE_INTERVAL_SECONDS = 3600

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum: int, frame: Any) -> None:
    """Handle SIGTERM/SIGINT for graceful shutdown."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


class SlotMaintenance:
    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarAdapter,
        clock: Callable[[], datetime] = utc_now,
        horizon_days: Optional[int] = None,
    ):
        self.store = store
        self.calendar = calendar
        self.clock = clock
        self.horizon_days = horizon_days or get_settings().SLOT_HORIZON_DAYS

    async def materialize_slots(self, provider_id: Optional[str] = None) -> int:
        """
        Create missing free slots over the horizon.

        A provider whose calendar cannot be read is skipped for this run.

        Returns:
            Number of slots created
        """
        now = self.clock()

        async with self.store.transaction() as tx:
            if provider_id:
                provider = await tx.get_provider(provider_id)
                providers = [provider] if provider and provider.is_active else []
            else:
                providers = await tx.list_active_providers()
            catalog = [(p, await tx.list_active_services(p.id)) for p in providers]

        created = 0
        for provider, services in catalog:
            if not services:
                continue

            today = now.astimezone(ZoneInfo(provider.timezone)).date()
            days = days_between(today, today + timedelta(days=self.horizon_days))

            try:
                busy = await self.calendar.list_busy_events(
                    provider.id, now, now + timedelta(days=self.horizon_days + 1)
                )
            except BookingError as e:
                logger.error(
                    f"Skipping slot generation for provider {provider.id}: {e.message}",
                    extra={"provider_id": provider.id},
                )
                continue

            async with self.store.transaction() as tx:
                for service in services:
                    for candidate in build_candidates(provider, service, days, now, busy):
                        if not candidate.available:
                            continue
                        inserted = await tx.insert_slot_if_absent(
                            Slot(
                                id=candidate.slot_id,
                                tenant_id=provider.tenant_id,
                                provider_id=provider.id,
                                service_id=service.id,
                                start_time=candidate.start,
                                end_time=candidate.end,
                                status=SlotStatus.FREE,
                                updated_at=now,
                            )
                        )
                        created += int(inserted)

            logger.info(
                f"Slots materialized for provider {provider.id}",
                extra={"provider_id": provider.id},
            )

        logger.info(f"Slot materialization created {created} slots")
        return created

    async def sweep_expired_holds(self) -> int:
        """Reset expired holds to free. Returns the number of slots released."""
        now = self.clock()
        async with self.store.transaction() as tx:
            expired = await tx.list_expired_held_slots(now)
            for slot in expired:
                await free_slot(tx, slot.id, now)

        if expired:
            logger.info(f"Released {len(expired)} expired holds")
        return len(expired)

    async def purge_past_slots(self) -> int:
        """Delete free slots that already started. Returns the number deleted."""
        async with self.store.transaction() as tx:
            deleted = await tx.delete_past_free_slots(self.clock())

        if deleted:
            logger.info(f"Purged {deleted} past free slots")
        return deleted


async def run_maintenance_cycle(maintenance: SlotMaintenance, include_hourly: bool) -> tuple[int, int]:
    """
    One worker iteration.

    Returns:
        (items processed, errors)
    """
    processed = 0
    errors = 0
    jobs = [maintenance.sweep_expired_holds]
    if include_hourly:
        jobs += [maintenance.purge_past_slots, maintenance.materialize_slots]

    for job in jobs:
        try:
            processed += await job()
        except Exception as e:
            errors += 1
            logger.error(f"Error in {job.__name__}: {e}", exc_info=True)
    return processed, errors


async def maintenance_loop(maintenance: SlotMaintenance, interval_seconds: int) -> None:
    """Run maintenance cycles until shutdown is requested."""
    last_hourly_run: Optional[datetime] = None

    while not shutdown_requested:
        now = utc_now()
        include_hourly = (
            last_hourly_run is None
            or (now - last_hourly_run).total_seconds() >= MATERIALIZE_INTERVAL_SECONDS
        )

        processed, errors = await run_maintenance_cycle(maintenance, include_hourly)
        if include_hourly:
            last_hourly_run = now

        await update_health_check(
            worker_name=WORKER_NAME,
            job_name="maintenance_cycle",
            last_run=utc_now(),
            status="healthy" if errors == 0 else "unhealthy",
            processed=processed,
            errors=errors,
        )
        await asyncio.sleep(interval_seconds)


async def async_main() -> None:
    """Main async entry point - runs maintenance jobs on a single event loop."""
    settings = get_settings()
    engine = get_engine()
    maintenance = SlotMaintenance(engine.store, engine.calendar, engine.clock, settings.SLOT_HORIZON_DAYS)

    logger.info(
        f"Slot maintenance worker starting: interval={settings.MAINTENANCE_INTERVAL_SECONDS}s, "
        f"horizon={settings.SLOT_HORIZON_DAYS} days"
    )
    await update_health_check(
        worker_name=WORKER_NAME,
        job_name="startup",
        last_run=utc_now(),
        status="healthy",
        processed=0,
        errors=0,
    )

    await maintenance_loop(maintenance, settings.MAINTENANCE_INTERVAL_SECONDS)
    logger.info("Slot maintenance worker shutting down gracefully...")


def run_slot_maintenance_worker() -> None:
    """Synchronous entry point: logging, signal handlers, then the async main."""
    configure_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    asyncio.run(async_main())


if __name__ == "__main__":
    run_slot_maintenance_worker()
