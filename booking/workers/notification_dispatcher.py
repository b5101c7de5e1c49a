"""
Notification dispatcher worker - delivers due notifications.

Every NOTIFICATION_POLL_SECONDS the worker sends each unsent notification
whose scheduled_at has passed and that has attempts left. Delivery goes
through NotificationSender.send(), so a notification is never delivered
twice even if two dispatchers overlap.
"""

import asyncio
import logging
import signal
from typing import Any

from booking.engine import get_engine
from booking.models import utc_now
from booking.services.notification_service import NotificationSender
from booking.workers.health import update_health_check
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

WORKER_NAME = "notification_dispatcher"
BATCH_SIZE = 50

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum: int, frame: Any) -> None:
    """Handle SIGTERM/SIGINT for graceful shutdown."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


async def dispatch_loop(sender: NotificationSender, poll_seconds: int) -> None:
    while not shutdown_requested:
        try:
            counts = await sender.dispatch_due(limit=BATCH_SIZE)
            status = "healthy"
        except Exception as e:
            logger.error(f"Error dispatching notifications: {e}", exc_info=True)
            counts = {"sent": 0, "failed": 0}
            status = "unhealthy"

        await update_health_check(
            worker_name=WORKER_NAME,
            job_name="dispatch_due",
            last_run=utc_now(),
            status=status,
            processed=counts.get("sent", 0),
            errors=counts.get("failed", 0),
        )
        await asyncio.sleep(poll_seconds)


async def async_main() -> None:
    settings = get_settings()
    engine = get_engine()

    logger.info(
        f"Notification dispatcher starting: poll={settings.NOTIFICATION_POLL_SECONDS}s, "
        f"max_attempts={settings.NOTIFICATION_MAX_ATTEMPTS}"
    )
    await dispatch_loop(engine.sender, settings.NOTIFICATION_POLL_SECONDS)
    logger.info("Notification dispatcher shutting down gracefully...")


def run_notification_dispatcher() -> None:
    """Synchronous entry point: logging, signal handlers, then the async main."""
    configure_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    asyncio.run(async_main())


if __name__ == "__main__":
    run_notification_dispatcher()
