"""
Notification scheduling and idempotent dispatch.

NotificationScheduler only creates Notification records with a computed
scheduled_at. NotificationSender delivers one record at a time; its
sent_at check under a row lock is the only guard against duplicate
delivery, so every dispatch path goes through send().

Default plan for a booking:
- confirm, email, immediately
- reminder, email, 24h before start
- reminder, sms, 2h before start
Reminders whose time has already passed are skipped. A cancellation gets a
single immediate cancel email, and pending confirm or reminder records of
the cancelled appointment are closed unsent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from booking.errors import NotFound
from booking.models import (
    Appointment,
    AppointmentStatus,
    Notification,
    NotificationChannel,
    NotificationType,
    new_id,
    utc_now,
)
from booking.services.notification_content import render_notification
from booking.store.base import BookingStore
from shared.config import get_settings

logger = logging.getLogger(__name__)

NO_RECIPIENT = "no recipient"
APPOINTMENT_CANCELLED = "appointment cancelled"


class NotificationScheduler:
    def __init__(
        self,
        reminder_schedule: Optional[list[tuple[int, str]]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.reminder_schedule = (
            reminder_schedule if reminder_schedule is not None else get_settings().reminder_schedule
        )
        self.clock = clock

    def plan_booking(self, appointment: Appointment, now: Optional[datetime] = None) -> list[Notification]:
        """Confirm notification plus the reminders still ahead of now."""
        now = now or self.clock()
        planned = [
            Notification(
                id=new_id(),
                appointment_id=appointment.id,
                type=NotificationType.CONFIRM,
                channel=NotificationChannel.EMAIL,
                scheduled_at=now,
                created_at=now,
            )
        ]

        for hours_before, channel in self.reminder_schedule:
            scheduled_at = appointment.start_time - timedelta(hours=hours_before)
            if scheduled_at <= now:
                continue
            planned.append(
                Notification(
                    id=new_id(),
                    appointment_id=appointment.id,
                    type=NotificationType.REMINDER,
                    channel=NotificationChannel(channel),
                    scheduled_at=scheduled_at,
                    created_at=now,
                )
            )
        return planned

    def plan_cancellation(self, appointment: Appointment, now: Optional[datetime] = None) -> list[Notification]:
        now = now or self.clock()
        return [
            Notification(
                id=new_id(),
                appointment_id=appointment.id,
                type=NotificationType.CANCEL,
                channel=NotificationChannel.EMAIL,
                scheduled_at=now,
                created_at=now,
            )
        ]

    async def schedule_for_booking(self, store: BookingStore, appointment: Appointment) -> list[Notification]:
        """Persist the booking plan in its own transaction."""
        planned = self.plan_booking(appointment)
        async with store.transaction() as tx:
            for notification in planned:
                await tx.save_notification(notification)

        logger.info(
            f"Scheduled {len(planned)} notifications for appointment {appointment.id}",
            extra={"appointment_id": appointment.id},
        )
        return planned


@dataclass
class SendResult:
    notification_id: str
    status: str  # "sent" | "already_sent" | "skipped" | "failed"
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == "sent"


class NotificationSender:
    """
    Delivers notifications through the email and SMS channels.

    Channels are duck-typed: email_client.send_email(to, subject, text, html)
    and sms_client.send_sms(to, text), both async.
    """

    def __init__(
        self,
        store: BookingStore,
        email_client: Any,
        sms_client: Any,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.email_client = email_client
        self.sms_client = sms_client
        self.clock = clock
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
        self.clinic_name = settings.CLINIC_NAME
        self.timezone = settings.TIMEZONE

    async def _dispatch(self, notification: Notification, appointment: Appointment, service_name: Optional[str], recipient: str) -> None:
        message = render_notification(
            notification.type,
            notification.channel,
            appointment,
            service_name,
            self.clinic_name,
            self.timezone,
        )
        if notification.channel == NotificationChannel.EMAIL:
            await self.email_client.send_email(
                recipient, message.subject or self.clinic_name, message.text, message.html
            )
        else:
            await self.sms_client.send_sms(recipient, message.text)

    async def send(self, notification_id: str) -> SendResult:
        """
        Deliver one notification at most once.

        An already sent notification returns immediately without dispatch.
        A failed dispatch records last_error and increments attempts, leaving
        sent_at unset so a later call retries.

        Raises:
            NotFound: notification does not exist
        """
        async with self.store.transaction() as tx:
            notification = await tx.get_notification(notification_id, for_update=True)
            if notification is None:
                raise NotFound(
                    f"Notification {notification_id} not found",
                    details={"notification_id": notification_id},
                )

            if notification.sent_at is not None:
                logger.debug(
                    f"Notification {notification_id} already sent, skipping",
                    extra={"notification_id": notification_id},
                )
                return SendResult(notification_id, "already_sent")

            now = self.clock()
            appointment = await tx.get_appointment(notification.appointment_id)
            if appointment is None:
                notification.attempts += 1
                notification.last_error = "appointment not found"
                await tx.save_notification(notification)
                logger.error(
                    f"Notification {notification_id} references missing appointment "
                    f"{notification.appointment_id}",
                    extra={"notification_id": notification_id},
                )
                return SendResult(notification_id, "failed", notification.last_error)

            if (
                appointment.status == AppointmentStatus.CANCELLED
                and notification.type != NotificationType.CANCEL
            ):
                notification.sent_at = now
                notification.last_error = APPOINTMENT_CANCELLED
                await tx.save_notification(notification)
                logger.info(
                    f"Notification {notification_id} dropped, appointment {appointment.id} is cancelled",
                    extra={"notification_id": notification_id, "appointment_id": appointment.id},
                )
                return SendResult(notification_id, "skipped", APPOINTMENT_CANCELLED)

            if notification.channel == NotificationChannel.EMAIL:
                recipient = appointment.patient.email
            else:
                recipient = appointment.patient.phone

            if not recipient:
                # Nothing to deliver on this channel; close the record
                notification.sent_at = now
                notification.last_error = NO_RECIPIENT
                await tx.save_notification(notification)
                logger.info(
                    f"Notification {notification_id} has no {notification.channel.value} recipient",
                    extra={"notification_id": notification_id, "appointment_id": appointment.id},
                )
                return SendResult(notification_id, "skipped", NO_RECIPIENT)

            service = await tx.get_service(appointment.service_id)
            service_name = service.name if service else None

            notification.attempts += 1
            try:
                await self._dispatch(notification, appointment, service_name, recipient)
            except Exception as e:
                notification.last_error = str(e) or type(e).__name__
                await tx.save_notification(notification)
                logger.warning(
                    f"Notification {notification_id} delivery failed "
                    f"(attempt {notification.attempts}): {e}",
                    extra={"notification_id": notification_id, "appointment_id": appointment.id},
                )
                return SendResult(notification_id, "failed", notification.last_error)

            notification.sent_at = now
            notification.last_error = None
            await tx.save_notification(notification)

        logger.info(
            f"Notification {notification_id} sent ({notification.type.value}/{notification.channel.value})",
            extra={"notification_id": notification_id, "appointment_id": appointment.id},
        )
        return SendResult(notification_id, "sent")

    async def dispatch_due(self, limit: int = 50) -> dict[str, int]:
        """
        Send every due notification (scheduled_at <= now, unsent, attempts left).

        Returns:
            Counts per outcome, e.g. {"sent": 3, "failed": 1, "skipped": 0, "already_sent": 0}
        """
        async with self.store.transaction() as tx:
            due = await tx.list_due_notifications(self.clock(), self.max_attempts, limit)

        counts = {"sent": 0, "failed": 0, "skipped": 0, "already_sent": 0}
        for notification in due:
            try:
                result = await self.send(notification.id)
            except Exception as e:
                logger.error(
                    f"Unexpected error sending notification {notification.id}: {e}",
                    extra={"notification_id": notification.id},
                    exc_info=True,
                )
                counts["failed"] += 1
                continue
            counts[result.status] += 1

        if due:
            logger.info(f"Dispatched due notifications: {counts}")
        return counts
