"""
Appointment cancellation service.

Cancellation flow:
- Reject unknown, already cancelled and completed appointments
- Delete the external calendar event (best-effort: failures are logged,
  the local cancellation still takes effect)
- Mark the appointment cancelled with timestamp and reason
- Schedule the cancel notification
- If the appointment has not started yet, free its slot (located by the
  deterministic slot key). A failure there only logs a warning; the expiry
  sweep or manual reconciliation heals an orphaned slot.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from booking.errors import AlreadyCancelled, AlreadyCompleted, NotFound
from booking.models import AppointmentStatus, utc_now
from booking.services.calendar_adapter import CalendarAdapter
from booking.services.hold_service import free_slot
from booking.services.notification_service import NotificationScheduler
from booking.slots import slot_key
from booking.store.base import BookingStore

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "Annulé par le patient"


@dataclass
class CancellationResult:
    """
    Result of a cancellation.

    Attributes:
        appointment_id: Cancelled appointment
        cancelled_at: When the cancellation was recorded
        calendar_event_cancelled: False if the external event could not be deleted
        slot_released: True if the slot went back to free
        notification_ids: Cancel notifications scheduled
    """
    appointment_id: str
    cancelled_at: datetime
    calendar_event_cancelled: bool = True
    slot_released: bool = False
    notification_ids: Optional[list[str]] = None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "appointment_id": self.appointment_id,
            "cancelled_at": self.cancelled_at.isoformat(),
            "calendar_event_cancelled": self.calendar_event_cancelled,
            "slot_released": self.slot_released,
        }


class CancellationService:
    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarAdapter,
        scheduler: NotificationScheduler,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.calendar = calendar
        self.scheduler = scheduler
        self.clock = clock

    async def cancel(self, appointment_id: str, reason: Optional[str] = None) -> CancellationResult:
        """
        Cancel an appointment.

        Raises:
            NotFound: appointment does not exist
            AlreadyCancelled: appointment was cancelled before
            AlreadyCompleted: appointment already took place
        """
        now = self.clock()
        calendar_ok = True

        async with self.store.transaction() as tx:
            appointment = await tx.get_appointment(appointment_id, for_update=True)
            if appointment is None:
                raise NotFound(
                    f"Appointment {appointment_id} not found",
                    details={"appointment_id": appointment_id},
                )
            if appointment.status == AppointmentStatus.CANCELLED:
                raise AlreadyCancelled(
                    "Appointment is already cancelled",
                    details={"appointment_id": appointment_id},
                )
            if appointment.status == AppointmentStatus.COMPLETED:
                raise AlreadyCompleted(
                    "A completed appointment cannot be cancelled",
                    details={"appointment_id": appointment_id},
                )

            if appointment.external_event_id:
                try:
                    await self.calendar.cancel_event(appointment.external_event_id)
                    logger.info(
                        f"Calendar event deleted for cancelled appointment {appointment_id}",
                        extra={"appointment_id": appointment_id},
                    )
                except Exception as e:
                    calendar_ok = False
                    logger.warning(
                        f"Calendar delete failed for appointment {appointment_id} "
                        f"(cancelling locally anyway): {e}",
                        extra={"appointment_id": appointment_id},
                    )

            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancelled_at = now
            appointment.cancellation_reason = reason or DEFAULT_CANCELLATION_REASON
            appointment.updated_at = now
            await tx.save_appointment(appointment)

            notifications = self.scheduler.plan_cancellation(appointment, now)
            for notification in notifications:
                await tx.save_notification(notification)

        logger.info(
            f"Appointment {appointment_id} cancelled",
            extra={"appointment_id": appointment_id, "provider_id": appointment.provider_id},
        )

        slot_released = False
        if appointment.start_time > now:
            slot_id = slot_key(appointment.provider_id, appointment.service_id, appointment.start_time)
            try:
                async with self.store.transaction() as tx:
                    slot_released = await free_slot(tx, slot_id, now)
            except Exception as e:
                logger.warning(
                    f"Could not release slot {slot_id} of cancelled appointment {appointment_id}: {e}",
                    extra={"appointment_id": appointment_id, "slot_id": slot_id},
                )

        return CancellationResult(
            appointment_id=appointment_id,
            cancelled_at=now,
            calendar_event_cancelled=calendar_ok,
            slot_released=slot_released,
            notification_ids=[n.id for n in notifications],
        )
