"""
Booking Transaction Handler.

BookingTransaction.book() is the single entry point for turning a held slot
into a confirmed appointment:

1. Validate input (names, contact formats, explicit consent)
2. Enforce the per-origin rate limit
3. Verify the human-verification token
4. Atomic core (one store transaction):
   - re-read the slot; it must be held by this requester with a live hold
   - re-query the provider's calendar around the slot (safety margin)
   - create the external calendar event
   - mark the slot booked and write the Appointment
5. Schedule confirm/reminder notifications (best-effort, after commit)

Steps 1-3 reject the request before any state change. If the local commit
fails after the external event was created, the event is cancelled again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from booking.errors import (
    BookingValidationError,
    Collision,
    ConcurrentModification,
    NotFound,
    SlotExpiredOrTaken,
)
from booking.guards import AbuseGuard
from booking.models import (
    Appointment,
    AppointmentStatus,
    PatientInfo,
    SlotStatus,
    new_id,
    utc_now,
)
from booking.services.calendar_adapter import CalendarAdapter
from booking.services.notification_service import NotificationScheduler
from booking.store.base import BookingStore
from booking.validators.booking_validators import parse_booking_request, validate_no_collision
from shared.config import get_settings

logger = logging.getLogger(__name__)

BOOKING_SOURCE = "online"


@dataclass
class BookingResult:
    appointment_id: str
    external_event_id: str
    slot_id: str
    start_time: datetime
    end_time: datetime
    status: str = AppointmentStatus.CONFIRMED.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "appointment_id": self.appointment_id,
            "external_event_id": self.external_event_id,
            "slot_id": self.slot_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status,
        }


class BookingTransaction:
    """
    Atomic booking of a held slot.

    The calendar adapter is consulted inside the store transaction, so the
    busy re-check, the event creation and the local writes either all take
    effect or none of them does.
    """

    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarAdapter,
        guard: AbuseGuard,
        scheduler: NotificationScheduler,
        clock: Callable[[], datetime] = utc_now,
        collision_margin: Optional[timedelta] = None,
    ):
        self.store = store
        self.calendar = calendar
        self.guard = guard
        self.scheduler = scheduler
        self.clock = clock
        self.collision_margin = collision_margin or timedelta(
            seconds=get_settings().COLLISION_MARGIN_SECONDS
        )

    async def _cancel_orphan_event(self, event_ref: str, trace_id: str) -> None:
        try:
            await self.calendar.cancel_event(event_ref)
            logger.info(f"[{trace_id}] Orphaned calendar event {event_ref} cancelled")
        except Exception as cleanup_error:
            logger.error(
                f"[{trace_id}] Failed to cancel orphaned calendar event {event_ref}: {cleanup_error}",
                exc_info=True,
            )

    async def book(
        self,
        slot_id: str,
        requester_id: str,
        patient: dict[str, Any] | PatientInfo,
        service_id: str,
        consent_given: bool,
        verification_token: str,
        origin: str = "unknown",
    ) -> BookingResult:
        """
        Book a held slot.

        Args:
            slot_id: Deterministic slot key
            requester_id: Temporary id that placed the hold
            patient: first_name, last_name, email, phone
            service_id: Service being booked (must be the slot's service)
            consent_given: Explicit consent to data processing
            verification_token: reCAPTCHA token from the client
            origin: Caller IP used for rate limiting

        Returns:
            BookingResult with the appointment and external event ids

        Raises:
            BookingValidationError, RateLimited, VerificationFailed: before any state change
            NotFound: slot does not exist
            SlotExpiredOrTaken: no live hold for this requester, or lost a race
            Collision: the provider's calendar has a conflicting event
            UpstreamError: calendar unavailable; nothing was changed
        """
        trace_id = f"{requester_id}_{slot_id}"
        logger.info(
            f"[{trace_id}] Starting booking transaction",
            extra={"trace_id": trace_id, "slot_id": slot_id, "origin": origin},
        )

        if isinstance(patient, PatientInfo):
            patient = patient.to_dict()

        # Step 1-3: reject before touching any state
        request = parse_booking_request(
            slot_id=slot_id,
            requester_id=requester_id,
            patient=patient,
            service_id=service_id,
            consent_given=consent_given,
            verification_token=verification_token,
        )
        await self.guard.enforce_rate_limit(origin)
        await self.guard.verify_human(request.verification_token, origin)

        patient_info = request.patient.to_patient_info()
        now = self.clock()
        event_ref: Optional[str] = None

        # Step 4: atomic core
        try:
            async with self.store.transaction() as tx:
                slot = await tx.get_slot(slot_id, for_update=True)
                if slot is None:
                    raise NotFound(f"Slot {slot_id} not found", details={"slot_id": slot_id})

                if slot.service_id != request.service_id:
                    raise BookingValidationError(
                        "Service does not match the held slot",
                        details={"slot_id": slot_id, "service_id": request.service_id},
                    )

                hold = await tx.get_hold(slot_id, requester_id)
                if not slot.is_live_hold(now) or hold is None or hold.expires_at <= now:
                    logger.warning(
                        f"[{trace_id}] No live hold for requester",
                        extra={"trace_id": trace_id, "slot_id": slot_id, "status": slot.status.value},
                    )
                    raise SlotExpiredOrTaken(
                        "Your reservation has expired or the slot was taken, please choose another slot",
                        details={"slot_id": slot_id},
                    )

                busy = await self.calendar.list_busy_events(
                    slot.provider_id,
                    slot.start_time - self.collision_margin,
                    slot.end_time + self.collision_margin,
                )
                collision_check = validate_no_collision(slot.start_time, slot.end_time, busy)
                if not collision_check["valid"]:
                    logger.warning(
                        f"[{trace_id}] Calendar collision detected at commit",
                        extra={"trace_id": trace_id, "slot_id": slot_id, "provider_id": slot.provider_id},
                    )
                    raise Collision(
                        "The slot conflicts with the provider's calendar, please choose another slot",
                        details={"slot_id": slot_id, "conflicts": collision_check["conflicts"]},
                    )

                event_ref = await self.calendar.create_event(
                    slot.provider_id,
                    slot.start_time,
                    slot.end_time,
                    patient_info,
                    slot.service_id,
                    BOOKING_SOURCE,
                )
                logger.info(
                    f"[{trace_id}] Calendar event created: {event_ref}",
                    extra={"trace_id": trace_id, "slot_id": slot_id},
                )

                slot.status = SlotStatus.BOOKED
                slot.held_until = None
                slot.updated_at = now
                await tx.save_slot(slot)
                await tx.delete_holds(slot_id)

                appointment = Appointment(
                    id=new_id(),
                    tenant_id=slot.tenant_id,
                    provider_id=slot.provider_id,
                    service_id=slot.service_id,
                    slot_id=slot.id,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    patient=patient_info,
                    external_event_id=event_ref,
                    status=AppointmentStatus.CONFIRMED,
                    source=BOOKING_SOURCE,
                    created_by="patient",
                    created_at=now,
                    updated_at=now,
                )
                await tx.save_appointment(appointment)

        except Exception as e:
            if event_ref is not None:
                logger.error(
                    f"[{trace_id}] Commit failed after calendar event creation: {e}",
                    extra={"trace_id": trace_id, "slot_id": slot_id},
                )
                await self._cancel_orphan_event(event_ref, trace_id)
            if isinstance(e, ConcurrentModification):
                raise SlotExpiredOrTaken(
                    "The slot changed while booking, please choose another slot",
                    details={"slot_id": slot_id},
                ) from e
            raise

        logger.info(
            f"[{trace_id}] Appointment committed",
            extra={"trace_id": trace_id, "slot_id": slot_id, "appointment_id": appointment.id},
        )

        # Step 5: notifications never roll back the booking
        try:
            await self.scheduler.schedule_for_booking(self.store, appointment)
        except Exception as e:
            logger.warning(
                f"[{trace_id}] Failed to schedule notifications: {e}",
                extra={"trace_id": trace_id, "appointment_id": appointment.id},
                exc_info=True,
            )

        return BookingResult(
            appointment_id=appointment.id,
            external_event_id=event_ref,
            slot_id=slot_id,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
        )
