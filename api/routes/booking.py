"""Public booking routes: availability, holds, bookings, cancellations."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.models.booking import (
    BookRequest,
    BookResponse,
    CancelRequest,
    CancelResponse,
    HoldRequest,
    HoldResponse,
    ReleaseResponse,
    SendNotificationResponse,
    SlotListResponse,
    SlotOut,
)
from booking.engine import BookingEngine, get_engine
from booking.errors import BookingValidationError, UpstreamError
from booking.utils.ics import build_appointment_ics
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/booking", tags=["booking"])


def client_origin(request: Request) -> str:
    """Caller IP: first X-Forwarded-For hop, else the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def ics_url_for(appointment_id: str) -> str:
    base_url = get_settings().PUBLIC_BASE_URL.rstrip("/")
    return f"{base_url}/api/booking/appointments/{appointment_id}/ics"


@router.get("/slots", response_model=SlotListResponse)
async def list_slots(
    provider_id: str,
    service_id: str,
    day: Optional[date] = Query(None, alias="date"),
    from_day: Optional[date] = Query(None, alias="from"),
    to_day: Optional[date] = Query(None, alias="to"),
    only_available: bool = False,
    engine: BookingEngine = Depends(get_engine),
) -> SlotListResponse:
    """
    List candidate slots for one day (?date=) or a day range (?from=&to=).
    """
    start_day = day or from_day
    if start_day is None:
        raise BookingValidationError("Either date or from is required")
    end_day = day or to_day or start_day

    candidates = await engine.availability.list_slots(
        provider_id, service_id, start_day, end_day, only_available=only_available
    )
    return SlotListResponse(
        provider_id=provider_id,
        service_id=service_id,
        slots=[
            SlotOut(slot_id=c.slot_id, start=c.start, end=c.end, available=c.available)
            for c in candidates
        ],
    )


@router.post("/holds", response_model=HoldResponse, status_code=201)
async def create_hold(
    body: HoldRequest,
    engine: BookingEngine = Depends(get_engine),
) -> HoldResponse:
    result = await engine.holds.hold(
        body.slot_id,
        body.requester_id,
        provider_id=body.provider_id,
        service_id=body.service_id,
        start=body.start,
    )
    return HoldResponse(slot_id=result.slot_id, held_until=result.held_until)


@router.delete("/holds/{slot_id}", response_model=ReleaseResponse)
async def release_hold(
    slot_id: str,
    requester_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> ReleaseResponse:
    """Abandon the caller's own hold; other requesters' holds are left alone."""
    released = await engine.holds.abandon(slot_id, requester_id)
    return ReleaseResponse(slot_id=slot_id, released=released)


@router.post("/appointments", response_model=BookResponse, status_code=201)
async def book_appointment(
    body: BookRequest,
    request: Request,
    engine: BookingEngine = Depends(get_engine),
) -> BookResponse:
    origin = client_origin(request)
    result = await engine.booking.book(
        slot_id=body.slot_id,
        requester_id=body.requester_id,
        patient=body.patient.model_dump(),
        service_id=body.service_id,
        consent_given=body.consent_given,
        verification_token=body.verification_token,
        origin=origin,
    )
    return BookResponse(
        appointment_id=result.appointment_id,
        external_event_id=result.external_event_id,
        slot_id=result.slot_id,
        start_time=result.start_time,
        end_time=result.end_time,
        status=result.status,
        ics_url=ics_url_for(result.appointment_id),
    )


@router.post("/appointments/{appointment_id}/cancel", response_model=CancelResponse)
async def cancel_appointment(
    appointment_id: str,
    body: Optional[CancelRequest] = None,
    engine: BookingEngine = Depends(get_engine),
) -> CancelResponse:
    result = await engine.cancellations.cancel(appointment_id, body.reason if body else None)
    return CancelResponse(
        appointment_id=result.appointment_id,
        cancelled_at=result.cancelled_at,
        calendar_event_cancelled=result.calendar_event_cancelled,
        slot_released=result.slot_released,
    )


@router.get("/appointments/{appointment_id}/ics")
async def appointment_ics(
    appointment_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> Response:
    appointment = await engine.get_appointment(appointment_id)
    service_name = await engine.get_service_name(appointment.service_id)
    clinic_name = get_settings().CLINIC_NAME

    content = build_appointment_ics(
        appointment,
        title=f"Rendez-vous - {clinic_name}",
        description=f"Service : {service_name or 'Consultation'}",
    )
    return Response(
        content=content,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="rendez-vous-{appointment_id}.ics"'},
    )


@router.post("/notifications/{notification_id}/send", response_model=SendNotificationResponse)
async def send_notification(
    notification_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> SendNotificationResponse:
    """Trigger delivery of one notification; a sent notification is never re-sent."""
    result = await engine.sender.send(notification_id)
    if result.status == "failed":
        raise UpstreamError(
            "Notification delivery failed",
            details={"notification_id": notification_id, "error": result.error},
        )
    return SendNotificationResponse(
        notification_id=result.notification_id, status=result.status, error=result.error
    )
