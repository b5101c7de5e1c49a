"""Pydantic models for the public booking API."""

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict


class PatientIn(BaseModel):
    """Patient contact data as submitted; checked by the booking validators."""
    model_config = ConfigDict(extra="ignore")

    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None


class SlotOut(BaseModel):
    slot_id: str
    start: datetime
    end: datetime
    available: bool


class SlotListResponse(BaseModel):
    provider_id: str
    service_id: str
    slots: list[SlotOut]


class HoldRequest(BaseModel):
    slot_id: str
    requester_id: str
    # Listing coordinates; let a slot not yet materialized be created
    provider_id: str | None = None
    service_id: str | None = None
    start: AwareDatetime | None = None


class HoldResponse(BaseModel):
    slot_id: str
    held_until: datetime


class ReleaseResponse(BaseModel):
    slot_id: str
    released: bool


class BookRequest(BaseModel):
    slot_id: str
    requester_id: str
    patient: PatientIn
    service_id: str
    consent_given: bool = False
    verification_token: str = ""


class BookResponse(BaseModel):
    success: bool = True
    appointment_id: str
    external_event_id: str
    slot_id: str
    start_time: datetime
    end_time: datetime
    status: str
    ics_url: str


class CancelRequest(BaseModel):
    reason: str | None = None


class CancelResponse(BaseModel):
    success: bool = True
    appointment_id: str
    cancelled_at: datetime
    calendar_event_cancelled: bool
    slot_released: bool


class SendNotificationResponse(BaseModel):
    notification_id: str
    status: str  # "sent" | "already_sent" | "skipped" | "failed"
    error: str | None = None
