"""
Booking input validation and commit-time collision checks.

parse_booking_request() is the schema gate run before any rate limiting,
verification or state change; validate_no_collision() is the re-check
against the provider's calendar performed inside the booking transaction.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import phonenumbers
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from booking.errors import BookingValidationError
from booking.models import BusyInterval, PatientInfo
from shared.config import get_settings

logger = logging.getLogger(__name__)


class PatientPayload(BaseModel):
    """Patient contact data submitted with a booking."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator("email", "phone", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone_e164(cls, v: Optional[str]) -> Optional[str]:
        """Validate and normalize phone number to E.164 format."""
        if v is None:
            return v
        region = get_settings().DEFAULT_PHONE_REGION
        try:
            parsed = phonenumbers.parse(v, region)
        except phonenumbers.NumberParseException as e:
            raise ValueError(f"Cannot parse phone number {v}: {e}") from e
        if not phonenumbers.is_valid_number(parsed):
            raise ValueError(f"Invalid phone number: {v}")
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    @model_validator(mode="after")
    def require_contact(self) -> "PatientPayload":
        if not self.email and not self.phone:
            raise ValueError("An email address or a phone number is required")
        return self

    def to_patient_info(self) -> PatientInfo:
        return PatientInfo(
            first_name=self.first_name,
            last_name=self.last_name,
            email=str(self.email) if self.email else None,
            phone=self.phone,
        )


class BookingRequest(BaseModel):
    """Complete booking submission."""

    model_config = ConfigDict(str_strip_whitespace=True)

    slot_id: str = Field(min_length=1)
    requester_id: str = Field(min_length=1, max_length=128)
    patient: PatientPayload
    service_id: str = Field(min_length=1)
    verification_token: str = Field(min_length=1)
    consent_given: bool

    @field_validator("consent_given")
    @classmethod
    def consent_must_be_true(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("Explicit consent to data processing is required")
        return v


def parse_booking_request(**data: Any) -> BookingRequest:
    """
    Validate raw booking input.

    Raises:
        BookingValidationError: with pydantic's error list in details["errors"]
    """
    try:
        return BookingRequest.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        logger.info(f"Booking request rejected by validation: {errors}")
        raise BookingValidationError("Invalid booking request", details={"errors": errors}) from e


def validate_no_collision(
    start: datetime, end: datetime, busy_events: list[BusyInterval]
) -> dict[str, Any]:
    """
    Check a slot against busy intervals from the provider's calendar.

    Returns:
        {"valid": bool, "conflicts": list[dict]} where conflicts lists the
        overlapping intervals (ISO strings). Touching intervals do not conflict.
    """
    conflicts = [
        {"start": busy.start.isoformat(), "end": busy.end.isoformat()}
        for busy in busy_events
        if busy.overlaps(start, end)
    ]
    return {"valid": not conflicts, "conflicts": conflicts}
