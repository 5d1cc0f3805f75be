"""
Booking request validation.

Validates and normalizes incoming booking payloads before any availability,
conflict or quota check runs. Failures raise BookingValidationError carrying
the offending fields.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from database.models import AppointmentStatus, ModalityType
from scheduling.errors import BookingValidationError

logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    """Result of a validation operation."""

    valid: bool
    error_code: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class BookingRequest(BaseModel):
    """Fields accepted when creating an appointment."""

    model_config = ConfigDict(extra="ignore")

    client_id: UUID
    schedule_id: UUID
    service_id: UUID | None = None
    professional_id: UUID | None = None
    start: datetime
    duration: int | None = Field(default=None, gt=0, le=24 * 60)
    modality: ModalityType = ModalityType.IN_PERSON
    price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=2000)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class AvailabilityCheckRequest(BaseModel):
    """Fields accepted by the conflict pre-check endpoint."""

    schedule_id: UUID
    start: datetime
    duration: int = Field(gt=0, le=24 * 60)
    professional_id: UUID | None = None
    exclude_appointment_id: UUID | None = None


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus


def _format_errors(exc: ValidationError) -> dict[str, str]:
    return {
        ".".join(str(part) for part in error["loc"]) or "body": error["msg"]
        for error in exc.errors()
    }


def ensure_aware(value: datetime, timezone: ZoneInfo) -> datetime:
    """Attach the application timezone to naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone)
    return value


def validate_booking_request(payload: dict[str, Any], timezone: ZoneInfo) -> BookingRequest:
    """
    Parse a raw booking payload.

    Args:
        payload: Request body
        timezone: Timezone applied to a naive start

    Returns:
        BookingRequest with a timezone-aware start

    Raises:
        BookingValidationError: Missing or malformed fields (details map field -> message)
    """
    try:
        request = BookingRequest.model_validate(payload)
    except ValidationError as e:
        fields = _format_errors(e)
        logger.info(f"Booking payload rejected: {sorted(fields)}")
        raise BookingValidationError(
            "Invalid booking request", details={"fields": fields}
        ) from e

    request.start = ensure_aware(request.start, timezone)
    return request


def validate_start_alignment(start: datetime) -> ValidationResult:
    """Starts must fall on a whole minute."""
    if start.second or start.microsecond:
        return ValidationResult(
            valid=False,
            error_code="INVALID_START",
            error_message="Start time must be on a whole minute",
            details={"start": start.isoformat()},
        )
    return ValidationResult(valid=True)
