"""
Request validators.

Validators:
- booking_validators: Booking, availability and status payloads
- notification_validators: Gateway instance and notification settings payloads
"""

from scheduling.validators.booking_validators import (
    AvailabilityCheckRequest,
    BookingRequest,
    StatusUpdateRequest,
    validate_booking_request,
)
from scheduling.validators.notification_validators import (
    CreateInstanceRequest,
    NotificationSettingsUpdate,
    SampleMessageRequest,
)

__all__ = [
    "AvailabilityCheckRequest",
    "BookingRequest",
    "StatusUpdateRequest",
    "validate_booking_request",
    "CreateInstanceRequest",
    "NotificationSettingsUpdate",
    "SampleMessageRequest",
]
