"""
Scheduling error taxonomy.

Every error that blocks a booking carries a stable error_code, a
human-readable message and a details dict so the API layer can render a
structured response without inspecting the exception type.

Gateway failures are intentionally absent here: they live in
shared.gateway_client and never reach a booking response.
"""

from typing import Any


class SchedulingError(Exception):
    """Base class for errors that reject a scheduling operation."""

    status_code: int = 400
    error_code: str = "SCHEDULING_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.error_code,
            "details": self.details,
        }


class ScheduleConfigError(SchedulingError, ValueError):
    """Schedule configuration violates its invariants."""

    error_code = "INVALID_SCHEDULE_CONFIG"


class BookingValidationError(SchedulingError):
    """Malformed or missing booking fields."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(SchedulingError):
    """Referenced schedule, service or appointment does not exist for the tenant."""

    status_code = 404
    error_code = "NOT_FOUND"


class SlotUnavailableError(SchedulingError):
    """Requested start time is not an available slot of the schedule."""

    status_code = 422
    error_code = "SLOT_NOT_AVAILABLE"


class BookingConflictError(SchedulingError):
    """Requested interval overlaps an existing booking."""

    status_code = 409
    error_code = "SLOT_CONFLICT"


class QuotaExceededError(SchedulingError):
    """Tenant reached the monthly appointment limit of its plan."""

    status_code = 403
    error_code = "APPOINTMENT_LIMIT_REACHED"


class PlanUpgradeRequiredError(SchedulingError):
    """Feature is not available on the tenant's plan."""

    status_code = 403
    error_code = "PLAN_UPGRADE_REQUIRED"


class InstanceConflictError(SchedulingError):
    """Gateway instance cannot be provisioned in its current state."""

    status_code = 409
    error_code = "INSTANCE_CONFLICT"


class GatewayUnavailableError(SchedulingError):
    """Messaging gateway rejected or failed a provisioning call."""

    status_code = 502
    error_code = "GATEWAY_ERROR"
