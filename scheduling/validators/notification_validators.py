"""Validation of notification settings and gateway instance requests."""

from typing import Literal

from pydantic import BaseModel, Field

from scheduling.services.template_renderer import TEMPLATE_MAX_LENGTH


class CreateInstanceRequest(BaseModel):
    phone_number: str = Field(min_length=10, max_length=30)


class NotificationSettingsUpdate(BaseModel):
    """Toggles, delays and templates a tenant may edit."""

    enabled: bool
    notify_on_create: bool
    create_delay_minutes: int = Field(ge=0)
    create_message: str | None = Field(default=None, max_length=TEMPLATE_MAX_LENGTH)
    notify_on_cancel: bool
    cancel_delay_minutes: int = Field(ge=0)
    cancel_message: str | None = Field(default=None, max_length=TEMPLATE_MAX_LENGTH)
    notify_confirmation: bool
    confirmation_days: int = Field(ge=0)
    confirmation_message: str | None = Field(default=None, max_length=TEMPLATE_MAX_LENGTH)
    notify_reminder: bool
    reminder_hours: int = Field(ge=0)
    reminder_message: str | None = Field(default=None, max_length=TEMPLATE_MAX_LENGTH)


TemplateKind = Literal["create", "cancel", "confirmation", "reminder"]


class SampleMessageRequest(BaseModel):
    """Which template the test message renders."""

    type: TemplateKind = "create"
