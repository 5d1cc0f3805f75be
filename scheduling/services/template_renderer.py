"""
Message template rendering.

Templates use case-sensitive placeholders:
    {{client_name}}, {{date}}, {{time}}, {{service}}, {{professional}}, {{business_name}}

Rendering is total: unknown placeholders are left untouched, missing optional
data falls back to generic wording, and rendering already-rendered text is a
no-op.
"""

import re
from dataclasses import dataclass
from datetime import datetime

# Max characters accepted when a tenant edits a template
TEMPLATE_MAX_LENGTH = 120

SERVICE_FALLBACK = "Appointment"
PROFESSIONAL_FALLBACK = "Our team"
BUSINESS_FALLBACK = "Our business"

DEFAULT_TEMPLATES = {
    "create_message": (
        "Hi {{client_name}}! Your appointment is booked for {{date}} at {{time}}. "
        "Service: {{service}}. See you soon!"
    ),
    "cancel_message": (
        "Hi {{client_name}}, your appointment on {{date}} at {{time}} was cancelled. "
        "Contact us to reschedule."
    ),
    "confirmation_message": (
        "Hi {{client_name}}! Reminder: you have an appointment on {{date}} at {{time}}. "
        "Reply YES to confirm."
    ),
    "reminder_message": (
        "Hi {{client_name}}! Your appointment is in a few hours ({{time}}). See you there!"
    ),
}

_PLACEHOLDER = re.compile(r"\{\{(client_name|date|time|service|professional|business_name)\}\}")


@dataclass
class TemplateContext:
    """Values substituted into a template."""

    client_name: str
    start_time: datetime
    service_name: str | None = None
    professional_name: str | None = None
    business_name: str | None = None

    def values(self) -> dict[str, str]:
        return {
            "client_name": self.client_name or "",
            "date": self.start_time.strftime("%d/%m/%Y"),
            "time": self.start_time.strftime("%H:%M"),
            "service": self.service_name or SERVICE_FALLBACK,
            "professional": self.professional_name or PROFESSIONAL_FALLBACK,
            "business_name": self.business_name or BUSINESS_FALLBACK,
        }


def render_template(template: str, context: TemplateContext) -> str:
    """
    Substitute placeholders in a single pass.

    Substituted values are never re-scanned, so a client named "{{date}}"
    is rendered literally.

    Example:
        >>> render_template("Hi {{client_name}}", TemplateContext("Ana", start))
        'Hi Ana'
    """
    if not template:
        return ""
    values = context.values()
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], template)


def template_or_default(template: str | None, field_name: str) -> str:
    """Stored template, or the built-in default when empty."""
    return template or DEFAULT_TEMPLATES[field_name]


def sample_context(start_time: datetime) -> TemplateContext:
    """Dummy values used for test messages."""
    return TemplateContext(
        client_name="John Smith",
        start_time=start_time,
        service_name="Sample service",
        professional_name="Sample professional",
        business_name="Your business",
    )
