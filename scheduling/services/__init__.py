"""
Scheduling services module.

Pure scheduling rules plus their database loaders.

Services:
- slot_generator: Bookable slot grid for a schedule, service and day
- conflict_detector: Interval overlap checks scoped by schedule and professional
- plan_limits: Monthly appointment quota per plan tier
- template_renderer: Placeholder substitution for notification templates
- notification_dispatcher: Event -> rendered message -> messaging gateway
- alert_service: In-app alerts for the tenant dashboard
- gateway_instance_service: Messaging instance provisioning and settings
"""

from scheduling.services.conflict_detector import (
    find_conflict,
    find_overlaps,
    has_conflict,
    intervals_overlap,
)
from scheduling.services.plan_limits import (
    UNLIMITED,
    can_create,
    check_quota,
    monthly_limit,
    remaining,
    should_warn,
)
from scheduling.services.slot_generator import (
    generate_slots,
    get_available_slots,
    slot_is_available,
)
from scheduling.services.template_renderer import (
    DEFAULT_TEMPLATES,
    TemplateContext,
    render_template,
)

__all__ = [
    "find_conflict",
    "find_overlaps",
    "has_conflict",
    "intervals_overlap",
    "UNLIMITED",
    "can_create",
    "check_quota",
    "monthly_limit",
    "remaining",
    "should_warn",
    "generate_slots",
    "get_available_slots",
    "slot_is_available",
    "DEFAULT_TEMPLATES",
    "TemplateContext",
    "render_template",
]
