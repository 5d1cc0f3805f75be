"""
Startup configuration validation module.

Catches misconfigurations at startup (fail-fast) rather than when the first
booking or notification needs them.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    try:
        validate_startup_config(get_settings())
    except StartupValidationError as e:
        logger.critical(f"Startup blocked: {e}")
        raise
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import phonenumbers

from shared.config import Settings

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""


def validate_startup_config(settings: Settings) -> dict[str, bool]:
    """
    Validate critical configuration at startup.

    Tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Timezone must be a valid IANA name (slot grid and quota months use it)
    try:
        ZoneInfo(settings.TIMEZONE)
        results["timezone"] = True
        logger.info(f"  [OK] Timezone: {settings.TIMEZONE}")
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"TIMEZONE is not a valid IANA timezone: {settings.TIMEZONE!r}")
        results["timezone"] = False

    # 2. Phone region must be known to phonenumbers
    if settings.DEFAULT_PHONE_REGION not in phonenumbers.SUPPORTED_REGIONS:
        critical_failures.append(
            f"DEFAULT_PHONE_REGION is not a supported region: {settings.DEFAULT_PHONE_REGION!r}"
        )
        results["phone_region"] = False
    else:
        results["phone_region"] = True

    # 3. Database URL must use the asyncpg driver
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        critical_failures.append("DATABASE_URL must use asyncpg driver: postgresql+asyncpg://...")
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 4. Gateway endpoint (notifications are dropped without it)
    if not settings.GATEWAY_BASE_URL:
        logger.warning("  [WARN] GATEWAY_BASE_URL not set - notifications disabled")
        results["gateway_configured"] = False
    else:
        results["gateway_configured"] = True
        logger.info("  [OK] Messaging gateway configured")

    # 5. Webhook and cron secrets
    if not settings.GATEWAY_WEBHOOK_SECRET:
        logger.warning("  [WARN] GATEWAY_WEBHOOK_SECRET not set - gateway webhook is unauthenticated")
        results["webhook_secret"] = False
    else:
        results["webhook_secret"] = True

    if not settings.CRON_SECRET:
        logger.warning("  [WARN] CRON_SECRET not set - reminder endpoint disabled")
        results["cron_secret"] = False
    else:
        results["cron_secret"] = True

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    logger.info(f"Startup validation: {passed}/{len(results)} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
