"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than at runtime when
a patient tries to book.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging
from pathlib import Path

from shared.config import get_settings

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("sql", "memory")
RATE_LIMIT_BACKENDS = ("memory", "redis")


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(require_google_calendar: bool = True) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Args:
        require_google_calendar: If True, Google Calendar credentials are CRITICAL.
                                 If False, they're IMPORTANT (warn but continue).

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Google Calendar credentials file exists and readable
    gc_path = Path(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
    gc_error = None

    if settings.GOOGLE_SERVICE_ACCOUNT_JSON == "/path/to/service-account-key.json":
        gc_error = (
            "GOOGLE_SERVICE_ACCOUNT_JSON is default placeholder - "
            "set path to your service account key file"
        )
    elif not gc_path.is_file():
        gc_error = f"Google Calendar credentials file not found: {gc_path}"
    else:
        try:
            if len(gc_path.read_text()) < 100:
                gc_error = f"Google Calendar credentials file appears empty or invalid: {gc_path}"
        except PermissionError:
            gc_error = f"Google Calendar credentials file not readable (permission denied): {gc_path}"

    results["google_calendar_file"] = gc_error is None
    if gc_error:
        if require_google_calendar:
            critical_failures.append(gc_error)
        else:
            logger.warning(f"  [WARN] {gc_error} (not required for this service)")
    else:
        logger.info(f"  [OK] Google Calendar credentials: {gc_path}")

    # 2. Backends
    if settings.STORE_BACKEND not in STORE_BACKENDS:
        critical_failures.append(
            f"STORE_BACKEND must be one of {STORE_BACKENDS}, got {settings.STORE_BACKEND!r}"
        )
        results["store_backend"] = False
    else:
        results["store_backend"] = True

    if settings.RATE_LIMIT_BACKEND not in RATE_LIMIT_BACKENDS:
        critical_failures.append(
            f"RATE_LIMIT_BACKEND must be one of {RATE_LIMIT_BACKENDS}, "
            f"got {settings.RATE_LIMIT_BACKEND!r}"
        )
        results["rate_limit_backend"] = False
    else:
        results["rate_limit_backend"] = True

    # 3. Reminder schedule parses
    try:
        schedule = settings.reminder_schedule
        bad_channels = [c for _, c in schedule if c not in ("email", "sms")]
        if bad_channels:
            raise ValueError(f"unknown channels {bad_channels}")
        results["reminder_schedule"] = True
    except ValueError as e:
        critical_failures.append(f"Invalid REMINDER_OFFSETS_HOURS/REMINDER_CHANNELS: {e}")
        results["reminder_schedule"] = False

    # 4. reCAPTCHA credentials when verification is on
    if settings.RECAPTCHA_ENABLED:
        missing = [
            name
            for name in ("RECAPTCHA_PROJECT_ID", "RECAPTCHA_API_KEY", "RECAPTCHA_SITE_KEY")
            if not getattr(settings, name)
        ]
        if missing:
            critical_failures.append(
                f"RECAPTCHA_ENABLED is true but {', '.join(missing)} not set"
            )
            results["recaptcha_configured"] = False
        else:
            results["recaptcha_configured"] = True
            logger.info("  [OK] reCAPTCHA Enterprise configured")
    else:
        logger.warning("  [WARN] reCAPTCHA disabled - every booking token is accepted")
        results["recaptcha_configured"] = False

    # 5. Redis reachable when it holds rate limit counters
    if settings.RATE_LIMIT_BACKEND == "redis":
        try:
            from shared.redis_client import get_redis_client

            await get_redis_client().ping()
            results["redis_connection"] = True
            logger.info("  [OK] Redis reachable for rate limiting")
        except Exception as e:
            critical_failures.append(f"Redis connection failed: {e}")
            results["redis_connection"] = False

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 6. Database URL format validation
    if settings.STORE_BACKEND == "sql" and not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning(
            "DATABASE_URL should use asyncpg driver: postgresql+asyncpg://..."
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    # 7. Notification channels
    if not settings.RESEND_API_KEY:
        logger.warning("  [WARN] RESEND_API_KEY not set - email notifications will fail")
        results["email_configured"] = False
    else:
        results["email_configured"] = True

    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
        logger.warning("  [WARN] Twilio not configured - SMS notifications will fail")
        results["sms_configured"] = False
    else:
        results["sms_configured"] = True

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

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
