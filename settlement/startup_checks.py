"""Startup validation: catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys
from decimal import Decimal, InvalidOperation

from config.settings import settings

logger = logging.getLogger(__name__)


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations.
    """
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    if settings.REFERRAL_COOLDOWN_MINUTES <= 0:
        logger.critical("REFERRAL_COOLDOWN_MINUTES must be positive")
        sys.exit(1)

    if not 0 <= settings.DEFAULT_COMMISSION_RATE <= 100:
        logger.critical("DEFAULT_COMMISSION_RATE must be between 0 and 100")
        sys.exit(1)

    try:
        if Decimal(settings.DEFAULT_MIN_PAYOUT) < 0:
            raise InvalidOperation
    except InvalidOperation:
        logger.critical("DEFAULT_MIN_PAYOUT must be a non-negative amount, got %r", settings.DEFAULT_MIN_PAYOUT)
        sys.exit(1)

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to *, restrict in production")

    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set, admin endpoints disabled")

    if not settings.OUTBOX_ENABLED:
        warnings.append("OUTBOX_ENABLED is off, queued commission calculations will not run")

    if settings.OUTBOX_MAX_ATTEMPTS < 1:
        warnings.append("OUTBOX_MAX_ATTEMPTS < 1, failed commission tasks dead-letter immediately")

    for w in warnings:
        logger.warning("%s", w)

    if not warnings:
        logger.info("All startup checks passed")

    return warnings
