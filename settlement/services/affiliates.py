"""
Affiliate registration and admin controls.

Registration always lands in PENDING; only an admin moves an affiliate to
ACTIVE (or SUSPENDED). Codes are 8 upper-case hex characters drawn from a
CSPRNG and retried a bounded number of times on collision.
"""
from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError

from config.settings import settings
from settlement.db.affiliate_tables import AffiliateRow
from settlement.db.repository import SettlementRepository
from settlement.errors import Conflict, GenerationFailure, NotFound, ValidationFailed
from settlement.models import AffiliateStatus, CommissionType, PaymentDetails
from settlement.money import to_decimal

logger = logging.getLogger(__name__)


def random_affiliate_code() -> str:
    return secrets.token_hex(4).upper()


class AffiliateRegistry:
    """Creates affiliates and applies admin status/rate changes."""

    def __init__(
        self,
        repo: SettlementRepository,
        code_factory: Callable[[], str] = random_affiliate_code,
        max_code_attempts: int | None = None,
    ):
        self.repo = repo
        self.code_factory = code_factory
        self.max_code_attempts = max_code_attempts or settings.AFFILIATE_CODE_MAX_ATTEMPTS

    async def generate_affiliate_code(self) -> str:
        """Return a code not yet used by any affiliate, or raise GenerationFailure."""
        for _ in range(self.max_code_attempts):
            code = self.code_factory()
            if not await self.repo.affiliate_code_exists(code):
                return code
        logger.error("Affiliate code generation exhausted %d attempts", self.max_code_attempts)
        raise GenerationFailure("Could not generate a unique affiliate code")

    async def register_affiliate(self, user_id: str, data: Optional[dict[str, Any]] = None) -> AffiliateRow:
        data = data or {}

        if await self.repo.get_affiliate_by_user(user_id):
            logger.warning("Duplicate affiliate registration for user %s", user_id)
            raise Conflict("User is already registered as an affiliate")

        commission_type = CommissionType(data.get("commission_type", CommissionType.PERCENTAGE))
        commission_rate = float(data.get("commission_rate", settings.DEFAULT_COMMISSION_RATE))
        _check_rate(commission_rate)

        min_payout = to_decimal(data.get("min_payout", settings.DEFAULT_MIN_PAYOUT))
        if min_payout < 0:
            raise ValidationFailed("min_payout cannot be negative")

        details = data.get("payment_details")
        if details is not None and not isinstance(details, PaymentDetails):
            details = PaymentDetails.model_validate(details)

        affiliate = AffiliateRow(
            user_id=user_id,
            company_id=data.get("company_id"),
            affiliate_code=await self.generate_affiliate_code(),
            commission_type=commission_type.value,
            commission_rate=commission_rate,
            payment_method=data.get("payment_method"),
            payment_details=details.model_dump(exclude_none=True) if details else None,
            min_payout=min_payout,
            status=AffiliateStatus.PENDING.value,
        )
        try:
            async with self.repo.savepoint():
                await self.repo.add(affiliate)
        except IntegrityError:
            # same user registering twice at once, or a code taken since we checked it
            logger.warning("Affiliate insert for user %s hit a uniqueness violation", user_id)
            raise Conflict("User is already registered as an affiliate or the code was taken; retry")

        logger.info("Registered affiliate %s (code=%s, user=%s)", affiliate.id, affiliate.affiliate_code, user_id)
        return affiliate

    async def get_affiliate(self, affiliate_id: str) -> AffiliateRow:
        affiliate = await self.repo.get_affiliate(affiliate_id)
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")
        return affiliate

    async def get_affiliate_by_user(self, user_id: str) -> AffiliateRow:
        affiliate = await self.repo.get_affiliate_by_user(user_id)
        if not affiliate:
            raise NotFound(f"No affiliate registered for user {user_id}")
        return affiliate

    async def list_affiliates(self, company_id: str) -> list[AffiliateRow]:
        return await self.repo.list_affiliates(company_id)

    async def update_affiliate_status(self, affiliate_id: str, status_or_active: str | bool) -> AffiliateRow:
        """Admin action. Accepts a status name, or a bool (True=ACTIVE, False=SUSPENDED)."""
        if isinstance(status_or_active, bool):
            status = AffiliateStatus.ACTIVE if status_or_active else AffiliateStatus.SUSPENDED
        else:
            try:
                status = AffiliateStatus(str(status_or_active).upper())
            except ValueError:
                raise ValidationFailed(f"Unknown affiliate status: {status_or_active}")

        affiliate = await self.get_affiliate(affiliate_id)
        previous = affiliate.status
        affiliate.status = status.value
        await self.repo.session.flush()

        logger.info("Affiliate %s status %s -> %s", affiliate_id, previous, status.value)
        return affiliate

    async def update_affiliate_profile(self, affiliate_id: str, data: dict[str, Any]) -> AffiliateRow:
        """Affiliate self-service: payout method, payout details and minimum payout only."""
        affiliate = await self.get_affiliate(affiliate_id)

        if "min_payout" in data and data["min_payout"] is not None:
            min_payout = to_decimal(data["min_payout"])
            if min_payout < 0:
                raise ValidationFailed("min_payout cannot be negative")
            affiliate.min_payout = min_payout
        if "payment_method" in data:
            affiliate.payment_method = data["payment_method"]
        if "payment_details" in data:
            details = data["payment_details"]
            if details is not None and not isinstance(details, PaymentDetails):
                details = PaymentDetails.model_validate(details)
            affiliate.payment_details = details.model_dump(exclude_none=True) if details else None

        await self.repo.session.flush()
        logger.info("Affiliate %s updated profile fields %s", affiliate_id, sorted(data))
        return affiliate

    async def update_affiliate_commission(self, affiliate_id: str, commission_rate: float) -> AffiliateRow:
        _check_rate(commission_rate)
        affiliate = await self.get_affiliate(affiliate_id)
        affiliate.commission_rate = float(commission_rate)
        await self.repo.session.flush()
        logger.info("Affiliate %s commission rate set to %s%%", affiliate_id, commission_rate)
        return affiliate


def _check_rate(rate: float) -> None:
    if rate < 0 or rate > 100:
        raise ValidationFailed("commission_rate must be between 0 and 100")
