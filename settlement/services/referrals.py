"""
Referral tracker: records clicks on affiliate links.

A visitor (customer id or IP) clicking the same affiliate's link repeatedly
inside the cooldown window is recorded once. The check-then-insert runs under
a row lock on the affiliate, and the insert carries a ``dedup_key`` with a
unique constraint so two workers racing past the window check still produce
a single row.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError

from config.settings import settings
from settlement.db.affiliate_tables import AffiliateReferralRow
from settlement.db.repository import SettlementRepository
from settlement.errors import NotFound
from settlement.models import AffiliateStatus, ReferralMetadata

logger = logging.getLogger(__name__)

# Attribution precedence: cookie first, then query params in this order
CODE_COOKIE = "affiliateCode"
CODE_QUERY_PARAMS = ("ref", "affiliate")


def extract_affiliate_code(
    cookies: Optional[Mapping[str, str]] = None,
    query_params: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Pick the affiliate code a storefront request is attributed to, if any."""
    if cookies and cookies.get(CODE_COOKIE):
        return cookies[CODE_COOKIE]
    for name in CODE_QUERY_PARAMS:
        if query_params and query_params.get(name):
            return query_params[name]
    return None


def dedup_key(affiliate_id: str, visitor: str, now: datetime, cooldown: timedelta) -> str:
    bucket = int(now.timestamp() // cooldown.total_seconds())
    raw = f"{affiliate_id}|{visitor}|{bucket}"
    return hashlib.sha256(raw.encode()).hexdigest()


class ReferralTracker:
    def __init__(self, repo: SettlementRepository, cooldown_minutes: int | None = None):
        self.repo = repo
        self.cooldown = timedelta(minutes=cooldown_minutes or settings.REFERRAL_COOLDOWN_MINUTES)

    async def track_referral(
        self,
        code: str,
        customer_id: Optional[str] = None,
        metadata: ReferralMetadata | dict | None = None,
    ) -> AffiliateReferralRow:
        if metadata is None:
            metadata = ReferralMetadata()
        elif not isinstance(metadata, ReferralMetadata):
            metadata = ReferralMetadata.model_validate(metadata)

        affiliate = await self.repo.get_affiliate_by_code(code, status=AffiliateStatus.ACTIVE.value)
        if not affiliate:
            logger.warning("Referral for unknown or inactive affiliate code %s", code)
            raise NotFound(f"No active affiliate with code {code}")

        # Serialize concurrent clicks for this affiliate until the caller commits
        await self.repo.get_affiliate(affiliate.id, lock=True)

        now = datetime.now(timezone.utc)
        existing = await self.repo.find_recent_referral(
            affiliate.id, customer_id, metadata.ip_address, since=now - self.cooldown,
        )
        if existing:
            logger.debug("Referral %s reused for affiliate %s (cooldown)", existing.id, affiliate.id)
            return existing

        visitor = customer_id or metadata.ip_address
        key = dedup_key(affiliate.id, visitor, now, self.cooldown) if visitor else None

        referral = AffiliateReferralRow(
            affiliate_id=affiliate.id,
            customer_id=customer_id,
            referral_code=code,
            referral_url=metadata.url,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            source=metadata.source,
            dedup_key=key,
            created_at=now,
        )
        try:
            async with self.repo.savepoint():
                await self.repo.add(referral)
        except IntegrityError:
            winner = await self.repo.get_referral_by_dedup_key(key) if key else None
            if winner is None:
                raise
            logger.info("Concurrent referral for affiliate %s collapsed into %s", affiliate.id, winner.id)
            return winner

        await self.repo.increment_clicks(affiliate.id)
        logger.info("Referral %s recorded for affiliate %s", referral.id, affiliate.id)
        return referral

    async def mark_converted(self, referral_id: str, order_id: str) -> AffiliateReferralRow:
        referral = await self.repo.get_referral(referral_id)
        if not referral:
            raise NotFound(f"Referral {referral_id} not found")
        if referral.converted:
            return referral

        referral.converted = True
        referral.converted_at = datetime.now(timezone.utc)
        referral.order_id = order_id
        await self.repo.session.flush()
        logger.info("Referral %s converted by order %s", referral_id, order_id)
        return referral
