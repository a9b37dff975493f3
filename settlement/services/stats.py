"""
Affiliate stats aggregator.

Totals are never incremented in place: every call recomputes them from the
commission ledger and referral table and writes them back in one UPDATE, so
running it twice in a row is a no-op.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from settlement.db.repository import SettlementRepository
from settlement.errors import NotFound
from settlement.models import CommissionStatus
from settlement.money import round_money

logger = logging.getLogger(__name__)

EARNED_STATUSES = (CommissionStatus.CONFIRMED.value, CommissionStatus.PAID.value)


@dataclass
class AffiliateStats:
    affiliate_id: str
    total_clicks: int
    total_sales: int
    total_earnings: Decimal
    paid_earnings: Decimal
    pending_earnings: Decimal
    conversion_rate: float

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("total_earnings", "paid_earnings", "pending_earnings"):
            data[key] = str(data[key])
        return data


class StatsAggregator:
    def __init__(self, repo: SettlementRepository):
        self.repo = repo

    async def update_affiliate_stats(self, affiliate_id: str) -> AffiliateStats:
        affiliate = await self.repo.get_affiliate(affiliate_id)
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")

        total_sales = await self.repo.count_converted_referrals(affiliate_id)
        total_earnings = round_money(
            await self.repo.sum_affiliate_commissions(affiliate_id, EARNED_STATUSES)
        )
        paid_earnings = round_money(
            await self.repo.sum_affiliate_commissions(affiliate_id, [CommissionStatus.PAID.value])
        )
        pending_earnings = total_earnings - paid_earnings

        clicks = affiliate.total_clicks or 0
        conversion_rate = _conversion_rate(total_sales, clicks)

        await self.repo.write_affiliate_stats(
            affiliate_id,
            total_sales=total_sales,
            total_earnings=total_earnings,
            paid_earnings=paid_earnings,
            pending_earnings=pending_earnings,
            conversion_rate=conversion_rate,
        )

        logger.debug(
            "Stats for affiliate %s: sales=%d earned=%s paid=%s pending=%s conv=%.2f%%",
            affiliate_id, total_sales, total_earnings, paid_earnings, pending_earnings, conversion_rate,
        )
        return AffiliateStats(
            affiliate_id=affiliate_id,
            total_clicks=clicks,
            total_sales=total_sales,
            total_earnings=total_earnings,
            paid_earnings=paid_earnings,
            pending_earnings=pending_earnings,
            conversion_rate=conversion_rate,
        )


def _conversion_rate(sales: int, clicks: int) -> float:
    if clicks <= 0:
        return 0.0
    rate = Decimal(sales) / Decimal(clicks) * 100
    return float(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
