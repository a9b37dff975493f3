"""
Affiliate dashboard reads: attributed orders with the affiliate's cut, the
customers behind those orders, and the referral click history.

Nothing here writes; callers can run it on a read replica session.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from settlement.db.affiliate_tables import AffiliateReferralRow
from settlement.db.commission_tables import CommissionRow
from settlement.db.repository import SettlementRepository
from settlement.db.tables import OrderRow
from settlement.errors import NotFound
from settlement.money import round_money


@dataclass
class AffiliateOrder:
    order: OrderRow
    commissions: list[CommissionRow]


@dataclass
class AffiliateCustomer:
    customer_id: str
    total_orders: int
    total_spent: Decimal

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "total_orders": self.total_orders,
            "total_spent": str(self.total_spent),
        }


class AffiliateActivity:
    def __init__(self, repo: SettlementRepository):
        self.repo = repo

    async def _require_affiliate(self, affiliate_id: str) -> None:
        if not await self.repo.get_affiliate(affiliate_id):
            raise NotFound(f"Affiliate {affiliate_id} not found")

    async def get_affiliate_orders(
        self,
        affiliate_id: str,
        status: str | None = None,
        source: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AffiliateOrder], int]:
        """A page of the affiliate's orders, newest first, each with its AFFILIATE rows; plus the total."""
        await self._require_affiliate(affiliate_id)
        orders = await self.repo.list_affiliate_orders(
            affiliate_id, status=status, source=source, limit=limit, offset=offset,
        )
        total = await self.repo.count_affiliate_orders(affiliate_id, status=status, source=source)

        by_order: dict[str, list[CommissionRow]] = {o.id: [] for o in orders}
        if orders:
            for row in await self.repo.affiliate_commissions_for_orders(affiliate_id, by_order):
                by_order[row.order_id].append(row)
        return [AffiliateOrder(order=o, commissions=by_order[o.id]) for o in orders], total

    async def get_affiliate_customers(self, affiliate_id: str) -> list[AffiliateCustomer]:
        """Customers who ordered through the affiliate, biggest spenders first."""
        await self._require_affiliate(affiliate_id)
        return [
            AffiliateCustomer(customer_id=customer_id, total_orders=count, total_spent=round_money(spent))
            for customer_id, count, spent in await self.repo.affiliate_customer_totals(affiliate_id)
        ]

    async def list_referrals(
        self,
        affiliate_id: str,
        converted: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AffiliateReferralRow]:
        await self._require_affiliate(affiliate_id)
        return await self.repo.list_referrals(affiliate_id, converted=converted, limit=limit, offset=offset)
