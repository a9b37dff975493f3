"""
Commission calculator: splits an order's revenue three ways.

For every order line, using the price snapshots taken at sale time::

    merchant  = merchant_price * qty            (grouped per merchant)
    platform  = (base_price - merchant_price) * qty
    affiliate = (sell_price - base_price) * qty (only when the order has an affiliate)

Per-line terms are summed exactly and rounded once per aggregate. Shares
that come out at zero or below are not written. Rows start PENDING; the
affiliate's share only counts towards earnings once confirmed.

The order row is locked while its ledger is written, and each share is
unique per order, so the HTTP endpoint and the outbox racing on one order
still leave a single set of rows.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError

from settlement.db.commission_tables import CommissionRow, share_key
from settlement.db.repository import SettlementRepository
from settlement.db.tables import OrderRow
from settlement.errors import InvalidState, NotFound
from settlement.models import CommissionKind, CommissionStatus, CommissionType
from settlement.money import ZERO, round_money, to_decimal
from settlement.services.stats import StatsAggregator

logger = logging.getLogger(__name__)


@dataclass
class CommissionQuote:
    amount: Decimal
    type: CommissionType
    rate: Optional[float] = None


@dataclass
class ProfitSplit:
    """Unrounded per-order profit totals."""
    affiliate: Decimal = ZERO
    platform: Decimal = ZERO
    merchants: dict[str, Decimal] = field(default_factory=lambda: defaultdict(lambda: ZERO))


def split_order(order: OrderRow) -> ProfitSplit:
    split = ProfitSplit()
    for item in order.items:
        qty = item.quantity or 0
        sell = to_decimal(item.sell_price)
        base = to_decimal(item.base_price) if item.base_price is not None else sell
        merchant = to_decimal(item.merchant_price) if item.merchant_price is not None else ZERO

        if item.merchant_id:
            split.merchants[item.merchant_id] += merchant * qty
        split.platform += (base - merchant) * qty
        if order.affiliate_id:
            split.affiliate += (sell - base) * qty
    return split


class CommissionCalculator:
    def __init__(self, repo: SettlementRepository, stats: StatsAggregator | None = None):
        self.repo = repo
        self.stats = stats or StatsAggregator(repo)

    async def _get_order(self, order_id: str, lock: bool = False) -> OrderRow:
        order = await self.repo.get_order(order_id, lock=lock)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        return order

    async def calculate_commissions(self, order_id: str) -> list[CommissionRow]:
        """Write the order's AFFILIATE/MERCHANT/PLATFORM rows. Safe to call again."""
        order = await self._get_order(order_id, lock=True)

        existing = await self.repo.list_order_commissions(order_id)
        if existing:
            logger.debug("Order %s already has %d commissions", order_id, len(existing))
            return existing

        split = split_order(order)
        order_total = to_decimal(order.total)
        rows: list[CommissionRow] = []

        def emit(kind: CommissionKind, amount: Decimal, **refs) -> None:
            amount = round_money(amount)
            if amount <= 0:
                return
            rows.append(CommissionRow(
                order_id=order.id,
                company_id=order.company_id,
                type=kind.value,
                share_key=share_key(kind.value, refs.get("merchant_id")),
                amount=amount,
                order_total=order_total,
                status=CommissionStatus.PENDING.value,
                **refs,
            ))

        if order.affiliate_id:
            emit(CommissionKind.AFFILIATE, split.affiliate, affiliate_id=order.affiliate_id)
        for merchant_id in sorted(split.merchants):
            emit(CommissionKind.MERCHANT, split.merchants[merchant_id], merchant_id=merchant_id)
        emit(CommissionKind.PLATFORM, split.platform)

        try:
            async with self.repo.savepoint():
                for row in rows:
                    self.repo.session.add(row)
                await self.repo.session.flush()
        except IntegrityError:
            # another worker calculated this order between our read and our insert
            existing = await self.repo.list_order_commissions(order_id)
            if not existing:
                raise
            logger.info("Order %s commissions already written by a concurrent calculation", order_id)
            return existing

        logger.info(
            "Order %s commissions: %s",
            order_id, ", ".join(f"{r.type}={r.amount}" for r in rows) or "none",
        )
        return rows

    async def calculate_affiliate_commission(
        self,
        order_id: str,
        affiliate_id: str,
        commission_type: CommissionType | str | None = None,
    ) -> CommissionQuote:
        """Quote the affiliate's cut under an explicit mode. Nothing is persisted."""
        order = await self._get_order(order_id)
        if order.affiliate_id != affiliate_id:
            raise InvalidState(f"Order {order_id} is not attributed to affiliate {affiliate_id}")

        affiliate = await self.repo.get_affiliate(affiliate_id)
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")

        mode = CommissionType(commission_type or affiliate.commission_type)

        if mode == CommissionType.PERCENTAGE:
            rate = float(affiliate.commission_rate or 0)
            # subtotal excludes shipping
            amount = to_decimal(order.subtotal) * to_decimal(rate) / 100
            return CommissionQuote(amount=round_money(amount), type=mode, rate=rate)

        mappings = await self.repo.get_affiliate_products(
            affiliate_id, product_ids={item.product_id for item in order.items},
        )
        markups = {m.product_id: to_decimal(m.markup) for m in mappings}
        amount = sum(
            (markups.get(item.product_id, ZERO) * (item.quantity or 0) for item in order.items),
            ZERO,
        )
        return CommissionQuote(amount=round_money(amount), type=mode)

    async def confirm_commissions(self, order_id: str) -> int:
        """PENDING -> CONFIRMED for the order's rows, then refresh the affiliate's totals."""
        order = await self._get_order(order_id)
        count = await self.repo.transition_order_commissions(
            order_id, [CommissionStatus.PENDING.value], CommissionStatus.CONFIRMED.value,
        )
        logger.info("Confirmed %d commissions for order %s", count, order_id)
        if order.affiliate_id:
            await self.stats.update_affiliate_stats(order.affiliate_id)
        return count

    async def cancel_commissions(self, order_id: str) -> int:
        """Admin action. Rows already linked to a payout or paid are left alone."""
        order = await self._get_order(order_id)
        count = await self.repo.transition_order_commissions(
            order_id,
            [CommissionStatus.PENDING.value, CommissionStatus.CONFIRMED.value],
            CommissionStatus.CANCELLED.value,
            unlinked_only=True,
        )
        logger.info("Cancelled %d commissions for order %s", count, order_id)
        if order.affiliate_id:
            await self.stats.update_affiliate_stats(order.affiliate_id)
        return count

    async def get_commission_stats(
        self,
        company_id: str,
        affiliate_id: str | None = None,
        status: str | None = None,
        type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        filters = dict(
            affiliate_id=affiliate_id, status=status, type=type,
            start_date=start_date, end_date=end_date,
        )
        commissions = await self.repo.search_commissions(company_id, limit=limit, offset=offset, **filters)
        groups = await self.repo.commission_breakdown(company_id, **filters)

        by_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_status: dict[str, Decimal] = defaultdict(lambda: ZERO)
        total_count = 0
        total_amount = ZERO
        for kind, state, count, amount in groups:
            by_type[kind] += amount
            by_status[state] += amount
            total_count += count
            total_amount += amount

        return {
            "commissions": commissions,
            "total": total_count,
            "stats": {
                "total_amount": round_money(total_amount),
                "count": total_count,
                "by_type": {k: round_money(v) for k, v in by_type.items()},
                "by_status": {k: round_money(v) for k, v in by_status.items()},
            },
        }
