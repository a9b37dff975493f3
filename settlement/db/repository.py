"""Settlement repository: every query the affiliate services run, behind one session.

Services receive an instance at construction time instead of reaching for a
global session, so tests can hand in a session bound to a throwaway database.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.affiliate_tables import AffiliateProductRow, AffiliateReferralRow, AffiliateRow
from settlement.db.commission_tables import AffiliatePayoutRow, CommissionRow, CommissionTaskRow
from settlement.db.tables import OrderRow, ProductRow
from settlement.models import CommissionStatus, TaskStatus
from settlement.money import to_decimal


class SettlementRepository:
    """Async affiliate/commission persistence backed by SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, row):
        self.session.add(row)
        await self.session.flush()
        return row

    def savepoint(self):
        """Nested transaction; roll back a failed insert without losing the outer one."""
        return self.session.begin_nested()

    # ── Affiliates ──────────────────────────────────────────────────────────

    async def get_affiliate(self, affiliate_id: str, lock: bool = False) -> Optional[AffiliateRow]:
        stmt = select(AffiliateRow).where(AffiliateRow.id == affiliate_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_affiliate_by_user(self, user_id: str) -> Optional[AffiliateRow]:
        result = await self.session.execute(
            select(AffiliateRow).where(AffiliateRow.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_affiliate_by_code(self, code: str, status: str | None = None) -> Optional[AffiliateRow]:
        stmt = select(AffiliateRow).where(AffiliateRow.affiliate_code == code)
        if status:
            stmt = stmt.where(AffiliateRow.status == status)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def affiliate_code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(func.count(AffiliateRow.id)).where(AffiliateRow.affiliate_code == code)
        )
        return result.scalar_one() > 0

    async def list_affiliates(self, company_id: str) -> list[AffiliateRow]:
        result = await self.session.execute(
            select(AffiliateRow)
            .where(AffiliateRow.company_id == company_id)
            .order_by(AffiliateRow.created_at.desc())
        )
        return list(result.scalars().all())

    async def increment_clicks(self, affiliate_id: str) -> None:
        await self.session.execute(
            update(AffiliateRow)
            .where(AffiliateRow.id == affiliate_id)
            .values(total_clicks=AffiliateRow.total_clicks + 1)
        )

    async def write_affiliate_stats(self, affiliate_id: str, **values) -> None:
        """Persist all derived totals in one UPDATE."""
        await self.session.execute(
            update(AffiliateRow).where(AffiliateRow.id == affiliate_id).values(**values)
        )

    # ── Referrals ───────────────────────────────────────────────────────────

    async def find_recent_referral(
        self,
        affiliate_id: str,
        customer_id: str | None,
        ip_address: str | None,
        since: datetime,
    ) -> Optional[AffiliateReferralRow]:
        """Most recent referral for this visitor (customer OR IP) since ``since``."""
        visitor = []
        if customer_id:
            visitor.append(AffiliateReferralRow.customer_id == customer_id)
        if ip_address:
            visitor.append(AffiliateReferralRow.ip_address == ip_address)
        if not visitor:
            return None

        result = await self.session.execute(
            select(AffiliateReferralRow)
            .where(
                AffiliateReferralRow.affiliate_id == affiliate_id,
                or_(*visitor),
                AffiliateReferralRow.created_at >= since,
            )
            .order_by(AffiliateReferralRow.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_referral(self, referral_id: str) -> Optional[AffiliateReferralRow]:
        return await self.session.get(AffiliateReferralRow, referral_id)

    async def get_referral_by_dedup_key(self, dedup_key: str) -> Optional[AffiliateReferralRow]:
        result = await self.session.execute(
            select(AffiliateReferralRow).where(AffiliateReferralRow.dedup_key == dedup_key)
        )
        return result.scalar_one_or_none()

    async def list_referrals(
        self, affiliate_id: str, converted: bool | None = None, limit: int = 50, offset: int = 0,
    ) -> list[AffiliateReferralRow]:
        stmt = select(AffiliateReferralRow).where(AffiliateReferralRow.affiliate_id == affiliate_id)
        if converted is not None:
            stmt = stmt.where(AffiliateReferralRow.converted.is_(converted))
        result = await self.session.execute(
            stmt.order_by(AffiliateReferralRow.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def count_converted_referrals(self, affiliate_id: str) -> int:
        result = await self.session.execute(
            select(func.count(AffiliateReferralRow.id)).where(
                AffiliateReferralRow.affiliate_id == affiliate_id,
                AffiliateReferralRow.converted.is_(True),
            )
        )
        return result.scalar_one()

    # ── Catalog & orders ────────────────────────────────────────────────────

    async def get_product(self, product_id: str) -> Optional[ProductRow]:
        return await self.session.get(ProductRow, product_id)

    async def get_order(self, order_id: str, lock: bool = False) -> Optional[OrderRow]:
        # items are loaded eagerly via selectin
        stmt = select(OrderRow).where(OrderRow.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _affiliate_order_filters(self, affiliate_id: str, status: str | None, source: str | None) -> list:
        filters = [OrderRow.affiliate_id == affiliate_id]
        if status:
            filters.append(OrderRow.status == status)
        if source:
            filters.append(OrderRow.source == source)
        return filters

    async def list_affiliate_orders(
        self,
        affiliate_id: str,
        status: str | None = None,
        source: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OrderRow]:
        result = await self.session.execute(
            select(OrderRow)
            .where(*self._affiliate_order_filters(affiliate_id, status, source))
            .order_by(OrderRow.created_at.desc(), OrderRow.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_affiliate_orders(self, affiliate_id: str, status: str | None = None, source: str | None = None) -> int:
        result = await self.session.execute(
            select(func.count(OrderRow.id)).where(*self._affiliate_order_filters(affiliate_id, status, source))
        )
        return result.scalar_one()

    async def affiliate_customer_totals(self, affiliate_id: str) -> list[tuple[str, int, Decimal]]:
        """(customer_id, order count, summed order total) for the affiliate's known customers."""
        spent = func.coalesce(func.sum(OrderRow.total), 0)
        result = await self.session.execute(
            select(OrderRow.customer_id, func.count(OrderRow.id), spent)
            .where(OrderRow.affiliate_id == affiliate_id, OrderRow.customer_id.is_not(None))
            .group_by(OrderRow.customer_id)
            .order_by(spent.desc(), OrderRow.customer_id)
        )
        return [(c, n, to_decimal(s)) for c, n, s in result.all()]

    async def get_affiliate_product(self, affiliate_id: str, product_id: str) -> Optional[AffiliateProductRow]:
        result = await self.session.execute(
            select(AffiliateProductRow).where(
                AffiliateProductRow.affiliate_id == affiliate_id,
                AffiliateProductRow.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_affiliate_product_by_id(self, mapping_id: str) -> Optional[AffiliateProductRow]:
        return await self.session.get(AffiliateProductRow, mapping_id)

    async def get_affiliate_products(
        self, affiliate_id: str, product_ids: Iterable[str] | None = None, active_only: bool = False,
    ) -> list[AffiliateProductRow]:
        stmt = select(AffiliateProductRow).where(AffiliateProductRow.affiliate_id == affiliate_id)
        if product_ids is not None:
            stmt = stmt.where(AffiliateProductRow.product_id.in_(list(product_ids)))
        if active_only:
            stmt = stmt.where(AffiliateProductRow.is_active.is_(True))
        result = await self.session.execute(stmt.order_by(AffiliateProductRow.created_at))
        return list(result.scalars().all())

    # ── Commissions ─────────────────────────────────────────────────────────

    async def list_order_commissions(self, order_id: str) -> list[CommissionRow]:
        result = await self.session.execute(
            select(CommissionRow)
            .where(CommissionRow.order_id == order_id)
            .order_by(CommissionRow.created_at, CommissionRow.type)
        )
        return list(result.scalars().all())

    async def affiliate_commissions_for_orders(self, affiliate_id: str, order_ids: Iterable[str]) -> list[CommissionRow]:
        result = await self.session.execute(
            select(CommissionRow)
            .where(
                CommissionRow.affiliate_id == affiliate_id,
                CommissionRow.type == "AFFILIATE",
                CommissionRow.order_id.in_(list(order_ids)),
            )
            .order_by(CommissionRow.created_at)
        )
        return list(result.scalars().all())

    async def sum_affiliate_commissions(self, affiliate_id: str, statuses: Iterable[str]) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(CommissionRow.amount), 0)).where(
                CommissionRow.affiliate_id == affiliate_id,
                CommissionRow.type == "AFFILIATE",
                CommissionRow.status.in_(list(statuses)),
            )
        )
        return to_decimal(result.scalar_one())

    async def unlinked_confirmed_commissions(self, affiliate_id: str) -> list[CommissionRow]:
        """Confirmed, not-yet-allocated affiliate commissions, oldest first, row-locked."""
        result = await self.session.execute(
            select(CommissionRow)
            .where(
                CommissionRow.affiliate_id == affiliate_id,
                CommissionRow.type == "AFFILIATE",
                CommissionRow.status == CommissionStatus.CONFIRMED.value,
                CommissionRow.payout_id.is_(None),
            )
            .order_by(CommissionRow.created_at.asc(), CommissionRow.id.asc())
            .with_for_update()
        )
        return list(result.scalars().all())

    async def link_commission(self, commission_id: str, payout_id: str) -> bool:
        """Set payout_id only if still unset. False means another payout already took it."""
        result = await self.session.execute(
            update(CommissionRow)
            .where(
                CommissionRow.id == commission_id,
                CommissionRow.payout_id.is_(None),
                CommissionRow.status == CommissionStatus.CONFIRMED.value,
            )
            .values(payout_id=payout_id)
        )
        return result.rowcount == 1

    async def mark_payout_commissions_paid(self, payout_id: str, paid_at: datetime) -> int:
        result = await self.session.execute(
            update(CommissionRow)
            .where(CommissionRow.payout_id == payout_id)
            .values(status=CommissionStatus.PAID.value, paid_at=paid_at)
        )
        return result.rowcount

    async def transition_order_commissions(
        self,
        order_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        unlinked_only: bool = False,
    ) -> int:
        conditions = [
            CommissionRow.order_id == order_id,
            CommissionRow.status.in_(list(from_statuses)),
        ]
        if unlinked_only:
            conditions.append(CommissionRow.payout_id.is_(None))
        result = await self.session.execute(
            update(CommissionRow)
            .where(and_(*conditions))
            .values(status=to_status)
        )
        return result.rowcount

    def _commission_filters(
        self,
        company_id: str,
        affiliate_id: str | None = None,
        status: str | None = None,
        type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> list:
        filters = [CommissionRow.company_id == company_id]
        if affiliate_id:
            filters.append(CommissionRow.affiliate_id == affiliate_id)
        if status:
            filters.append(CommissionRow.status == status)
        if type:
            filters.append(CommissionRow.type == type)
        if start_date:
            filters.append(CommissionRow.created_at >= start_date)
        if end_date:
            filters.append(CommissionRow.created_at <= end_date)
        return filters

    async def search_commissions(self, company_id: str, limit: int = 50, offset: int = 0, **filters) -> list[CommissionRow]:
        result = await self.session.execute(
            select(CommissionRow)
            .where(*self._commission_filters(company_id, **filters))
            .order_by(CommissionRow.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def commission_breakdown(self, company_id: str, **filters) -> list[tuple[str, str, int, Decimal]]:
        """(type, status, count, amount) groups for the filtered commission set."""
        result = await self.session.execute(
            select(
                CommissionRow.type,
                CommissionRow.status,
                func.count(CommissionRow.id),
                func.coalesce(func.sum(CommissionRow.amount), 0),
            )
            .where(*self._commission_filters(company_id, **filters))
            .group_by(CommissionRow.type, CommissionRow.status)
        )
        return [(t, s, c, to_decimal(a)) for t, s, c, a in result.all()]

    # ── Payouts ─────────────────────────────────────────────────────────────

    async def get_payout(self, payout_id: str, lock: bool = False) -> Optional[AffiliatePayoutRow]:
        stmt = select(AffiliatePayoutRow).where(AffiliatePayoutRow.id == payout_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_payouts(self, affiliate_id: str) -> list[AffiliatePayoutRow]:
        result = await self.session.execute(
            select(AffiliatePayoutRow)
            .where(AffiliatePayoutRow.affiliate_id == affiliate_id)
            .order_by(AffiliatePayoutRow.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_payout_commissions(self, payout_id: str) -> list[CommissionRow]:
        result = await self.session.execute(
            select(CommissionRow)
            .where(CommissionRow.payout_id == payout_id)
            .order_by(CommissionRow.created_at.asc())
        )
        return list(result.scalars().all())

    # ── Outbox ──────────────────────────────────────────────────────────────

    async def get_task_for_order(self, order_id: str) -> Optional[CommissionTaskRow]:
        result = await self.session.execute(
            select(CommissionTaskRow).where(CommissionTaskRow.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def due_task_ids(self, now: datetime, limit: int) -> list[str]:
        result = await self.session.execute(
            select(CommissionTaskRow.id)
            .where(
                CommissionTaskRow.status == TaskStatus.PENDING.value,
                CommissionTaskRow.next_attempt_at <= now,
            )
            .order_by(CommissionTaskRow.next_attempt_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim_task(self, task_id: str) -> Optional[CommissionTaskRow]:
        """Lock a pending task; concurrent workers skip rows already claimed."""
        result = await self.session.execute(
            select(CommissionTaskRow)
            .where(
                CommissionTaskRow.id == task_id,
                CommissionTaskRow.status == TaskStatus.PENDING.value,
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()
