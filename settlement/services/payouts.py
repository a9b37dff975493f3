"""
Payout allocator.

A payout request links confirmed affiliate commissions to itself, oldest
first, as long as the running total stays within the requested amount.
Commissions are never split, so the allocated amount can be lower than the
request. Settlement happens out of band; ``record_external_payout`` closes
the loop and marks the linked commissions PAID.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from settlement.db.commission_tables import AffiliatePayoutRow
from settlement.db.repository import SettlementRepository
from settlement.errors import InsufficientFunds, InvalidState, NotFound, ValidationFailed
from settlement.models import ExternalPaymentRecord, PaymentDetails, PayoutStatus
from settlement.money import ZERO, round_money, to_decimal
from settlement.services.stats import StatsAggregator

logger = logging.getLogger(__name__)


class PayoutAllocator:
    def __init__(self, repo: SettlementRepository, stats: StatsAggregator | None = None):
        self.repo = repo
        self.stats = stats or StatsAggregator(repo)

    async def process_payout(
        self,
        affiliate_id: str,
        amount,
        payment: Optional[dict[str, Any]] = None,
    ) -> AffiliatePayoutRow:
        payment = payment or {}
        requested = to_decimal(amount)
        if requested <= 0:
            raise ValidationFailed("Payout amount must be positive")

        # Row lock serializes allocations for this affiliate until commit
        affiliate = await self.repo.get_affiliate(affiliate_id, lock=True)
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")

        min_payout = to_decimal(affiliate.min_payout)
        if requested < min_payout:
            logger.warning("Payout of %s below minimum %s for affiliate %s", requested, min_payout, affiliate_id)
            raise ValidationFailed(f"Minimum payout is {min_payout}")

        pending = to_decimal(affiliate.pending_earnings)
        if requested > pending:
            logger.warning("Payout of %s exceeds pending %s for affiliate %s", requested, pending, affiliate_id)
            raise InsufficientFunds(f"Requested {requested} exceeds pending earnings {pending}")

        details = payment.get("payment_details")
        if details is not None and not isinstance(details, PaymentDetails):
            details = PaymentDetails.model_validate(details)
        if details is None and affiliate.payment_details:
            details = PaymentDetails.model_validate(affiliate.payment_details)

        payout = AffiliatePayoutRow(
            affiliate_id=affiliate_id,
            amount=round_money(requested),
            allocated_amount=ZERO,
            payment_method=payment.get("payment_method") or affiliate.payment_method,
            payment_details=details.model_dump(exclude_none=True) if details else None,
            status=PayoutStatus.PENDING.value,
        )
        await self.repo.add(payout)

        running_total = ZERO
        linked = 0
        for commission in await self.repo.unlinked_confirmed_commissions(affiliate_id):
            commission_amount = to_decimal(commission.amount)
            if running_total + commission_amount > requested:
                continue
            if not await self.repo.link_commission(commission.id, payout.id):
                # taken by a concurrent allocation
                continue
            running_total += commission_amount
            linked += 1

        payout.allocated_amount = round_money(running_total)
        await self.repo.session.flush()

        logger.info(
            "Payout %s for affiliate %s: requested=%s allocated=%s across %d commissions",
            payout.id, affiliate_id, payout.amount, payout.allocated_amount, linked,
        )
        return payout

    async def record_external_payout(
        self, payout_id: str, record: ExternalPaymentRecord | dict,
    ) -> AffiliatePayoutRow:
        if not isinstance(record, ExternalPaymentRecord):
            record = ExternalPaymentRecord.model_validate(record)

        payout = await self.repo.get_payout(payout_id, lock=True)
        if not payout:
            raise NotFound(f"Payout {payout_id} not found")
        if payout.status != PayoutStatus.PENDING.value:
            logger.warning("Payout %s already settled (%s)", payout_id, payout.status)
            raise InvalidState(f"Payout {payout_id} is {payout.status}, expected PENDING")

        paid_at = record.payment_date or datetime.now(timezone.utc)
        payout.status = PayoutStatus.PAID_EXTERNAL.value
        payout.transaction_id = record.transaction_id
        payout.external_reference = record.external_reference
        payout.processed_at = paid_at
        await self.repo.session.flush()

        count = await self.repo.mark_payout_commissions_paid(payout_id, paid_at)
        await self.stats.update_affiliate_stats(payout.affiliate_id)

        logger.info("Payout %s settled externally (txn=%s), %d commissions paid", payout_id, record.transaction_id, count)
        return payout

    async def list_payouts(self, affiliate_id: str) -> list[AffiliatePayoutRow]:
        if not await self.repo.get_affiliate(affiliate_id):
            raise NotFound(f"Affiliate {affiliate_id} not found")
        return await self.repo.list_payouts(affiliate_id)
