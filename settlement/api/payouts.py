"""
Payout request and settlement endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.schemas import PayoutOut, PayoutRequest, RecordExternalPayoutRequest
from settlement.auth import require_admin
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository
from settlement.services.payouts import PayoutAllocator

router = APIRouter(tags=["Payouts"])


@router.post("/api/v1/affiliates/{affiliate_id}/payouts", response_model=PayoutOut, status_code=201)
async def request_payout(
    affiliate_id: str,
    req: PayoutRequest,
    session: AsyncSession = Depends(get_session),
):
    """Allocate confirmed commissions (oldest first) to a new payout."""
    payout = await PayoutAllocator(SettlementRepository(session)).process_payout(
        affiliate_id, req.amount, req.model_dump(exclude={"amount"}, exclude_none=True),
    )
    await session.commit()
    return payout


@router.get("/api/v1/affiliates/{affiliate_id}/payouts", response_model=list[PayoutOut])
async def list_payouts(affiliate_id: str, session: AsyncSession = Depends(get_session)):
    return await PayoutAllocator(SettlementRepository(session)).list_payouts(affiliate_id)


@router.post("/api/v1/payouts/{payout_id}/record-external", response_model=PayoutOut)
async def record_external_payout(
    payout_id: str,
    req: RecordExternalPayoutRequest,
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Mark a payout as settled outside the platform; its commissions become PAID."""
    payout = await PayoutAllocator(SettlementRepository(session)).record_external_payout(payout_id, req)
    await session.commit()
    return payout
