"""
Affiliate registration and admin endpoints.
"""
from __future__ import annotations

import logging

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.schemas import (
    AffiliateOrderOut, AffiliateOut, CommissionRateRequest, ProfileUpdateRequest, ReferralOut,
    RegisterAffiliateRequest, StatusUpdateRequest,
)
from settlement.auth import require_admin
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository
from settlement.services.activity import AffiliateActivity
from settlement.services.affiliates import AffiliateRegistry
from settlement.services.stats import StatsAggregator

router = APIRouter(prefix="/api/v1/affiliates", tags=["Affiliates"])
logger = logging.getLogger(__name__)


@router.post("", response_model=AffiliateOut, status_code=201)
async def register_affiliate(
    req: RegisterAffiliateRequest,
    session: AsyncSession = Depends(get_session),
):
    """Register the user as an affiliate. New affiliates start PENDING."""
    registry = AffiliateRegistry(SettlementRepository(session))
    affiliate = await registry.register_affiliate(
        req.user_id, req.model_dump(exclude={"user_id"}, exclude_none=True),
    )
    await session.commit()
    return affiliate


@router.get("", response_model=list[AffiliateOut])
async def list_affiliates(
    company_id: str = Query(..., min_length=1),
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await AffiliateRegistry(SettlementRepository(session)).list_affiliates(company_id)


@router.get("/{affiliate_id}", response_model=AffiliateOut)
async def get_affiliate(affiliate_id: str, session: AsyncSession = Depends(get_session)):
    return await AffiliateRegistry(SettlementRepository(session)).get_affiliate(affiliate_id)


@router.put("/{affiliate_id}/status", response_model=AffiliateOut)
async def update_status(
    affiliate_id: str,
    req: StatusUpdateRequest,
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    affiliate = await AffiliateRegistry(SettlementRepository(session)).update_affiliate_status(
        affiliate_id, req.status,
    )
    await session.commit()
    return affiliate


@router.put("/{affiliate_id}/commission", response_model=AffiliateOut)
async def update_commission(
    affiliate_id: str,
    req: CommissionRateRequest,
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    affiliate = await AffiliateRegistry(SettlementRepository(session)).update_affiliate_commission(
        affiliate_id, req.commission_rate,
    )
    await session.commit()
    return affiliate


@router.post("/{affiliate_id}/stats/refresh")
async def refresh_stats(affiliate_id: str, session: AsyncSession = Depends(get_session)):
    """Recompute the affiliate's derived totals from the ledger."""
    stats = await StatsAggregator(SettlementRepository(session)).update_affiliate_stats(affiliate_id)
    await session.commit()
    return stats.to_dict()


@router.put("/{affiliate_id}/profile", response_model=AffiliateOut)
async def update_profile(
    affiliate_id: str,
    req: ProfileUpdateRequest,
    session: AsyncSession = Depends(get_session),
):
    """Update payout preferences. Only fields present in the body are changed."""
    affiliate = await AffiliateRegistry(SettlementRepository(session)).update_affiliate_profile(
        affiliate_id, req.model_dump(exclude_unset=True),
    )
    await session.commit()
    return affiliate


@router.get("/{affiliate_id}/orders")
async def list_orders(
    affiliate_id: str,
    status: Optional[str] = Query(None, max_length=20),
    source: Optional[str] = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """Orders attributed to the affiliate, each with the affiliate's commission rows."""
    orders, total = await AffiliateActivity(SettlementRepository(session)).get_affiliate_orders(
        affiliate_id, status=status, source=source, limit=limit, offset=offset,
    )
    return {
        "data": [AffiliateOrderOut.model_validate(o) for o in orders],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        },
    }


@router.get("/{affiliate_id}/customers")
async def list_customers(affiliate_id: str, session: AsyncSession = Depends(get_session)):
    customers = await AffiliateActivity(SettlementRepository(session)).get_affiliate_customers(affiliate_id)
    return [c.to_dict() for c in customers]


@router.get("/{affiliate_id}/referrals", response_model=list[ReferralOut])
async def list_referrals(
    affiliate_id: str,
    converted: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    return await AffiliateActivity(SettlementRepository(session)).list_referrals(
        affiliate_id, converted=converted, limit=limit, offset=offset,
    )
