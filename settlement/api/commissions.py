"""
Commission calculation, confirmation and reporting endpoints.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.schemas import CommissionOut
from settlement.auth import require_admin
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository
from settlement.models import CommissionKind, CommissionStatus
from settlement.services.commissions import CommissionCalculator

router = APIRouter(tags=["Commissions"])


@router.post("/api/v1/orders/{order_id}/commissions", response_model=list[CommissionOut])
async def calculate_commissions(order_id: str, session: AsyncSession = Depends(get_session)):
    """Split the order three ways. Returns the existing rows if already calculated."""
    rows = await CommissionCalculator(SettlementRepository(session)).calculate_commissions(order_id)
    await session.commit()
    return rows


@router.post("/api/v1/orders/{order_id}/commissions/confirm")
async def confirm_commissions(order_id: str, session: AsyncSession = Depends(get_session)):
    count = await CommissionCalculator(SettlementRepository(session)).confirm_commissions(order_id)
    await session.commit()
    return {"order_id": order_id, "confirmed": count}


@router.post("/api/v1/orders/{order_id}/commissions/cancel")
async def cancel_commissions(
    order_id: str,
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    count = await CommissionCalculator(SettlementRepository(session)).cancel_commissions(order_id)
    await session.commit()
    return {"order_id": order_id, "cancelled": count}


@router.get("/api/v1/commissions")
async def list_commissions(
    company_id: str = Query(..., min_length=1),
    affiliate_id: Optional[str] = None,
    status: Optional[CommissionStatus] = None,
    type: Optional[CommissionKind] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin=Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Filtered commission ledger with totals by type and status."""
    result = await CommissionCalculator(SettlementRepository(session)).get_commission_stats(
        company_id,
        affiliate_id=affiliate_id,
        status=status.value if status else None,
        type=type.value if type else None,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    stats = result["stats"]
    return {
        "data": [CommissionOut.model_validate(c) for c in result["commissions"]],
        "pagination": {
            "total": result["total"],
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < result["total"],
        },
        "stats": {
            "total_amount": str(stats["total_amount"]),
            "count": stats["count"],
            "by_type": {k: str(v) for k, v in stats["by_type"].items()},
            "by_status": {k: str(v) for k, v in stats["by_status"].items()},
        },
    }
