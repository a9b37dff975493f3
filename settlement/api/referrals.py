"""
Referral click tracking endpoint.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.schemas import ReferralOut, TrackReferralRequest
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository
from settlement.models import ReferralMetadata
from settlement.services.referrals import ReferralTracker, extract_affiliate_code

router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45]
    return request.client.host if request.client else None


@router.post("/track", response_model=ReferralOut)
async def track_referral(
    req: TrackReferralRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Record a click on an affiliate link.

    The code comes from the body, else the ``affiliateCode`` cookie, else the
    ``ref`` / ``affiliate`` query params. Repeat clicks by the same visitor
    inside the cooldown return the original referral.
    """
    code = req.code or extract_affiliate_code(request.cookies, request.query_params)
    if not code:
        raise HTTPException(400, "Affiliate code required")

    metadata = ReferralMetadata(
        url=req.url or (request.headers.get("referer") or "")[:2000] or None,
        ip_address=_client_ip(request),
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        source=req.source,
    )
    referral = await ReferralTracker(SettlementRepository(session)).track_referral(
        code, customer_id=req.customer_id, metadata=metadata,
    )
    await session.commit()
    return referral
