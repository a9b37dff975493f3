"""
Affiliate product pricing endpoints (markup mode).
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.schemas import AffiliateProductOut, MarkupRequest, MarkupUpdateRequest
from settlement.db.engine import get_session
from settlement.db.repository import SettlementRepository
from settlement.services.pricing import AffiliateProductPricing

router = APIRouter(prefix="/api/v1/affiliates/{affiliate_id}/products", tags=["Affiliate Products"])


@router.get("/{product_id}/price")
async def get_price(affiliate_id: str, product_id: str, session: AsyncSession = Depends(get_session)):
    """Price this affiliate sells the product at. ``needs_setup`` means no markup is configured yet."""
    quote = await AffiliateProductPricing(SettlementRepository(session)).get_price(affiliate_id, product_id)
    return quote.to_dict()


@router.post("", response_model=AffiliateProductOut)
async def set_markup(
    affiliate_id: str,
    req: MarkupRequest,
    session: AsyncSession = Depends(get_session),
):
    mapping = await AffiliateProductPricing(SettlementRepository(session)).create_affiliate_product(
        affiliate_id, req.product_id, req.markup,
    )
    await session.commit()
    return mapping


@router.put("/{mapping_id}", response_model=AffiliateProductOut)
async def update_markup(
    affiliate_id: str,
    mapping_id: str,
    req: MarkupUpdateRequest,
    session: AsyncSession = Depends(get_session),
):
    mapping = await AffiliateProductPricing(SettlementRepository(session)).update_markup(
        affiliate_id, mapping_id, req.markup,
    )
    await session.commit()
    return mapping


@router.get("", response_model=list[AffiliateProductOut])
async def list_products(affiliate_id: str, session: AsyncSession = Depends(get_session)):
    return await AffiliateProductPricing(SettlementRepository(session)).list_affiliate_products(affiliate_id)
