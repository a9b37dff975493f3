"""
Per-affiliate product pricing.

PERCENTAGE affiliates sell at the canonical catalog price. MARKUP affiliates
sell at their own ``final_price = base_price + markup``, where ``base_price``
is pinned the first time the mapping is created and never re-pinned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from settlement.db.affiliate_tables import AffiliateProductRow, AffiliateRow
from settlement.db.repository import SettlementRepository
from settlement.db.tables import ProductRow
from settlement.errors import NotFound, ValidationFailed
from settlement.models import CommissionType
from settlement.money import round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class PriceQuote:
    price: Decimal
    type: CommissionType
    base_price: Optional[Decimal] = None
    markup: Optional[Decimal] = None
    needs_setup: bool = False

    def to_dict(self) -> dict:
        return {
            "price": str(self.price),
            "type": self.type.value,
            "base_price": str(self.base_price) if self.base_price is not None else None,
            "markup": str(self.markup) if self.markup is not None else None,
            "needs_setup": self.needs_setup,
        }


class AffiliateProductPricing:
    def __init__(self, repo: SettlementRepository):
        self.repo = repo

    async def _load(self, affiliate_id: str, product_id: str) -> tuple[AffiliateRow, ProductRow]:
        affiliate = await self.repo.get_affiliate(affiliate_id)
        if not affiliate:
            raise NotFound(f"Affiliate {affiliate_id} not found")
        product = await self.repo.get_product(product_id)
        if not product:
            raise NotFound(f"Product {product_id} not found")
        return affiliate, product

    async def get_price(self, affiliate_id: str, product_id: str) -> PriceQuote:
        affiliate, product = await self._load(affiliate_id, product_id)
        canonical = to_decimal(product.price)

        if affiliate.commission_type != CommissionType.MARKUP.value:
            return PriceQuote(price=canonical, type=CommissionType.PERCENTAGE)

        mapping = await self.repo.get_affiliate_product(affiliate_id, product_id)
        if not mapping or not mapping.is_active:
            return PriceQuote(price=canonical, type=CommissionType.MARKUP, needs_setup=True)

        return PriceQuote(
            price=to_decimal(mapping.final_price),
            type=CommissionType.MARKUP,
            base_price=to_decimal(mapping.base_price),
            markup=to_decimal(mapping.markup),
        )

    async def create_affiliate_product(self, affiliate_id: str, product_id: str, markup) -> AffiliateProductRow:
        """Create or update the affiliate's markup on a product."""
        markup = _check_markup(markup)
        _, product = await self._load(affiliate_id, product_id)
        if not product.allow_affiliate_markup:
            logger.warning("Markup rejected: product %s does not allow affiliate markup", product_id)
            raise ValidationFailed("This product does not allow affiliate markup")

        mapping = await self.repo.get_affiliate_product(affiliate_id, product_id)
        if mapping:
            _apply_markup(mapping, markup)
            mapping.is_active = True
            await self.repo.session.flush()
            logger.info("Affiliate %s markup on product %s updated to %s", affiliate_id, product_id, markup)
            return mapping

        base_price = to_decimal(product.base_price if product.base_price is not None else product.price)
        mapping = AffiliateProductRow(
            affiliate_id=affiliate_id,
            product_id=product_id,
            base_price=base_price,
            markup=markup,
            final_price=round_money(base_price + markup),
            is_active=True,
        )
        await self.repo.add(mapping)
        logger.info("Affiliate %s mapped product %s at base %s + %s", affiliate_id, product_id, base_price, markup)
        return mapping

    async def update_markup(self, affiliate_id: str, mapping_id: str, markup) -> AffiliateProductRow:
        markup = _check_markup(markup)
        mapping = await self.repo.get_affiliate_product_by_id(mapping_id)
        if not mapping or mapping.affiliate_id != affiliate_id:
            raise NotFound(f"Product mapping {mapping_id} not found")

        _apply_markup(mapping, markup)
        await self.repo.session.flush()
        return mapping

    async def list_affiliate_products(self, affiliate_id: str) -> list[AffiliateProductRow]:
        return await self.repo.get_affiliate_products(affiliate_id, active_only=True)


def _check_markup(markup) -> Decimal:
    value = to_decimal(markup)
    if value < 0:
        raise ValidationFailed("markup cannot be negative")
    # stored at cents; final_price must equal base_price + markup as returned
    return round_money(value)


def _apply_markup(mapping: AffiliateProductRow, markup: Decimal) -> None:
    # base_price stays pinned at its creation-time value
    mapping.markup = markup
    mapping.final_price = round_money(to_decimal(mapping.base_price) + markup)
