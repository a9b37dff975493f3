"""Tests for affiliate per-product pricing and markups."""
from __future__ import annotations

from decimal import Decimal

import pytest

from settlement.errors import NotFound, ValidationFailed
from settlement.models import CommissionType
from settlement.services.pricing import AffiliateProductPricing

from conftest import make_affiliate, make_product


class TestGetPrice:
    async def test_percentage_affiliate_gets_catalog_price(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="PERCENTAGE")
        product = await make_product(session, price="150.00")
        quote = await AffiliateProductPricing(repo).get_price(affiliate.id, product.id)
        assert quote.price == Decimal("150.00")
        assert quote.type == CommissionType.PERCENTAGE
        assert quote.needs_setup is False

    async def test_markup_affiliate_without_mapping_needs_setup(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="150.00")
        quote = await AffiliateProductPricing(repo).get_price(affiliate.id, product.id)
        assert quote.price == Decimal("150.00")
        assert quote.needs_setup is True

    async def test_markup_affiliate_with_mapping_gets_final_price(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="150.00", base_price="100.00")
        pricing = AffiliateProductPricing(repo)
        await pricing.create_affiliate_product(affiliate.id, product.id, "35.50")

        quote = await pricing.get_price(affiliate.id, product.id)
        assert quote.price == Decimal("135.50")
        assert quote.base_price == Decimal("100.00")
        assert quote.markup == Decimal("35.50")
        assert quote.needs_setup is False
        assert quote.to_dict()["price"] == "135.50"

    async def test_unknown_product(self, repo, session):
        affiliate = await make_affiliate(session)
        with pytest.raises(NotFound):
            await AffiliateProductPricing(repo).get_price(affiliate.id, "missing")


class TestCreateAffiliateProduct:
    async def test_final_price_is_base_plus_markup(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="150.00", base_price="100.00")
        mapping = await AffiliateProductPricing(repo).create_affiliate_product(affiliate.id, product.id, "20")
        assert mapping.base_price == Decimal("100.00")
        assert mapping.final_price == mapping.base_price + mapping.markup

    async def test_base_price_falls_back_to_price(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="80.00", base_price=None)
        mapping = await AffiliateProductPricing(repo).create_affiliate_product(affiliate.id, product.id, "5")
        assert mapping.base_price == Decimal("80.00")
        assert mapping.final_price == Decimal("85.00")

    async def test_update_keeps_pinned_base_price(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="150.00", base_price="100.00")
        pricing = AffiliateProductPricing(repo)
        first = await pricing.create_affiliate_product(affiliate.id, product.id, "20")

        product.base_price = Decimal("120.00")
        await session.flush()
        second = await pricing.create_affiliate_product(affiliate.id, product.id, "30")

        assert second.id == first.id
        assert second.base_price == Decimal("100.00")
        assert second.final_price == Decimal("130.00")

    async def test_rejects_product_without_markup_permission(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, allow_affiliate_markup=False)
        with pytest.raises(ValidationFailed):
            await AffiliateProductPricing(repo).create_affiliate_product(affiliate.id, product.id, "10")

    async def test_rejects_negative_markup(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session)
        with pytest.raises(ValidationFailed):
            await AffiliateProductPricing(repo).create_affiliate_product(affiliate.id, product.id, "-1")

    async def test_markup_stored_at_cents(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, price="150.00", base_price="100.00")
        mapping = await AffiliateProductPricing(repo).create_affiliate_product(affiliate.id, product.id, "10.005")
        assert mapping.markup == Decimal("10.01")
        assert mapping.final_price == Decimal("110.01")
        assert mapping.final_price == mapping.base_price + mapping.markup


class TestUpdateMarkup:
    async def test_update_by_mapping_id(self, repo, session):
        affiliate = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session, base_price="100.00")
        pricing = AffiliateProductPricing(repo)
        mapping = await pricing.create_affiliate_product(affiliate.id, product.id, "10")

        updated = await pricing.update_markup(affiliate.id, mapping.id, "25")
        assert updated.final_price == Decimal("125.00")
        assert [m.id for m in await pricing.list_affiliate_products(affiliate.id)] == [mapping.id]

    async def test_other_affiliates_mapping_not_found(self, repo, session):
        owner = await make_affiliate(session, commission_type="MARKUP")
        other = await make_affiliate(session, commission_type="MARKUP")
        product = await make_product(session)
        pricing = AffiliateProductPricing(repo)
        mapping = await pricing.create_affiliate_product(owner.id, product.id, "10")
        with pytest.raises(NotFound):
            await pricing.update_markup(other.id, mapping.id, "99")
