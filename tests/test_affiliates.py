"""Tests for affiliate registration, code generation and admin controls."""
from __future__ import annotations

import re
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from settlement.errors import Conflict, GenerationFailure, NotFound, ValidationFailed
from settlement.services.affiliates import AffiliateRegistry, random_affiliate_code

from conftest import make_affiliate


class TestAffiliateCode:
    def test_random_code_is_eight_upper_hex(self):
        code = random_affiliate_code()
        assert re.fullmatch(r"[0-9A-F]{8}", code)

    async def test_skips_taken_codes(self, repo, session):
        await make_affiliate(session, affiliate_code="AAAAAAAA")
        codes = iter(["AAAAAAAA", "BBBBBBBB"])
        registry = AffiliateRegistry(repo, code_factory=lambda: next(codes))
        assert await registry.generate_affiliate_code() == "BBBBBBBB"

    async def test_gives_up_after_ten_collisions(self, repo, session):
        await make_affiliate(session, affiliate_code="DEADBEEF")
        calls = []

        def always_taken():
            calls.append(1)
            return "DEADBEEF"

        registry = AffiliateRegistry(repo, code_factory=always_taken)
        with pytest.raises(GenerationFailure):
            await registry.generate_affiliate_code()
        assert len(calls) == 10

    async def test_generation_failure_is_a_conflict(self):
        assert issubclass(GenerationFailure, Conflict)


class TestRegisterAffiliate:
    async def test_defaults(self, repo):
        affiliate = await AffiliateRegistry(repo).register_affiliate("user-1", {"company_id": "company-1"})
        assert affiliate.status == "PENDING"
        assert affiliate.commission_type == "PERCENTAGE"
        assert affiliate.commission_rate == 5.0
        assert affiliate.min_payout == Decimal("100.00")
        assert re.fullmatch(r"[0-9A-F]{8}", affiliate.affiliate_code)

    async def test_custom_terms_and_payment_details(self, repo):
        affiliate = await AffiliateRegistry(repo).register_affiliate("user-2", {
            "company_id": "company-1",
            "commission_type": "MARKUP",
            "commission_rate": 12.5,
            "min_payout": "50",
            "payment_method": "bank",
            "payment_details": {"account_name": "Jo", "bank_name": "First Bank"},
        })
        assert affiliate.commission_type == "MARKUP"
        assert affiliate.commission_rate == 12.5
        assert affiliate.min_payout == Decimal("50")
        assert affiliate.payment_details == {"account_name": "Jo", "bank_name": "First Bank"}

    async def test_duplicate_registration_conflicts(self, repo):
        registry = AffiliateRegistry(repo)
        await registry.register_affiliate("user-3")
        with pytest.raises(Conflict):
            await registry.register_affiliate("user-3")

    async def test_rejects_out_of_range_rate(self, repo):
        with pytest.raises(ValidationFailed):
            await AffiliateRegistry(repo).register_affiliate("user-4", {"commission_rate": 150})

    async def test_code_taken_after_check_is_a_conflict(self, repo, session):
        await make_affiliate(session, affiliate_code="DEADBEEF")
        registry = AffiliateRegistry(repo, code_factory=lambda: "DEADBEEF")
        # free when checked, taken by a parallel registration before our insert
        with patch.object(repo, "affiliate_code_exists", AsyncMock(return_value=False)):
            with pytest.raises(Conflict):
                await registry.register_affiliate("user-5")
        assert await repo.get_affiliate_by_user("user-5") is None

    async def test_parallel_duplicate_user_is_a_conflict(self, repo, session):
        existing = await make_affiliate(session, user_id="user-6")
        with patch.object(repo, "get_affiliate_by_user", AsyncMock(return_value=None)):
            with pytest.raises(Conflict):
                await AffiliateRegistry(repo).register_affiliate("user-6")
        # the outer transaction survives the failed insert
        assert (await repo.get_affiliate_by_user("user-6")).id == existing.id


class TestAdminControls:
    async def test_status_by_name(self, repo, session):
        affiliate = await make_affiliate(session, status="PENDING")
        updated = await AffiliateRegistry(repo).update_affiliate_status(affiliate.id, "active")
        assert updated.status == "ACTIVE"

    async def test_status_by_bool(self, repo, session):
        affiliate = await make_affiliate(session, status="PENDING")
        registry = AffiliateRegistry(repo)
        assert (await registry.update_affiliate_status(affiliate.id, True)).status == "ACTIVE"
        assert (await registry.update_affiliate_status(affiliate.id, False)).status == "SUSPENDED"

    async def test_unknown_status_rejected(self, repo, session):
        affiliate = await make_affiliate(session)
        with pytest.raises(ValidationFailed):
            await AffiliateRegistry(repo).update_affiliate_status(affiliate.id, "BANNED")

    async def test_commission_rate_bounds(self, repo, session):
        affiliate = await make_affiliate(session)
        registry = AffiliateRegistry(repo)
        assert (await registry.update_affiliate_commission(affiliate.id, 100)).commission_rate == 100.0
        with pytest.raises(ValidationFailed):
            await registry.update_affiliate_commission(affiliate.id, -1)

    async def test_unknown_affiliate(self, repo):
        with pytest.raises(NotFound):
            await AffiliateRegistry(repo).update_affiliate_status("missing", True)
        with pytest.raises(NotFound):
            await AffiliateRegistry(repo).get_affiliate_by_user("nobody")

    async def test_list_affiliates_by_company(self, repo, session):
        await make_affiliate(session, company_id="company-1")
        await make_affiliate(session, company_id="company-1")
        await make_affiliate(session, company_id="company-2")
        listed = await AffiliateRegistry(repo).list_affiliates("company-1")
        assert len(listed) == 2
        assert all(a.company_id == "company-1" for a in listed)


class TestProfileUpdate:
    async def test_updates_only_given_fields(self, repo, session):
        affiliate = await make_affiliate(session, payment_method="bank", min_payout="100")
        updated = await AffiliateRegistry(repo).update_affiliate_profile(affiliate.id, {
            "payment_details": {"wallet_number": "01000000000"},
            "min_payout": "250",
        })
        assert updated.payment_method == "bank"
        assert updated.payment_details == {"wallet_number": "01000000000"}
        assert updated.min_payout == Decimal("250")

    async def test_rejects_negative_min_payout(self, repo, session):
        affiliate = await make_affiliate(session)
        with pytest.raises(ValidationFailed):
            await AffiliateRegistry(repo).update_affiliate_profile(affiliate.id, {"min_payout": "-5"})

    async def test_unknown_affiliate(self, repo):
        with pytest.raises(NotFound):
            await AffiliateRegistry(repo).update_affiliate_profile("missing", {"payment_method": "wallet"})
