"""Tests for the commission outbox and its retry/dead-letter handling."""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from settlement.db.repository import SettlementRepository
from settlement.errors import InvalidState
from settlement.services.outbox import CommissionOutbox, backoff_delay, enqueue_commission_calculation

from conftest import TestSession, make_affiliate, make_order


async def _task(order_id: str):
    async with TestSession() as s:
        return await SettlementRepository(s).get_task_for_order(order_id)


class TestEnqueue:
    async def test_enqueue_is_idempotent(self, session):
        order = await make_order(session, [{"sell_price": "10"}])
        first = await enqueue_commission_calculation(session, order.id)
        second = await enqueue_commission_calculation(session, order.id)
        assert first.id == second.id
        assert first.status == "PENDING"

    async def test_rolled_back_order_leaves_no_task(self, session):
        order = await make_order(session, [{"sell_price": "10"}])
        await enqueue_commission_calculation(session, order.id)
        await session.rollback()
        assert await _task(order.id) is None


class TestProcessDue:
    async def test_successful_task_writes_commissions(self, session):
        affiliate = await make_affiliate(session)
        order = await make_order(session, [{
            "sell_price": "150", "base_price": "100", "merchant_price": "60",
            "quantity": 2, "merchant_id": "m1",
        }], affiliate_id=affiliate.id)
        await enqueue_commission_calculation(session, order.id)
        await session.commit()

        counts = await CommissionOutbox(session_factory=TestSession).process_due()

        assert counts == {"done": 1, "retried": 0, "dead": 0}
        assert (await _task(order.id)).status == "DONE"
        async with TestSession() as s:
            rows = await SettlementRepository(s).list_order_commissions(order.id)
        assert len(rows) == 3

    async def test_failures_back_off_then_dead_letter(self, session):
        await enqueue_commission_calculation(session, "ghost-order")
        await session.commit()
        outbox = CommissionOutbox(session_factory=TestSession, max_attempts=2, backoff_seconds=0)

        assert (await outbox.process_due())["retried"] == 1
        task = await _task("ghost-order")
        assert task.status == "PENDING"
        assert task.attempts == 1
        assert "NotFound" in task.last_error

        assert (await outbox.process_due())["dead"] == 1
        task = await _task("ghost-order")
        assert task.status == "DEAD"
        assert task.attempts == 2

        # dead tasks are not picked up again
        assert await outbox.process_due() == {"done": 0, "retried": 0, "dead": 0}

    async def test_backoff_delays_next_attempt(self, session):
        await enqueue_commission_calculation(session, "ghost-order")
        await session.commit()
        outbox = CommissionOutbox(session_factory=TestSession, max_attempts=5, backoff_seconds=3600)

        await outbox.process_due()
        assert await outbox.process_due() == {"done": 0, "retried": 0, "dead": 0}

    async def test_retry_dead_requeues(self, session):
        await enqueue_commission_calculation(session, "ghost-order")
        await session.commit()
        outbox = CommissionOutbox(session_factory=TestSession, max_attempts=1, backoff_seconds=0)
        await outbox.process_due()

        task = await outbox.retry_dead("ghost-order")
        assert task.status == "PENDING"
        assert task.attempts == 0

        with pytest.raises(InvalidState):
            await outbox.retry_dead("ghost-order")


class TestBothEntryPoints:
    """The HTTP endpoint and the outbox job may both calculate the same order."""

    async def _order_with_task(self, session):
        affiliate = await make_affiliate(session)
        order = await make_order(session, [{
            "sell_price": "150", "base_price": "100", "merchant_price": "60",
            "quantity": 2, "merchant_id": "m1",
        }], affiliate_id=affiliate.id)
        await enqueue_commission_calculation(session, order.id)
        await session.commit()
        return order

    async def _ledger(self, order_id):
        async with TestSession() as s:
            return await SettlementRepository(s).list_order_commissions(order_id)

    async def test_http_then_outbox(self, session, client):
        order = await self._order_with_task(session)
        resp = await client.post(f"/api/v1/orders/{order.id}/commissions")
        assert resp.status_code == 200

        counts = await CommissionOutbox(session_factory=TestSession).process_due()

        assert counts == {"done": 1, "retried": 0, "dead": 0}
        ledger = await self._ledger(order.id)
        assert sorted(r.id for r in ledger) == sorted(c["id"] for c in resp.json())
        assert sum(r.amount for r in ledger) == Decimal("300.00")

    async def test_outbox_then_http(self, session, client):
        order = await self._order_with_task(session)
        await CommissionOutbox(session_factory=TestSession).process_due()

        resp = await client.post(f"/api/v1/orders/{order.id}/commissions")

        ledger = await self._ledger(order.id)
        assert len(ledger) == 3
        assert sorted(c["id"] for c in resp.json()) == sorted(r.id for r in ledger)

    async def test_outbox_losing_the_race_to_http(self, session, client):
        order = await self._order_with_task(session)
        await client.post(f"/api/v1/orders/{order.id}/commissions")

        # the outbox worker read the ledger before the HTTP request committed
        real_list = SettlementRepository.list_order_commissions
        reads = []

        async def stale_first_read(self, order_id):
            reads.append(order_id)
            return [] if len(reads) == 1 else await real_list(self, order_id)

        with patch.object(SettlementRepository, "list_order_commissions", stale_first_read):
            counts = await CommissionOutbox(session_factory=TestSession).process_due()

        assert counts == {"done": 1, "retried": 0, "dead": 0}
        assert (await _task(order.id)).status == "DONE"
        ledger = await self._ledger(order.id)
        assert len(ledger) == 3
        assert sum(r.amount for r in ledger) == Decimal("300.00")


def test_backoff_is_exponential():
    assert backoff_delay(1, 30) == timedelta(seconds=30)
    assert backoff_delay(2, 30) == timedelta(seconds=60)
    assert backoff_delay(4, 30) == timedelta(seconds=240)
