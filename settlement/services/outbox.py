"""
Commission outbox.

Order management calls ``enqueue_commission_calculation`` inside the same
transaction that finalizes the order, so the job exists if and only if the
order does. ``CommissionOutbox.process_due`` then runs the calculation in
its own transaction per task with exponential backoff, dead-lettering after
``OUTBOX_MAX_ATTEMPTS``. A failed calculation never touches the order.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from settlement.db.commission_tables import CommissionTaskRow
from settlement.db.engine import async_session
from settlement.db.repository import SettlementRepository
from settlement.errors import InvalidState, NotFound
from settlement.models import TaskStatus
from settlement.services.commissions import CommissionCalculator

logger = logging.getLogger(__name__)


async def enqueue_commission_calculation(session: AsyncSession, order_id: str) -> CommissionTaskRow:
    """Add a calculation job for ``order_id`` to the caller's transaction. Repeat calls are no-ops."""
    repo = SettlementRepository(session)
    task = await repo.get_task_for_order(order_id)
    if task:
        return task
    task = CommissionTaskRow(order_id=order_id, status=TaskStatus.PENDING.value, attempts=0)
    await repo.add(task)
    logger.debug("Enqueued commission calculation for order %s", order_id)
    return task


def backoff_delay(attempts: int, base_seconds: int | None = None) -> timedelta:
    base = settings.OUTBOX_BACKOFF_SECONDS if base_seconds is None else base_seconds
    return timedelta(seconds=base * 2 ** max(attempts - 1, 0))


class CommissionOutbox:
    """Drains due commission tasks. Owns its sessions and commits per task."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        max_attempts: int | None = None,
        backoff_seconds: int | None = None,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
        self.backoff_seconds = settings.OUTBOX_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    async def process_due(self, limit: int | None = None) -> dict[str, int]:
        limit = limit or settings.OUTBOX_BATCH_SIZE
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            task_ids = await SettlementRepository(session).due_task_ids(now, limit)

        counts = {"done": 0, "retried": 0, "dead": 0}
        for task_id in task_ids:
            outcome = await self._run(task_id)
            if outcome:
                counts[outcome] += 1

        if task_ids:
            logger.info("Outbox pass: %d due, %s", len(task_ids), counts)
        return counts

    async def _run(self, task_id: str) -> str | None:
        async with self.session_factory() as session:
            repo = SettlementRepository(session)
            task = await repo.claim_task(task_id)
            if not task:
                # claimed by another worker, or no longer pending
                return None

            try:
                async with repo.savepoint():
                    await CommissionCalculator(repo).calculate_commissions(task.order_id)
            except Exception as e:
                outcome = self._record_failure(task, e)
            else:
                task.status = TaskStatus.DONE.value
                task.last_error = None
                outcome = "done"

            await session.commit()
            return outcome

    def _record_failure(self, task: CommissionTaskRow, error: Exception) -> str:
        task.attempts = (task.attempts or 0) + 1
        task.last_error = f"{type(error).__name__}: {error}"[:2000]

        if task.attempts >= self.max_attempts:
            task.status = TaskStatus.DEAD.value
            logger.error(
                "Commission task for order %s dead-lettered after %d attempts: %s",
                task.order_id, task.attempts, task.last_error,
            )
            return "dead"

        delay = backoff_delay(task.attempts, self.backoff_seconds)
        task.next_attempt_at = datetime.now(timezone.utc) + delay
        logger.warning(
            "Commission task for order %s failed (attempt %d/%d), retrying in %ss: %s",
            task.order_id, task.attempts, self.max_attempts, int(delay.total_seconds()), task.last_error,
        )
        return "retried"

    async def retry_dead(self, order_id: str) -> CommissionTaskRow:
        """Admin action: put a dead-lettered task back in the queue."""
        async with self.session_factory() as session:
            repo = SettlementRepository(session)
            task = await repo.get_task_for_order(order_id)
            if not task:
                raise NotFound(f"No commission task for order {order_id}")
            if task.status != TaskStatus.DEAD.value:
                raise InvalidState(f"Commission task for order {order_id} is {task.status}, expected DEAD")

            task.status = TaskStatus.PENDING.value
            task.attempts = 0
            task.next_attempt_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(task)
            logger.info("Commission task for order %s re-queued", order_id)
            return task
