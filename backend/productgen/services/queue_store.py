"""Queue state store - configuration, status, progress and results of queues.

Counters are only changed with additive SQL updates so that item executions
finishing at the same time never lose an increment. Methods that change
counters or status re-read the queue with ``populate_existing`` afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from productgen.exceptions import InvalidTransition, QueueLocked, QueueNotFound
from productgen.models import (
    QUEUE_TRANSITIONS,
    GenerationQueue,
    QueueResult,
    QueueStatus,
    ScheduledAction,
)
from productgen.schemas.queue import QueueCreate, QueueUpdate
from productgen.services.scheduling import HOOK_PROCESS_ITEM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """Terminal result of one work item."""
    success: bool
    message: str | None = None
    skipped: bool = False
    attempts: int = 1


class QueueStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, data: QueueCreate) -> GenerationQueue:
        queue = GenerationQueue(
            title=data.title,
            query_selector=data.query_selector,
            task_config={k: v.model_dump() for k, v in data.task_config.items()},
            task_options=data.task_options.model_dump(),
            batch_size=data.batch_size,
            delay=data.delay,
            retry_failed=data.retry_failed,
            status=QueueStatus.DRAFT.value,
            work_items=[],
        )
        self.db.add(queue)
        await self.db.commit()
        await self.db.refresh(queue)
        logger.info(f"Created queue {queue.id} '{queue.title}'")
        return queue

    async def get(self, queue_id: int) -> GenerationQueue:
        """Fresh copy of the queue. Raises QueueNotFound."""
        result = await self.db.execute(
            select(GenerationQueue)
            .where(GenerationQueue.id == queue_id)
            .execution_options(populate_existing=True)
        )
        queue = result.scalar_one_or_none()
        if not queue:
            raise QueueNotFound()
        return queue

    async def find(self, queue_id: int) -> GenerationQueue | None:
        try:
            return await self.get(queue_id)
        except QueueNotFound:
            return None

    async def list_queues(
        self,
        status: QueueStatus | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[GenerationQueue], int]:
        query = select(GenerationQueue)
        count_query = select(func.count(GenerationQueue.id))
        if status:
            query = query.where(GenerationQueue.status == status.value)
            count_query = count_query.where(GenerationQueue.status == status.value)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(GenerationQueue.created_at.desc(), GenerationQueue.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_config(self, queue_id: int, data: QueueUpdate) -> GenerationQueue:
        """Edit a queue's configuration. Not allowed while it is processing."""
        queue = await self.get(queue_id)
        if queue.is_processing:
            raise QueueLocked()

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(queue, field, value)
        # a changed configuration invalidates the last dry run
        queue.preview_cache = None

        await self.db.commit()
        return await self.get(queue_id)

    async def delete(self, queue_id: int) -> None:
        """Delete a queue with its results and pending actions."""
        queue = await self.get(queue_id)
        if queue.is_processing:
            raise QueueLocked()
        await self.db.execute(delete(QueueResult).where(QueueResult.queue_id == queue_id))
        await self.db.execute(
            delete(ScheduledAction).where(ScheduledAction.group == queue.schedule_group)
        )
        await self.db.delete(queue)
        await self.db.commit()
        logger.info(f"Deleted queue {queue_id}")

    async def transition(
        self,
        queue_id: int,
        new_status: QueueStatus,
        values: dict[str, Any] | None = None,
    ) -> GenerationQueue:
        """
        Change status following the queue state machine. Caller commits.

        The UPDATE is conditional on the status that was read, so a
        concurrent change makes this fail with InvalidTransition instead of
        overwriting it.
        """
        queue = await self.get(queue_id)
        current = QueueStatus(queue.status)
        if new_status not in QUEUE_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Queue cannot go from {current.value} to {new_status.value}."
            )
        result = await self.db.execute(
            update(GenerationQueue)
            .where(GenerationQueue.id == queue_id, GenerationQueue.status == current.value)
            .values(status=new_status.value, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransition(f"Queue {queue_id} changed status concurrently.")
        logger.info(f"Queue {queue_id}: {current.value} -> {new_status.value}")
        return await self.get(queue_id)

    async def set_work_items(self, queue_id: int, items: list[dict[str, Any]]) -> None:
        """Replace the remaining work items. Caller commits."""
        await self.db.execute(
            update(GenerationQueue)
            .where(GenerationQueue.id == queue_id)
            .values(work_items=items)
            .execution_options(synchronize_session=False)
        )

    async def set_current_product(self, queue_id: int, product_id: int | None) -> None:
        await self.db.execute(
            update(GenerationQueue)
            .where(GenerationQueue.id == queue_id)
            .values(current_product_id=product_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def clear_results(self, queue_id: int) -> None:
        await self.db.execute(delete(QueueResult).where(QueueResult.queue_id == queue_id))

    async def save_preview(self, queue_id: int, stats: dict[str, Any]) -> None:
        await self.db.execute(
            update(GenerationQueue)
            .where(GenerationQueue.id == queue_id)
            .values(preview_cache=stats)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def record_result(
        self,
        queue_id: int,
        product_id: int,
        task_id: str,
        outcome: ItemOutcome,
    ) -> bool:
        """
        Store an item outcome and advance the counters. Commits.

        Recording the same (product, task) twice overwrites the result row and
        only moves a count between ``completed`` and ``failed`` when the
        outcome flipped, so a pair is never counted twice.

        Returns True if this call completed the queue.
        """
        now = datetime.now(UTC)
        result = await self.db.execute(
            select(QueueResult).where(
                QueueResult.queue_id == queue_id,
                QueueResult.product_id == product_id,
                QueueResult.task_id == task_id,
            )
        )
        existing = result.scalar_one_or_none()

        counters: dict[str, Any] = {}
        if existing is None:
            self.db.add(
                QueueResult(
                    queue_id=queue_id,
                    product_id=product_id,
                    task_id=task_id,
                    success=outcome.success,
                    skipped=outcome.skipped,
                    message=outcome.message,
                    attempts=outcome.attempts,
                    created_at=now,
                )
            )
            if outcome.success:
                counters["completed"] = GenerationQueue.completed + 1
            else:
                counters["failed"] = GenerationQueue.failed + 1
        else:
            if existing.success != outcome.success:
                if outcome.success:
                    counters["completed"] = GenerationQueue.completed + 1
                    counters["failed"] = GenerationQueue.failed - 1
                else:
                    counters["completed"] = GenerationQueue.completed - 1
                    counters["failed"] = GenerationQueue.failed + 1
            existing.success = outcome.success
            existing.skipped = outcome.skipped
            existing.message = outcome.message
            existing.attempts = outcome.attempts
            existing.created_at = now

        stmt = update(GenerationQueue).where(GenerationQueue.id == queue_id)
        if existing is None:
            # keeps completed + failed <= total
            stmt = stmt.where(
                GenerationQueue.completed + GenerationQueue.failed < GenerationQueue.total
            )
        await self.db.execute(
            stmt.values(current_product_id=product_id, **counters)
            .execution_options(synchronize_session=False)
        )

        finished = await self._complete_if_done(queue_id)
        await self.db.commit()
        return finished

    async def complete_if_done(self, queue_id: int) -> bool:
        """Complete a processing queue whose items are all resolved. Commits."""
        finished = await self._complete_if_done(queue_id)
        await self.db.commit()
        return finished

    async def _complete_if_done(self, queue_id: int) -> bool:
        result = await self.db.execute(
            update(GenerationQueue)
            .where(
                GenerationQueue.id == queue_id,
                GenerationQueue.status == QueueStatus.PROCESSING.value,
                GenerationQueue.completed + GenerationQueue.failed >= GenerationQueue.total,
            )
            .values(
                status=QueueStatus.COMPLETED.value,
                completed_at=datetime.now(UTC),
                current_product_id=None,
            )
            .execution_options(synchronize_session=False)
        )
        finished = result.rowcount == 1
        if finished:
            logger.info(f"Queue {queue_id} completed")
        return finished

    async def results(
        self,
        queue_id: int,
        success: bool | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> tuple[list[QueueResult], int]:
        query = select(QueueResult).where(QueueResult.queue_id == queue_id)
        count_query = select(func.count(QueueResult.id)).where(QueueResult.queue_id == queue_id)
        if success is not None:
            query = query.where(QueueResult.success == success)
            count_query = count_query.where(QueueResult.success == success)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(QueueResult.id).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def has_result(self, queue_id: int, product_id: int, task_id: str) -> bool:
        result = await self.db.execute(
            select(QueueResult.id).where(
                QueueResult.queue_id == queue_id,
                QueueResult.product_id == product_id,
                QueueResult.task_id == task_id,
            )
        )
        return result.first() is not None

    async def status(self, queue_id: int) -> dict[str, Any]:
        """Progress projection polled by the admin screen."""
        queue = await self.get(queue_id)
        pending = await self.db.execute(
            select(func.count(ScheduledAction.id)).where(
                ScheduledAction.group == queue.schedule_group,
                ScheduledAction.hook == HOOK_PROCESS_ITEM,
            )
        )
        return {
            "id": queue.id,
            "status": queue.status,
            "total": queue.total,
            "completed": queue.completed,
            "failed": queue.failed,
            "remaining": queue.remaining,
            "pending_items": pending.scalar() or 0,
            "progress_percent": queue.progress_percent,
            "has_errors": queue.has_errors,
            "current_product_id": queue.current_product_id,
            "started_at": queue.started_at,
            "completed_at": queue.completed_at,
        }
