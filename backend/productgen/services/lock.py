"""Single-flight lock: at most one queue is processing at any time.

The lock is the ``status`` column itself. Acquisition is one conditional
UPDATE that moves a queue into ``processing`` only while no other queue is
there, so two concurrent starts cannot both succeed. Leaving ``processing``
(pause, completion, failure) releases it.
"""

import logging
from typing import Any

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from productgen.models import GenerationQueue, QueueStatus

logger = logging.getLogger(__name__)


class SingleFlightLock:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def holder(self) -> int | None:
        """Id of the queue currently processing, if any."""
        result = await self.db.execute(
            select(GenerationQueue.id)
            .where(GenerationQueue.status == QueueStatus.PROCESSING.value)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def is_locked(self, exclude: int | None = None) -> bool:
        query = select(GenerationQueue.id).where(
            GenerationQueue.status == QueueStatus.PROCESSING.value
        )
        if exclude is not None:
            query = query.where(GenerationQueue.id != exclude)
        result = await self.db.execute(query.limit(1))
        return result.first() is not None

    async def try_acquire(
        self,
        queue_id: int,
        from_statuses: tuple[QueueStatus, ...] = (
            QueueStatus.DRAFT,
            QueueStatus.PAUSED,
            QueueStatus.FAILED,
        ),
        values: dict[str, Any] | None = None,
    ) -> bool:
        """
        Move the queue to processing if it is in one of ``from_statuses``
        and no other queue is processing.

        ``values`` are written in the same statement. Caller commits.
        """
        other = aliased(GenerationQueue)
        busy = exists().where(
            other.status == QueueStatus.PROCESSING.value,
            other.id != queue_id,
        )
        stmt = (
            update(GenerationQueue)
            .where(
                GenerationQueue.id == queue_id,
                GenerationQueue.status.in_([s.value for s in from_statuses]),
                ~busy,
            )
            .values(status=QueueStatus.PROCESSING.value, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        acquired = result.rowcount == 1
        if acquired:
            logger.info(f"Queue {queue_id} acquired the processing lock")
        return acquired
