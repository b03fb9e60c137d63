"""Queue processor - starts, pauses and drives bulk generation queues.

A running queue advances through two kinds of scheduled callbacks in the
queue's schedule group:

- a batch tick (``process_batch``) drains ``batch_size`` work items from the
  front of the queue, schedules one item execution per item a second apart,
  and schedules the next tick while work remains;
- an item execution (``execute_item``) generates one (product, task) pair and
  records its outcome; the outcome that resolves the last item completes the
  queue.

Callbacks are claimed before they run, so a callback cancelled by a pause or
delivered twice by the backend does nothing. An item keeps its claim until
its outcome is recorded, which lets ``recover_stalled`` requeue items lost
with a dead worker.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from productgen.config import settings
from productgen.exceptions import (
    InvalidTransition,
    QueueAlreadyProcessing,
    QueueError,
    QueueLocked,
)
from productgen.models import QUEUE_TRANSITIONS, GenerationQueue, QueueStatus
from productgen.services.events import EventHub, QueueEvent
from productgen.services.item_executor import ItemExecutor
from productgen.services.lock import SingleFlightLock
from productgen.services.planner import PlanStats, WorkItem, plan_work
from productgen.services.queue_store import ItemOutcome, QueueStore
from productgen.services.scheduling import (
    HOOK_PROCESS_BATCH,
    HOOK_PROCESS_ITEM,
    ActionScheduler,
    Dispatcher,
    as_utc,
)
from productgen.templates import TemplateRegistry

logger = logging.getLogger(__name__)


class QueueProcessor:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        dispatcher: Dispatcher,
        registry: TemplateRegistry,
        generator,
        events: EventHub | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.registry = registry
        self.events = events or EventHub()
        self.executor = ItemExecutor(session_factory, dispatcher, registry, generator, self.events)

    # Admin operations. These raise ProductGenError subclasses to the caller.

    async def preview_queue(self, queue_id: int) -> PlanStats:
        """Dry run: plan the queue without changing its state and cache the stats."""
        async with self.session_factory() as db:
            store = QueueStore(db)
            queue = await store.get(queue_id)
            plan = await plan_work(
                db, queue.query_selector, queue.task_config, queue.task_options
            )
            await store.save_preview(queue_id, plan.stats.to_dict())
            return plan.stats

    async def start_queue(self, queue_id: int) -> GenerationQueue:
        """
        Start a draft queue, or resume a paused or failed one.

        A draft is planned from its selector and starts with fresh counters
        and results. A resumed queue continues from its remaining work items
        without re-planning.

        Raises:
            QueueNotFound, InvalidTransition, QueueAlreadyProcessing,
            ConfigurationError subclasses from planning, QueueError if the
            first batch cannot be scheduled
        """
        async with self.session_factory() as db:
            store = QueueStore(db)
            lock = SingleFlightLock(db)

            queue = await store.get(queue_id)
            current = QueueStatus(queue.status)
            if QueueStatus.PROCESSING not in QUEUE_TRANSITIONS[current]:
                raise InvalidTransition(f"A {current.value} queue cannot be started.")
            if await lock.is_locked(exclude=queue_id):
                raise QueueAlreadyProcessing()

            now = datetime.now(UTC)
            values: dict[str, Any] = {}
            if current == QueueStatus.DRAFT:
                plan = await plan_work(
                    db, queue.query_selector, queue.task_config, queue.task_options
                )
                await store.clear_results(queue_id)
                values = {
                    "work_items": [item.to_dict() for item in plan.work_items],
                    "total": len(plan.work_items),
                    "completed": 0,
                    "failed": 0,
                    "current_product_id": None,
                    "started_at": now,
                    "completed_at": None,
                    "preview_cache": plan.stats.to_dict(),
                }
            elif queue.started_at is None:
                values["started_at"] = now

            if not await lock.try_acquire(queue_id, from_statuses=(current,), values=values):
                await db.rollback()
                queue = await store.get(queue_id)
                if queue.status != current.value:
                    raise InvalidTransition(f"Queue {queue_id} changed status concurrently.")
                raise QueueAlreadyProcessing()
            await db.commit()

            queue = await store.get(queue_id)
            resumed = current != QueueStatus.DRAFT
            logger.info(
                f"{'Resumed' if resumed else 'Started'} queue {queue_id}: "
                f"{len(queue.work_items)} items to dispatch, {queue.remaining} unresolved"
            )

            if not queue.work_items:
                # everything was dispatched before the pause
                if await store.complete_if_done(queue_id):
                    await self._emit_completed(store, queue_id)
                return await store.get(queue_id)

            try:
                await ActionScheduler(db, self.dispatcher).schedule_in(
                    queue.delay,
                    HOOK_PROCESS_BATCH,
                    {"queue_id": queue_id},
                    queue.schedule_group,
                )
            except Exception as e:
                logger.error(f"Could not schedule first batch of queue {queue_id}: {e}")
                await self._fail(db, store, queue_id, f"Scheduling failed: {e}")
                raise QueueError(f"Could not schedule the first batch: {e}") from e

            await self.events.emit(
                QueueEvent("started", queue_id, {"total": queue.total, "resumed": resumed})
            )
            return await store.get(queue_id)

    async def pause_queue(self, queue_id: int) -> GenerationQueue:
        """
        Pause a processing queue.

        Pending ticks and item executions are cancelled. Items that were
        scheduled but had not started go back to the front of the work list
        in their original order. Items already running finish and record.
        """
        async with self.session_factory() as db:
            store = QueueStore(db)
            queue = await store.get(queue_id)
            if not queue.is_processing:
                raise InvalidTransition("Only a processing queue can be paused.")

            queue, requeued = await self._halt(db, store, queue_id, QueueStatus.PAUSED)
            logger.info(
                f"Paused queue {queue_id}: {requeued} scheduled items returned, "
                f"{len(queue.work_items)} items waiting"
            )
            await self.events.emit(QueueEvent("paused", queue_id, {"requeued": requeued}))
            return queue

    async def delete_queue(self, queue_id: int) -> None:
        async with self.session_factory() as db:
            store = QueueStore(db)
            queue = await store.get(queue_id)
            if queue.is_processing:
                raise QueueLocked()
            await ActionScheduler(db, self.dispatcher).cancel_group(queue.schedule_group)
            await store.delete(queue_id)

    async def lock_status(self) -> dict[str, Any]:
        async with self.session_factory() as db:
            holder = await SingleFlightLock(db).holder()
            return {"locked": holder is not None, "queue_id": holder}

    async def recover_stalled(self) -> int | None:
        """
        Get a processing queue moving again after work was lost.

        Items whose claim is older than ``stall_timeout`` and that recorded no
        result died with their worker; they go back to the front of the work
        list. A queue that lost work this way, or that has had nothing
        scheduled and no change for ``stall_timeout`` seconds, gets a new
        batch tick.

        Returns the id of the recovered queue, if any.
        """
        async with self.session_factory() as db:
            holder = await SingleFlightLock(db).holder()
            if holder is None:
                return None
            store = QueueStore(db)
            queue = await store.get(holder)
            scheduler = ActionScheduler(db, self.dispatcher)
            timeout = timedelta(seconds=settings.stall_timeout)

            released = await scheduler.release_stale(queue.schedule_group, timeout)
            requeued = []
            for action in released:
                if action.hook != HOOK_PROCESS_ITEM:
                    continue
                item = WorkItem(int(action.args["product_id"]), str(action.args["task_id"]))
                if not await store.has_result(holder, item.product_id, item.task_id):
                    requeued.append(item.to_dict())
            if released:
                await store.set_work_items(holder, requeued + list(queue.work_items or []))
                await db.commit()
                queue = await store.get(holder)
                logger.warning(f"Queue {holder}: requeued {len(requeued)} items lost with their worker")
            else:
                idle = datetime.now(UTC) - as_utc(queue.updated_at)
                if idle < timeout:
                    return None
                if await scheduler.pending(queue.schedule_group):
                    return None

            if not queue.work_items:
                if await store.complete_if_done(holder):
                    await self._emit_completed(store, holder)
                return holder if released else None
            if await scheduler.pending(queue.schedule_group, HOOK_PROCESS_BATCH):
                # the next tick drains the requeued items
                return holder

            logger.warning(f"Queue {holder} stalled, rescheduling batch")
            await scheduler.schedule_in(0, HOOK_PROCESS_BATCH, {"queue_id": holder}, queue.schedule_group)
            return holder

    # Scheduled callbacks. These never raise.

    async def process_batch(self, queue_id: int, action_id: str | None = None) -> int:
        """Batch tick. Returns the number of items taken off the work list."""
        try:
            async with self.session_factory() as db:
                return await self._process_batch(db, queue_id, action_id)
        except Exception:
            logger.exception(f"Batch tick for queue {queue_id} crashed")
            return 0

    async def execute_item(
        self,
        queue_id: int,
        product_id: int,
        task_id: str,
        action_id: str | None = None,
        attempt: int = 1,
    ) -> ItemOutcome | None:
        return await self.executor.execute(queue_id, product_id, task_id, action_id, attempt)

    async def run_action(self, hook: str, args: dict[str, Any]) -> Any:
        """Run a scheduled hook by name with its stored arguments."""
        if hook == HOOK_PROCESS_BATCH:
            return await self.process_batch(args["queue_id"], args.get("action_id"))
        if hook == HOOK_PROCESS_ITEM:
            return await self.execute_item(
                args["queue_id"],
                args["product_id"],
                args["task_id"],
                action_id=args.get("action_id"),
                attempt=args.get("attempt", 1),
            )
        logger.error(f"Unknown hook: {hook}")
        return None

    async def _process_batch(self, db: AsyncSession, queue_id: int, action_id: str | None) -> int:
        store = QueueStore(db)
        queue = await store.find(queue_id)
        if not queue or not queue.is_processing:
            logger.warning(f"Skipping batch tick: queue {queue_id} is not processing")
            return 0

        scheduler = ActionScheduler(db, self.dispatcher)
        if action_id:
            # a tick is consumed as it starts; its work list changes commit on their own
            claimed = await scheduler.claim(action_id) and await scheduler.finish(action_id)
            await db.commit()
            if not claimed:
                logger.warning(f"Skipping batch tick of queue {queue_id}: action {action_id} was cancelled")
                return 0

        items = [WorkItem.from_dict(d) for d in queue.work_items or []]
        if not items:
            if await store.complete_if_done(queue_id):
                await self._emit_completed(store, queue_id)
            return 0

        batch, remaining = items[:queue.batch_size], items[queue.batch_size:]
        now = datetime.now(UTC)
        group = queue.schedule_group

        actions = [
            scheduler.add(
                HOOK_PROCESS_ITEM,
                {"queue_id": queue_id, "product_id": item.product_id, "task_id": item.task_id},
                group,
                now + timedelta(seconds=i * settings.item_stagger_seconds),
            )
            for i, item in enumerate(batch)
        ]
        next_tick = None
        if remaining:
            next_tick = scheduler.add(
                HOOK_PROCESS_BATCH,
                {"queue_id": queue_id},
                group,
                now + timedelta(seconds=queue.delay),
            )
        await store.set_work_items(queue_id, [item.to_dict() for item in remaining])
        # rows and the shortened work list land together before anything runs
        await db.commit()

        failures = await scheduler.dispatch(actions + ([next_tick] if next_tick else []))
        dispatched = len(batch)
        tick_failed = None
        for failure in failures:
            if failure.action is next_tick:
                tick_failed = failure.error
                continue
            dispatched -= 1
            args = failure.action.args
            finished = await store.record_result(
                queue_id,
                args["product_id"],
                args["task_id"],
                ItemOutcome(success=False, message=f"Scheduling failed: {failure.error}"),
            )
            if finished:
                await self._emit_completed(store, queue_id)

        if tick_failed is not None:
            logger.error(f"Could not schedule next batch of queue {queue_id}: {tick_failed}")
            await self._fail(db, store, queue_id, f"Scheduling failed: {tick_failed}")

        logger.info(
            f"Queue {queue_id}: dispatched {dispatched} items, {len(remaining)} remaining"
        )
        return len(batch)

    async def _halt(
        self,
        db: AsyncSession,
        store: QueueStore,
        queue_id: int,
        status: QueueStatus,
    ) -> tuple[GenerationQueue, int]:
        """
        Move a processing queue to ``status`` and cancel its pending actions.

        Item executions that had not started go back to the front of the work
        list in their scheduled order. Returns the queue and how many items
        were returned.
        """
        queue = await store.transition(queue_id, status, values={"current_product_id": None})
        cancelled = await ActionScheduler(db, self.dispatcher).cancel_group(queue.schedule_group)
        requeued = [
            WorkItem(int(a.args["product_id"]), str(a.args["task_id"])).to_dict()
            for a in cancelled
            if a.hook == HOOK_PROCESS_ITEM
        ]
        await store.set_work_items(queue_id, requeued + list(queue.work_items or []))
        await db.commit()
        return await store.get(queue_id), len(requeued)

    async def _fail(self, db: AsyncSession, store: QueueStore, queue_id: int, reason: str) -> None:
        try:
            await self._halt(db, store, queue_id, QueueStatus.FAILED)
        except InvalidTransition as e:
            await db.rollback()
            logger.warning(f"Queue {queue_id} not marked failed: {e}")
            return
        await self.events.emit(QueueEvent("failed", queue_id, {"reason": reason}))

    async def _emit_completed(self, store: QueueStore, queue_id: int) -> None:
        queue = await store.get(queue_id)
        await self.events.emit(QueueEvent.completed(queue))
