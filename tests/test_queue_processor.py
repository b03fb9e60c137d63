"""Tests for starting, pausing and driving queues through batch ticks."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from productgen.exceptions import (
    InvalidTransition,
    NoMatchingProducts,
    QueueAlreadyProcessing,
    QueueError,
)
from productgen.models import GenerationQueue, ScheduledAction
from productgen.schemas.queue import QueueCreate
from productgen.services.events import QueueEvent
from productgen.services.queue_store import ItemOutcome, QueueStore
from productgen.services.scheduling import HOOK_PROCESS_BATCH, HOOK_PROCESS_ITEM, ActionScheduler

from conftest import run_dispatched

DESCRIPTION_ONLY = {"product_description": {"enabled": True}}


async def create_queue(db, **kwargs) -> GenerationQueue:
    kwargs.setdefault("task_config", DESCRIPTION_ONLY)
    return await QueueStore(db).create(QueueCreate(**kwargs))


async def run_tick(processor, dispatcher) -> int:
    [tick] = dispatcher.take(HOOK_PROCESS_BATCH)
    return await processor.process_batch(tick.args["queue_id"], tick.args["action_id"])


def record_events(events, kind=QueueEvent):
    seen = []
    events.on(kind, seen.append)
    return seen


class TestStartQueue:

    @pytest.mark.asyncio
    async def test_start_plans_and_schedules_first_tick(self, db, processor, dispatcher, make_product):
        for i in range(3):
            await make_product(f"P{i}")
        queue = await create_queue(db, delay=4)

        queue = await processor.start_queue(queue.id)

        assert queue.status == "processing"
        assert queue.total == 3
        assert (queue.completed, queue.failed) == (0, 0)
        assert len(queue.work_items) == 3
        assert queue.started_at is not None
        [tick] = dispatcher.calls
        assert tick.hook == HOOK_PROCESS_BATCH
        assert 3 < tick.delay <= 4

    @pytest.mark.asyncio
    async def test_configuration_error_leaves_queue_in_draft(self, db, processor, make_product):
        await make_product(categories=["Kitchen"])
        queue = await create_queue(db, query_selector={"categories": ["Garden"]})

        with pytest.raises(NoMatchingProducts):
            await processor.start_queue(queue.id)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "draft"
        assert queue.total == 0

    @pytest.mark.asyncio
    async def test_second_queue_is_locked_out(self, db, processor, make_product):
        """Starting while another queue processes fails and changes nothing."""
        await make_product()
        first = await create_queue(db)
        second = await create_queue(db)
        await processor.start_queue(first.id)

        with pytest.raises(QueueAlreadyProcessing):
            await processor.start_queue(second.id)

        second = await QueueStore(db).get(second.id)
        assert second.status == "draft"
        assert second.work_items == []
        assert second.total == 0

    @pytest.mark.asyncio
    async def test_completed_queue_cannot_start(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)
        await run_dispatched(processor, dispatcher)

        with pytest.raises(InvalidTransition):
            await processor.start_queue(queue.id)

    @pytest.mark.asyncio
    async def test_unschedulable_first_tick_fails_the_queue(self, db, processor, dispatcher, events, make_product):
        await make_product()
        queue = await create_queue(db)
        seen = record_events(events)
        dispatcher.fail_hooks.add(HOOK_PROCESS_BATCH)

        with pytest.raises(QueueError):
            await processor.start_queue(queue.id)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "failed"
        assert len(queue.work_items) == 1
        assert [e.kind for e in seen] == ["failed"]

    @pytest.mark.asyncio
    async def test_preview_caches_stats_without_starting(self, db, processor, make_product):
        await make_product("One")
        await make_product("Two")
        queue = await create_queue(db)

        stats = await processor.preview_queue(queue.id)

        assert stats.total_generations == 2
        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "draft"
        assert queue.preview_cache["total_generations"] == 2
        assert queue.work_items == []


class TestBatchTicks:

    @pytest.mark.asyncio
    async def test_batch_of_two_over_five_items(self, db, processor, dispatcher, make_product):
        for i in range(5):
            await make_product(f"P{i}")
        queue = await create_queue(db, batch_size=2, delay=3)
        await processor.start_queue(queue.id)
        store = QueueStore(db)

        assert await run_tick(processor, dispatcher) == 2
        items = dispatcher.take(HOOK_PROCESS_ITEM)
        assert [c.args["product_id"] for c in items] == [1, 2]
        assert items[0].delay == pytest.approx(0, abs=0.5)
        assert items[1].delay == pytest.approx(1, abs=0.5)
        assert len((await store.get(queue.id)).work_items) == 3

        assert await run_tick(processor, dispatcher) == 2
        assert len(dispatcher.take(HOOK_PROCESS_ITEM)) == 2
        assert len((await store.get(queue.id)).work_items) == 1

        assert await run_tick(processor, dispatcher) == 1
        assert len(dispatcher.take(HOOK_PROCESS_ITEM)) == 1
        assert (await store.get(queue.id)).work_items == []
        # the last tick does not schedule another
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_three_products_five_items_with_one_late_skip(
        self, db, processor, dispatcher, generator, make_product, mark_done
    ):
        """5 of 6 pairs are planned; one more is generated elsewhere before it runs."""
        p1 = await make_product("One")
        p2 = await make_product("Two")
        p3 = await make_product("Three")
        await mark_done(p2.id, "product_seo")
        queue = await create_queue(
            db,
            task_config={
                "product_description": {"enabled": True},
                "product_seo": {"enabled": True, "skip_if_generated": True},
            },
        )

        queue = await processor.start_queue(queue.id)
        assert queue.total == 5
        await mark_done(p3.id, "product_seo")
        await run_dispatched(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"
        assert (queue.total, queue.completed, queue.failed) == (5, 5, 0)
        assert len(generator.calls) == 4
        results, _ = await QueueStore(db).results(queue.id)
        skipped = [r for r in results if r.skipped]
        assert [(r.product_id, r.task_id) for r in skipped] == [(p3.id, "product_seo")]
        assert skipped[0].message == "Skipped (already generated)"
        assert p1.id not in [r.product_id for r in skipped]

    @pytest.mark.asyncio
    async def test_one_failure_still_completes(self, db, processor, dispatcher, events, make_product):
        for i in range(4):
            await make_product(f"P{i}")
        processor.executor.generator.fail_on = {1}
        seen = record_events(events)
        queue = await create_queue(db)

        await processor.start_queue(queue.id)
        await run_dispatched(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"
        assert (queue.total, queue.completed, queue.failed) == (4, 3, 1)
        assert queue.has_errors is True
        assert [e.kind for e in seen] == ["started", "completed"]
        assert seen[-1].data == {"total": 4, "completed": 3, "failed": 1}
        failures, _ = await QueueStore(db).results(queue.id, success=False)
        assert "upstream failure" in failures[0].message

    @pytest.mark.asyncio
    async def test_tick_for_queue_not_processing_does_nothing(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)

        assert await processor.process_batch(queue.id) == 0
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_tick_that_cannot_be_claimed_does_nothing(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)

        assert await processor.process_batch(queue.id, "not-a-scheduled-action") == 0
        assert len((await QueueStore(db).get(queue.id)).work_items) == 1

    @pytest.mark.asyncio
    async def test_delivered_twice_runs_once(self, db, processor, dispatcher, make_product):
        await make_product()
        await make_product()
        queue = await create_queue(db, batch_size=1)
        await processor.start_queue(queue.id)
        [tick] = dispatcher.take(HOOK_PROCESS_BATCH)

        assert await processor.process_batch(queue.id, tick.args["action_id"]) == 1
        assert await processor.process_batch(queue.id, tick.args["action_id"]) == 0
        assert len(dispatcher.take(HOOK_PROCESS_ITEM)) == 1

    @pytest.mark.asyncio
    async def test_item_that_cannot_be_scheduled_is_recorded_failed(self, db, processor, dispatcher, make_product):
        await make_product()
        await make_product()
        queue = await create_queue(db, batch_size=2)
        await processor.start_queue(queue.id)
        dispatcher.fail_hooks.add(HOOK_PROCESS_ITEM)

        await run_tick(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"
        assert queue.failed == 2
        results, _ = await QueueStore(db).results(queue.id)
        assert all(r.message.startswith("Scheduling failed") for r in results)

    @pytest.mark.asyncio
    async def test_lost_next_tick_fails_queue_and_restart_finishes(
        self, db, processor, dispatcher, generator, make_product
    ):
        for i in range(5):
            await make_product(f"P{i}")
        queue = await create_queue(db, batch_size=2)
        await processor.start_queue(queue.id)
        dispatcher.fail_hooks.add(HOOK_PROCESS_BATCH)

        await run_tick(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "failed"
        # the two scheduled items went back to the front
        assert [i["product_id"] for i in queue.work_items] == [1, 2, 3, 4, 5]

        dispatcher.fail_hooks.clear()
        await processor.start_queue(queue.id)
        await run_dispatched(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"
        assert queue.completed == 5
        assert len(generator.calls) == 5


class TestPauseAndResume:

    @pytest.mark.asyncio
    async def test_pause_requeues_unstarted_items_and_resume_finishes(
        self, db, processor, dispatcher, generator, events, make_product
    ):
        for i in range(5):
            await make_product(f"P{i}")
        seen = record_events(events)
        queue = await create_queue(db, batch_size=2)
        await processor.start_queue(queue.id)
        await run_tick(processor, dispatcher)
        first, second = dispatcher.take(HOOK_PROCESS_ITEM)
        await processor.run_action(first.hook, first.args)

        queue = await processor.pause_queue(queue.id)

        assert queue.status == "paused"
        assert queue.completed == 1
        assert [i["product_id"] for i in queue.work_items] == [2, 3, 4, 5]
        assert second.backend_id in dispatcher.revoked

        # a cancelled callback that still fires is ignored
        assert await processor.run_action(second.hook, second.args) is None
        dispatcher.take()

        queue = await processor.start_queue(queue.id)
        assert queue.total == 5
        assert queue.completed == 1
        await run_dispatched(processor, dispatcher)

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"
        assert (queue.completed, queue.failed) == (5, 0)
        assert len(generator.calls) == 5
        assert [e.kind for e in seen] == ["started", "paused", "started", "completed"]
        assert seen[2].data["resumed"] is True

    @pytest.mark.asyncio
    async def test_pause_requires_processing(self, db, processor):
        queue = await create_queue(db)
        with pytest.raises(InvalidTransition):
            await processor.pause_queue(queue.id)

    @pytest.mark.asyncio
    async def test_resume_with_nothing_left_completes(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)
        await run_tick(processor, dispatcher)
        [item] = dispatcher.take(HOOK_PROCESS_ITEM)
        await processor.pause_queue(queue.id)

        # the item was already running when the pause landed and still records
        await db.execute(
            update(GenerationQueue).where(GenerationQueue.id == queue.id).values(work_items=[])
        )
        await db.commit()
        store = QueueStore(db)
        await store.record_result(
            queue.id, item.args["product_id"], item.args["task_id"], ItemOutcome(success=True)
        )

        queue = await processor.start_queue(queue.id)
        assert queue.status == "completed"

    @pytest.mark.asyncio
    async def test_delete_cancels_pending_actions(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)
        await processor.pause_queue(queue.id)

        await processor.delete_queue(queue.id)

        assert (await processor.lock_status()) == {"locked": False, "queue_id": None}
        assert await QueueStore(db).find(queue.id) is None


class TestRecoverStalled:

    async def lose_first_tick(self, db, processor, dispatcher, make_product, idle_seconds):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)
        [tick] = dispatcher.take(HOOK_PROCESS_BATCH)
        # the tick was consumed by a worker that died before dispatching
        scheduler = ActionScheduler(db, dispatcher)
        await scheduler.claim(tick.action_id)
        await scheduler.finish(tick.action_id)
        await db.execute(
            update(GenerationQueue)
            .where(GenerationQueue.id == queue.id)
            .values(updated_at=datetime.now(UTC) - timedelta(seconds=idle_seconds))
        )
        await db.commit()
        return queue

    @pytest.mark.asyncio
    async def test_idle_queue_gets_a_new_tick(self, db, processor, dispatcher, make_product):
        queue = await self.lose_first_tick(db, processor, dispatcher, make_product, 3600)

        assert await processor.recover_stalled() == queue.id

        [tick] = dispatcher.calls
        assert tick.hook == HOOK_PROCESS_BATCH
        await run_dispatched(processor, dispatcher)
        assert (await QueueStore(db).get(queue.id)).status == "completed"

    @pytest.mark.asyncio
    async def test_recently_active_queue_is_left_alone(self, db, processor, dispatcher, make_product):
        await self.lose_first_tick(db, processor, dispatcher, make_product, 5)

        assert await processor.recover_stalled() is None
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_queue_with_pending_actions_is_left_alone(self, db, processor, dispatcher, make_product):
        await make_product()
        queue = await create_queue(db)
        await processor.start_queue(queue.id)

        assert await processor.recover_stalled() is None

    @pytest.mark.asyncio
    async def test_nothing_processing(self, processor):
        assert await processor.recover_stalled() is None


class DyingGenerator:
    """Generator whose worker is killed mid-call."""

    async def generate(self, *args, **kwargs):
        raise asyncio.CancelledError()


class RecoveringGenerator:
    """Generator that is still running when stall recovery releases its claim."""

    def __init__(self, db, processor):
        self.db = db
        self.processor = processor
        self.recovered = None

    async def generate(self, *args, **kwargs):
        await backdate_claims(self.db, timedelta(hours=1))
        self.recovered = await self.processor.recover_stalled()
        return "Late copy"


async def backdate_claims(db, age):
    await db.execute(
        update(ScheduledAction)
        .where(ScheduledAction.claimed_at.is_not(None))
        .values(claimed_at=datetime.now(UTC) - age)
    )
    await db.commit()


class TestLostItems:

    async def kill_first_item(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        queue = await create_queue(db, delay=0)
        await processor.start_queue(queue.id)
        await run_tick(processor, dispatcher)
        [item] = dispatcher.take(HOOK_PROCESS_ITEM)

        processor.executor.generator = DyingGenerator()
        with pytest.raises(asyncio.CancelledError):
            await processor.run_action(item.hook, item.args)
        processor.executor.generator = generator
        return queue, product, item

    @pytest.mark.asyncio
    async def test_item_that_never_recorded_keeps_its_claim(
        self, db, processor, dispatcher, generator, make_product
    ):
        queue, _, _ = await self.kill_first_item(db, processor, dispatcher, generator, make_product)

        status = await QueueStore(db).status(queue.id)
        assert status["status"] == "processing"
        assert status["pending_items"] == 1
        assert status["completed"] + status["failed"] == 0
        # a claim younger than the stall timeout is still running as far as anyone knows
        assert await processor.recover_stalled() is None
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_stale_claim_is_requeued_and_completes(
        self, db, processor, dispatcher, generator, make_product
    ):
        queue, product, item = await self.kill_first_item(
            db, processor, dispatcher, generator, make_product
        )
        await backdate_claims(db, timedelta(hours=1))

        assert await processor.recover_stalled() == queue.id

        refreshed = await QueueStore(db).get(queue.id)
        assert refreshed.work_items == [{"product_id": product.id, "task_id": "product_description"}]
        # the dead worker's action can no longer run
        assert await processor.run_action(item.hook, item.args) is None

        await run_dispatched(processor, dispatcher)
        refreshed = await QueueStore(db).get(queue.id)
        assert refreshed.status == "completed"
        assert (refreshed.completed, refreshed.failed) == (1, 0)

    @pytest.mark.asyncio
    async def test_requeued_item_survives_pause_and_resume(
        self, db, processor, dispatcher, generator, make_product
    ):
        queue, _, _ = await self.kill_first_item(db, processor, dispatcher, generator, make_product)
        await backdate_claims(db, timedelta(hours=1))
        await processor.recover_stalled()

        paused = await processor.pause_queue(queue.id)
        assert len(paused.work_items) == 1
        await processor.start_queue(queue.id)
        await run_dispatched(processor, dispatcher)

        refreshed = await QueueStore(db).get(queue.id)
        assert refreshed.status == "completed"
        assert refreshed.completed == 1

    @pytest.mark.asyncio
    async def test_lost_item_is_requeued_while_other_items_are_pending(
        self, db, processor, dispatcher, generator, make_product
    ):
        for i in range(2):
            await make_product(f"Product {i}")
        queue = await create_queue(db, delay=0, batch_size=2)
        await processor.start_queue(queue.id)
        await run_tick(processor, dispatcher)
        first, second = dispatcher.take(HOOK_PROCESS_ITEM)

        processor.executor.generator = DyingGenerator()
        with pytest.raises(asyncio.CancelledError):
            await processor.run_action(first.hook, first.args)
        processor.executor.generator = generator
        await backdate_claims(db, timedelta(hours=1))

        # no tick is left to pick the item up, so recovery schedules one
        assert await processor.recover_stalled() == queue.id
        [tick] = dispatcher.calls
        assert tick.hook == HOOK_PROCESS_BATCH

        await processor.run_action(second.hook, second.args)
        await run_dispatched(processor, dispatcher)
        refreshed = await QueueStore(db).get(queue.id)
        assert refreshed.status == "completed"
        assert (refreshed.completed, refreshed.failed) == (2, 0)

    @pytest.mark.asyncio
    async def test_item_finishing_after_release_is_not_recorded(
        self, db, processor, dispatcher, generator, make_product
    ):
        await make_product()
        queue = await create_queue(db, delay=0)
        await processor.start_queue(queue.id)
        await run_tick(processor, dispatcher)
        [item] = dispatcher.take(HOOK_PROCESS_ITEM)

        slow = RecoveringGenerator(db, processor)
        processor.executor.generator = slow
        assert await processor.run_action(item.hook, item.args) is None
        processor.executor.generator = generator
        assert slow.recovered == queue.id

        results, total = await QueueStore(db).results(queue.id)
        assert total == 0

        await run_dispatched(processor, dispatcher)
        refreshed = await QueueStore(db).get(queue.id)
        assert refreshed.status == "completed"
        assert (refreshed.completed, refreshed.failed) == (1, 0)
