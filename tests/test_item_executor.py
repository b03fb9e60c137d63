"""Tests for executing single work items."""

import pytest
from sqlalchemy import select

from productgen.models import GenerationRecord
from productgen.schemas.queue import QueueCreate
from productgen.services.events import ContentGenerated
from productgen.services.item_executor import clamp_temperature, retry_delay
from productgen.services.queue_store import QueueStore
from productgen.services.scheduling import HOOK_PROCESS_ITEM, ActionScheduler
from productgen.services.settings_store import set_brand_voice

from conftest import run_dispatched


async def started_queue(db, processor, dispatcher, task_id="product_description", **kwargs):
    """Create and start a queue, discarding its first batch tick."""
    config = kwargs.pop("task_config", {task_id: {"enabled": True}})
    queue = await QueueStore(db).create(QueueCreate(task_config=config, **kwargs))
    queue = await processor.start_queue(queue.id)
    dispatcher.take()
    return queue


class TestHelpers:

    def test_clamp_temperature(self):
        assert clamp_temperature(-1) == 0.0
        assert clamp_temperature(5) == 2.0
        assert clamp_temperature("0.4") == 0.4

    def test_retry_delay_doubles(self):
        assert [retry_delay(n) for n in (1, 2, 3)] == [30, 60, 120]


class TestItemExecutor:

    @pytest.mark.asyncio
    async def test_success_records_generation_and_emits_content(
        self, db, processor, dispatcher, generator, events, make_product
    ):
        product = await make_product("Linen Apron")
        seen = []
        events.on(ContentGenerated, seen.append)
        queue = await started_queue(
            db, processor, dispatcher,
            task_config={"product_description": {"enabled": True, "temperature": 0.3}},
        )

        outcome = await processor.execute_item(queue.id, product.id, "product_description")

        assert outcome.success
        assert outcome.message == "Generated successfully"
        [call] = generator.calls
        assert call["temperature"] == 0.3
        assert call["max_tokens"] == 2000
        assert "Linen Apron" in call["user_prompt"]
        assert seen == [ContentGenerated("Generated copy", "product_description", product.id)]
        record = (await db.execute(select(GenerationRecord))).scalar_one()
        assert (record.product_id, record.task_id) == (product.id, "product_description")

        queue = await QueueStore(db).get(queue.id)
        assert queue.status == "completed"

    @pytest.mark.asyncio
    async def test_brand_voice_is_part_of_the_prompt(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        await set_brand_voice(db, "Warm and playful")
        await db.commit()
        queue = await started_queue(db, processor, dispatcher)

        await processor.execute_item(queue.id, product.id, "product_description")

        assert "Brand voice: Warm and playful" in generator.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_unknown_template_fails_the_item(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        queue = await started_queue(db, processor, dispatcher, task_id="x")

        outcome = await processor.execute_item(queue.id, product.id, "x")

        assert not outcome.success
        assert outcome.message == 'Template "x" not found.'
        assert generator.calls == []
        queue = await QueueStore(db).get(queue.id)
        assert (queue.status, queue.failed) == ("completed", 1)

    @pytest.mark.asyncio
    async def test_deleted_product_fails_the_item(self, db, processor, dispatcher, make_product):
        product = await make_product()
        product_id = product.id
        queue = await started_queue(db, processor, dispatcher)
        await db.delete(product)
        await db.commit()

        outcome = await processor.execute_item(queue.id, product_id, "product_description")

        assert not outcome.success
        assert outcome.message == f"Product {product_id} not found"

    @pytest.mark.asyncio
    async def test_queue_not_processing_records_nothing(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        queue = await started_queue(db, processor, dispatcher)
        await processor.pause_queue(queue.id)

        assert await processor.execute_item(queue.id, product.id, "product_description") is None
        assert generator.calls == []
        results, total = await QueueStore(db).results(queue.id)
        assert total == 0

    @pytest.mark.asyncio
    async def test_failure_without_retry_is_final(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        generator.fail_on = {0}
        queue = await started_queue(db, processor, dispatcher)

        outcome = await processor.execute_item(queue.id, product.id, "product_description")

        assert not outcome.success
        assert outcome.attempts == 1
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_retry_after_failure_succeeds(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        generator.fail_on = {0}
        queue = await started_queue(db, processor, dispatcher, retry_failed=True)

        assert await processor.execute_item(queue.id, product.id, "product_description") is None

        [retry] = dispatcher.calls
        assert retry.hook == HOOK_PROCESS_ITEM
        assert retry.args["attempt"] == 2
        assert retry.delay == pytest.approx(30, abs=1)
        assert (await QueueStore(db).get(queue.id)).status == "processing"

        await run_dispatched(processor, dispatcher)

        [result], _ = await QueueStore(db).results(queue.id)
        assert result.success
        assert result.attempts == 2
        assert (await QueueStore(db).get(queue.id)).status == "completed"

    @pytest.mark.asyncio
    async def test_retry_takes_over_the_claim(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        generator.fail_on = {0}
        queue = await started_queue(db, processor, dispatcher, retry_failed=True)
        scheduler = ActionScheduler(db, dispatcher)
        args = {"queue_id": queue.id, "product_id": product.id, "task_id": "product_description"}
        action_id = await scheduler.schedule_in(0, HOOK_PROCESS_ITEM, args, queue.schedule_group)
        dispatcher.take()

        assert await processor.run_action(HOOK_PROCESS_ITEM, {**args, "action_id": action_id}) is None

        [retry] = await scheduler.pending(queue.schedule_group, HOOK_PROCESS_ITEM)
        assert retry.id != action_id
        assert retry.claimed_at is None
        assert retry.args["attempt"] == 2

    @pytest.mark.asyncio
    async def test_retries_give_up_after_max_attempts(self, db, processor, dispatcher, generator, make_product):
        product = await make_product()
        generator.fail_on = {0, 1, 2, 3}
        queue = await started_queue(db, processor, dispatcher, retry_failed=True)

        await processor.execute_item(queue.id, product.id, "product_description")
        await run_dispatched(processor, dispatcher)

        assert len(generator.calls) == 3
        [result], _ = await QueueStore(db).results(queue.id)
        assert not result.success
        assert result.attempts == 3
        queue = await QueueStore(db).get(queue.id)
        assert (queue.status, queue.failed) == ("completed", 1)
