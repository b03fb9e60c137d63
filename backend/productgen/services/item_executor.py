"""Item executor - runs one (product, task) generation for a queue."""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from productgen.config import settings
from productgen.exceptions import GenerationError, ItemError, ProductNotFound
from productgen.models import GenerationQueue, Product
from productgen.schemas.queue import TaskSettings
from productgen.services.events import ContentGenerated, EventHub, QueueEvent
from productgen.services.generation_records import has_generation, mark_generated
from productgen.services.queue_store import ItemOutcome, QueueStore
from productgen.services.scheduling import HOOK_PROCESS_ITEM, ActionScheduler, Dispatcher
from productgen.services.settings_store import get_brand_voice
from productgen.templates import TemplateRegistry

logger = logging.getLogger(__name__)


def clamp_temperature(value: float) -> float:
    return max(0.0, min(2.0, float(value)))


def retry_delay(attempt: int) -> int:
    """Seconds before retrying after the given failed attempt."""
    return settings.retry_base_delay * 2 ** (attempt - 1)


class ItemExecutor:
    """
    Executes scheduled work items.

    Every path that reaches a terminal outcome records it on the queue; item
    errors become failed results instead of exceptions.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        dispatcher: Dispatcher,
        registry: TemplateRegistry,
        generator,
        events: EventHub,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.registry = registry
        self.generator = generator
        self.events = events

    async def execute(
        self,
        queue_id: int,
        product_id: int,
        task_id: str,
        action_id: str | None = None,
        attempt: int = 1,
    ) -> ItemOutcome | None:
        """
        Run one work item. Never raises.

        Returns the recorded outcome, or None when nothing was recorded
        (queue not processing, action already claimed or cancelled, claim
        released by stall recovery, or a retry was scheduled).
        """
        try:
            async with self.session_factory() as db:
                return await self._execute(db, queue_id, product_id, task_id, action_id, attempt)
        except Exception:
            logger.exception(f"Item {product_id}/{task_id} of queue {queue_id} crashed")
            return None

    async def _execute(
        self,
        db: AsyncSession,
        queue_id: int,
        product_id: int,
        task_id: str,
        action_id: str | None,
        attempt: int,
    ) -> ItemOutcome | None:
        store = QueueStore(db)
        queue = await store.find(queue_id)
        if not queue or not queue.is_processing:
            logger.warning(f"Skipping item {product_id}/{task_id}: queue {queue_id} is not processing")
            return None

        scheduler = ActionScheduler(db, self.dispatcher)
        if action_id:
            claimed = await scheduler.claim(action_id)
            await db.commit()
            if not claimed:
                logger.warning(f"Skipping item {product_id}/{task_id}: action {action_id} was cancelled")
                return None

        await store.set_current_product(queue_id, product_id)

        try:
            outcome = await self._generate(db, queue, product_id, task_id, attempt)
        except ItemError as e:
            outcome = ItemOutcome(success=False, message=e.message, attempts=attempt)
        except Exception as e:
            logger.exception(f"Unexpected error generating {task_id} for product {product_id}")
            await db.rollback()
            outcome = ItemOutcome(success=False, message=f"Unexpected error: {e}", attempts=attempt)

        if outcome is None:
            # the retry action now carries the item
            if action_id:
                await scheduler.finish(action_id)
                await db.commit()
            return None

        if not outcome.success:
            logger.warning(f"Queue {queue_id}: {task_id} failed for product {product_id}: {outcome.message}")

        # finishing the claim commits with the result
        if action_id and not await scheduler.finish(action_id):
            await db.rollback()
            logger.warning(
                f"Not recording item {product_id}/{task_id}: claim {action_id} was released "
                f"and the item requeued"
            )
            return None

        if await store.record_result(queue_id, product_id, task_id, outcome):
            queue = await store.get(queue_id)
            await self.events.emit(QueueEvent.completed(queue))
        return outcome

    async def _generate(
        self,
        db: AsyncSession,
        queue: GenerationQueue,
        product_id: int,
        task_id: str,
        attempt: int,
    ) -> ItemOutcome | None:
        config = TaskSettings.from_config(queue.task_config.get(task_id))
        self.registry.get(task_id)

        product = await db.get(Product, product_id)
        if not product:
            raise ProductNotFound(f"Product {product_id} not found")

        # generation may have happened since the queue was planned
        if config.skip_if_generated and await has_generation(db, product_id, task_id):
            return ItemOutcome(
                success=True,
                skipped=True,
                message="Skipped (already generated)",
                attempts=attempt,
            )

        context = {}
        brand_voice = await get_brand_voice(db)
        if brand_voice:
            context["brand_voice"] = brand_voice

        prompt = self.registry.render(task_id, product, context)

        try:
            text = await self.generator.generate(
                prompt.system_prompt,
                prompt.user_prompt,
                temperature=clamp_temperature(config.temperature),
                max_tokens=settings.max_tokens,
            )
        except GenerationError as e:
            if queue.retry_failed and attempt < settings.retry_max_attempts:
                if await self._schedule_retry(db, queue, product_id, task_id, attempt):
                    logger.warning(
                        f"Queue {queue.id}: {task_id} for product {product_id} failed "
                        f"(attempt {attempt}), retrying: {e}"
                    )
                    return None
            raise

        await mark_generated(db, product_id, task_id)
        await db.commit()

        await self.events.emit(ContentGenerated(text=text, task_id=task_id, product_id=product_id))
        logger.info(f"Queue {queue.id}: generated {task_id} for product {product_id}")
        return ItemOutcome(success=True, message="Generated successfully", attempts=attempt)

    async def _schedule_retry(
        self,
        db: AsyncSession,
        queue: GenerationQueue,
        product_id: int,
        task_id: str,
        attempt: int,
    ) -> bool:
        scheduler = ActionScheduler(db, self.dispatcher)
        try:
            await scheduler.schedule_in(
                retry_delay(attempt),
                HOOK_PROCESS_ITEM,
                {
                    "queue_id": queue.id,
                    "product_id": product_id,
                    "task_id": task_id,
                    "attempt": attempt + 1,
                },
                queue.schedule_group,
            )
        except Exception as e:
            logger.error(f"Could not schedule retry of {task_id} for product {product_id}: {e}")
            return False
        return True
