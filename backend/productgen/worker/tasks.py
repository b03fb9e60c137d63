"""Background tasks that drive bulk generation queues."""

import asyncio

from huey import crontab

from productgen.services.scheduling import HOOK_PROCESS_BATCH, HOOK_PROCESS_ITEM
from productgen.worker.queue import huey


def run_async(coro):
    """Run an async function in a sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@huey.task()
def process_queue_batch(queue_id: int, action_id: str | None = None) -> int:
    """Batch tick of a generation queue.

    Returns:
        Number of work items taken off the queue
    """
    from productgen.runtime import get_worker_processor

    return run_async(get_worker_processor().process_batch(queue_id, action_id))


@huey.task()
def process_queue_item(
    queue_id: int,
    product_id: int,
    task_id: str,
    action_id: str | None = None,
    attempt: int = 1,
) -> bool:
    """Generate one (product, task) pair of a queue.

    Returns:
        True if the item was recorded as a success
    """
    from productgen.runtime import get_worker_processor

    async def _process():
        outcome = await get_worker_processor().execute_item(
            queue_id, product_id, task_id, action_id=action_id, attempt=attempt
        )
        return bool(outcome and outcome.success)

    return run_async(_process())


@huey.periodic_task(crontab(minute="*/5"))
def recover_stalled_queue() -> None:
    """Requeue items lost with dead workers and reschedule a stalled queue."""
    from productgen.runtime import get_worker_processor

    run_async(get_worker_processor().recover_stalled())


HOOK_TASKS = {
    HOOK_PROCESS_BATCH: process_queue_batch,
    HOOK_PROCESS_ITEM: process_queue_item,
}
