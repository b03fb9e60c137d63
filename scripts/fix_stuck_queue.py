"""Pause the queue stuck in processing so it can be inspected and resumed."""
import asyncio

from productgen.runtime import get_queue_processor


async def main():
    processor = get_queue_processor()
    lock = await processor.lock_status()
    if not lock["locked"]:
        print("No queue is processing")
        return
    queue = await processor.pause_queue(lock["queue_id"])
    print(
        f"Paused queue {queue.id}: {queue.completed} completed, {queue.failed} failed, "
        f"{len(queue.work_items)} items waiting"
    )


if __name__ == "__main__":
    asyncio.run(main())
