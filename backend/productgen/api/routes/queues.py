"""Bulk generation queue endpoints."""

from fastapi import APIRouter, Query

from productgen.api.deps import DbSession, Pagination, Processor
from productgen.models import QueueStatus
from productgen.schemas.common import MessageResponse
from productgen.schemas.queue import (
    PreviewResponse,
    QueueCreate,
    QueueResponse,
    QueueResultResponse,
    QueueStatusResponse,
    QueueUpdate,
)
from productgen.services.queue_store import QueueStore

router = APIRouter()


@router.get("")
async def list_queues(
    db: DbSession,
    pagination: Pagination,
    status: QueueStatus | None = Query(None, description="Filter by status"),
) -> dict:
    queues, total = await QueueStore(db).list_queues(
        status=status, offset=pagination.offset, limit=pagination.per_page
    )
    return {
        "items": [QueueResponse.model_validate(q) for q in queues],
        "total": total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": (total + pagination.per_page - 1) // pagination.per_page if total > 0 else 0,
    }


@router.post("", status_code=201)
async def create_queue(db: DbSession, data: QueueCreate) -> QueueResponse:
    queue = await QueueStore(db).create(data)
    return QueueResponse.model_validate(queue)


@router.get("/lock")
async def get_lock(processor: Processor) -> dict:
    """Which queue, if any, currently holds the processing lock."""
    return await processor.lock_status()


@router.get("/{queue_id}")
async def get_queue(db: DbSession, queue_id: int) -> QueueResponse:
    return QueueResponse.model_validate(await QueueStore(db).get(queue_id))


@router.patch("/{queue_id}")
async def update_queue(db: DbSession, queue_id: int, data: QueueUpdate) -> QueueResponse:
    queue = await QueueStore(db).update_config(queue_id, data)
    return QueueResponse.model_validate(queue)


@router.delete("/{queue_id}")
async def delete_queue(processor: Processor, queue_id: int) -> MessageResponse:
    await processor.delete_queue(queue_id)
    return MessageResponse(message=f"Queue {queue_id} deleted")


@router.post("/{queue_id}/preview")
async def preview_queue(processor: Processor, queue_id: int) -> PreviewResponse:
    """Dry run: how many generations a start would schedule."""
    stats = await processor.preview_queue(queue_id)
    return PreviewResponse.model_validate(stats.to_dict())


@router.post("/{queue_id}/start")
async def start_queue(processor: Processor, queue_id: int) -> QueueResponse:
    return QueueResponse.model_validate(await processor.start_queue(queue_id))


@router.post("/{queue_id}/pause")
async def pause_queue(processor: Processor, queue_id: int) -> QueueResponse:
    return QueueResponse.model_validate(await processor.pause_queue(queue_id))


@router.get("/{queue_id}/status")
async def get_queue_status(db: DbSession, queue_id: int) -> QueueStatusResponse:
    return QueueStatusResponse(**await QueueStore(db).status(queue_id))


@router.get("/{queue_id}/results")
async def get_queue_results(
    db: DbSession,
    queue_id: int,
    pagination: Pagination,
    success: bool | None = Query(None, description="Only successes or only failures"),
) -> dict:
    store = QueueStore(db)
    await store.get(queue_id)
    results, total = await store.results(
        queue_id, success=success, offset=pagination.offset, limit=pagination.per_page
    )
    return {
        "items": [QueueResultResponse.model_validate(r) for r in results],
        "total": total,
        "page": pagination.page,
        "per_page": pagination.per_page,
    }
