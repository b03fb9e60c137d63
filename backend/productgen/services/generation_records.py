"""Per-product generation timestamps used by the skip policy."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from productgen.models import GenerationRecord

# Keeps IN (...) lists under SQLite's variable limit
CHUNK_SIZE = 500


async def get_generations(
    db: AsyncSession, product_ids: list[int]
) -> dict[int, dict[str, datetime]]:
    """Map product id -> {task id: last generated at} for the given products."""
    generations: dict[int, dict[str, datetime]] = {}
    for start in range(0, len(product_ids), CHUNK_SIZE):
        chunk = product_ids[start:start + CHUNK_SIZE]
        result = await db.execute(
            select(GenerationRecord).where(GenerationRecord.product_id.in_(chunk))
        )
        for record in result.scalars():
            generations.setdefault(record.product_id, {})[record.task_id] = record.generated_at
    return generations


async def has_generation(db: AsyncSession, product_id: int, task_id: str) -> bool:
    result = await db.execute(
        select(GenerationRecord.id).where(
            GenerationRecord.product_id == product_id,
            GenerationRecord.task_id == task_id,
        )
    )
    return result.first() is not None


async def mark_generated(
    db: AsyncSession,
    product_id: int,
    task_id: str,
    when: datetime | None = None,
) -> GenerationRecord:
    """Create or bump the generation record. Caller commits."""
    when = when or datetime.now(UTC)
    result = await db.execute(
        select(GenerationRecord).where(
            GenerationRecord.product_id == product_id,
            GenerationRecord.task_id == task_id,
        )
    )
    record = result.scalar_one_or_none()
    if record:
        record.generated_at = when
    else:
        record = GenerationRecord(product_id=product_id, task_id=task_id, generated_at=when)
        db.add(record)
    await db.flush()
    return record
