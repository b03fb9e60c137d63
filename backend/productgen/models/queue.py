"""Generation queue models - bulk job definition, runtime state and results."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from productgen.database import Base


class QueueStatus(str, Enum):
    """Lifecycle status of a generation queue."""
    DRAFT = "draft"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed status changes; anything else is an invalid transition.
QUEUE_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.DRAFT: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.PAUSED, QueueStatus.COMPLETED, QueueStatus.FAILED}
    ),
    QueueStatus.PAUSED: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.FAILED: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.COMPLETED: frozenset(),
}


def default_task_options() -> dict[str, bool]:
    return {"generate_content": True}


class GenerationQueue(Base):
    """A bulk generation job over a filtered product set."""

    __tablename__ = "generation_queues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), default="")

    # Configuration
    query_selector: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    task_config: Mapped[dict[str, dict[str, Any]]] = mapped_column(JSON, default=dict)
    task_options: Mapped[dict[str, bool]] = mapped_column(JSON, default=default_task_options)
    batch_size: Mapped[int] = mapped_column(Integer, default=5)
    delay: Mapped[int] = mapped_column(Integer, default=2)
    retry_failed: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(20), default=QueueStatus.DRAFT.value, index=True)

    # Remaining work, drained from the front by batch ticks
    work_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Progress
    total: Mapped[int] = mapped_column(Integer, default=0)
    completed: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    current_product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Last dry-run stats
    preview_cache: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    @property
    def schedule_group(self) -> str:
        """Scheduler group holding every pending action of this queue."""
        return f"queue:{self.id}"

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.completed - self.failed)

    @property
    def progress_percent(self) -> float:
        """Calculate progress percentage."""
        if self.total == 0:
            return 0.0
        return round(((self.completed + self.failed) / self.total) * 100, 1)

    @property
    def has_errors(self) -> bool:
        return self.failed > 0

    @property
    def is_processing(self) -> bool:
        return self.status == QueueStatus.PROCESSING.value

    def __repr__(self) -> str:
        return f"<GenerationQueue(id={self.id}, status='{self.status}', progress={self.progress_percent}%)>"


class QueueResult(Base):
    """Outcome of one (product, task) work item within a queue run."""

    __tablename__ = "queue_results"
    __table_args__ = (
        UniqueConstraint("queue_id", "product_id", "task_id", name="uq_queue_result_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("generation_queues.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    task_id: Mapped[str] = mapped_column(String(100), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<QueueResult(queue_id={self.queue_id}, product_id={self.product_id}, task_id='{self.task_id}')>"
