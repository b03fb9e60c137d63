"""Generation queue schemas for API validation."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from productgen.config import settings


class TaskSettings(BaseModel):
    """Per-task configuration of a queue."""

    enabled: bool = False
    skip_if_generated: bool = Field(
        default=False,
        validation_alias=AliasChoices("skip_if_generated", "skip_if_already_done"),
    )
    temperature: float = Field(default=settings.default_temperature, ge=0.0, le=2.0)

    @classmethod
    def from_config(cls, raw: Any) -> "TaskSettings":
        """Lenient parse of a stored entry; bad values fall back to defaults."""
        if not isinstance(raw, dict):
            return cls()
        temperature = raw.get("temperature", settings.default_temperature)
        try:
            temperature = float(temperature)
        except (TypeError, ValueError):
            temperature = settings.default_temperature
        return cls.model_construct(
            enabled=bool(raw.get("enabled", False)),
            skip_if_generated=bool(
                raw.get("skip_if_generated", raw.get("skip_if_already_done", False))
            ),
            temperature=temperature,
        )


class TaskOptions(BaseModel):
    """Queue-wide switch over all tasks. Unknown keys are ignored."""

    generate_content: bool = True


class QueueCreate(BaseModel):
    """Request to create a queue."""

    title: str = ""
    query_selector: dict[str, Any] = {}
    task_config: dict[str, TaskSettings] = {}
    task_options: TaskOptions = TaskOptions()
    batch_size: int = Field(default=settings.default_batch_size, ge=1, le=settings.max_batch_size)
    delay: int = Field(default=settings.default_delay, ge=0, le=settings.max_delay)
    retry_failed: bool = False

    @field_validator("task_config")
    @classmethod
    def non_empty_task_ids(cls, v: dict[str, TaskSettings]) -> dict[str, TaskSettings]:
        if any(not key.strip() for key in v):
            raise ValueError("Task ids must not be empty")
        return v


class QueueUpdate(BaseModel):
    """Request to edit a queue; only set fields change."""

    title: str | None = None
    query_selector: dict[str, Any] | None = None
    task_config: dict[str, TaskSettings] | None = None
    task_options: TaskOptions | None = None
    batch_size: int | None = Field(default=None, ge=1, le=settings.max_batch_size)
    delay: int | None = Field(default=None, ge=0, le=settings.max_delay)
    retry_failed: bool | None = None


class QueueResponse(BaseModel):
    """Queue configuration and state."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    status: str
    query_selector: dict[str, Any]
    task_config: dict[str, dict[str, Any]]
    task_options: dict[str, bool]
    batch_size: int
    delay: int
    retry_failed: bool
    total: int
    completed: int
    failed: int
    remaining: int
    progress_percent: float
    has_errors: bool
    current_product_id: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    preview_cache: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class QueueStatusResponse(BaseModel):
    """Live progress for polling."""

    id: int
    status: str
    total: int
    completed: int
    failed: int
    remaining: int
    pending_items: int
    progress_percent: float
    has_errors: bool
    current_product_id: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class PreviewProduct(BaseModel):
    id: int
    name: str
    templates: list[str]


class PreviewResponse(BaseModel):
    """Dry-run counts shown before a queue is started."""

    product_count: int
    template_count: int
    total_generations: int
    preview_products: list[PreviewProduct]
    generated_at: datetime


class QueueResultResponse(BaseModel):
    """Outcome of one work item."""

    model_config = ConfigDict(from_attributes=True)

    product_id: int
    task_id: str
    success: bool
    skipped: bool
    message: str | None = None
    attempts: int
    created_at: datetime
