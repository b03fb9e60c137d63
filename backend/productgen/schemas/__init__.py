"""Pydantic schemas for API request/response validation."""

from productgen.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductListResponse,
)
from productgen.schemas.queue import (
    TaskSettings,
    TaskOptions,
    QueueCreate,
    QueueUpdate,
    QueueResponse,
    QueueStatusResponse,
    PreviewResponse,
    QueueResultResponse,
)
from productgen.schemas.common import PaginationParams, MessageResponse

__all__ = [
    "ProductCreate",
    "ProductUpdate",
    "ProductResponse",
    "ProductListResponse",
    "TaskSettings",
    "TaskOptions",
    "QueueCreate",
    "QueueUpdate",
    "QueueResponse",
    "QueueStatusResponse",
    "PreviewResponse",
    "QueueResultResponse",
    "PaginationParams",
    "MessageResponse",
]
