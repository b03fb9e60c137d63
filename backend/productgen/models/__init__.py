"""SQLAlchemy models."""

from productgen.models.product import Product
from productgen.models.generation import GenerationRecord
from productgen.models.queue import (
    QUEUE_TRANSITIONS,
    GenerationQueue,
    QueueResult,
    QueueStatus,
)
from productgen.models.scheduled_action import ScheduledAction
from productgen.models.settings import BRAND_VOICE_KEY, Setting

__all__ = [
    "Product",
    "GenerationRecord",
    "GenerationQueue",
    "QueueResult",
    "QueueStatus",
    "QUEUE_TRANSITIONS",
    "ScheduledAction",
    "Setting",
    "BRAND_VOICE_KEY",
]
