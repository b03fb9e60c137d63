"""Outbound event channel for generation results and queue lifecycle."""

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentGenerated:
    """Text was produced for a (product, task) pair."""
    text: str
    task_id: str
    product_id: int


@dataclass(frozen=True)
class QueueEvent:
    """Queue lifecycle change: started, paused, completed or failed."""
    kind: str
    queue_id: int
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, queue) -> "QueueEvent":
        """Final counts of a queue that just completed."""
        return cls(
            "completed",
            queue.id,
            {"total": queue.total, "completed": queue.completed, "failed": queue.failed},
        )


Listener = Callable[[Any], Awaitable[None] | None]


class EventHub:
    """Typed listener registry.

    Listeners are keyed by event class and may be plain functions or
    coroutines. A failing listener is logged and does not affect the emitter
    or the remaining listeners.
    """

    def __init__(self):
        self._listeners: dict[type, list[Listener]] = defaultdict(list)

    def on(self, event_type: type, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def off(self, event_type: type, listener: Listener) -> None:
        if listener in self._listeners.get(event_type, []):
            self._listeners[event_type].remove(listener)

    def listeners(self, event_type: type) -> list[Listener]:
        return list(self._listeners.get(event_type, []))

    async def emit(self, event: Any) -> None:
        for listener in self.listeners(type(event)):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                name = getattr(listener, "__qualname__", repr(listener))
                logger.warning(f"Listener {name} failed on {type(event).__name__}: {e}")
