"""Process-wide wiring of the template registry, events, generator and processor."""

from collections.abc import Callable
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from productgen.config import settings
from productgen.database import async_session_maker, build_engine, build_session_maker
from productgen.services.auto_save import AutoSaveHandler
from productgen.services.content import ContentGenerator
from productgen.services.events import EventHub
from productgen.services.generator import TextGenerator
from productgen.services.queue_processor import QueueProcessor
from productgen.services.scheduling import Dispatcher
from productgen.templates import TemplateRegistry, build_default_registry


@lru_cache
def get_registry() -> TemplateRegistry:
    return build_default_registry()


def build_events(session_factory: Callable[[], AsyncSession]) -> EventHub:
    """Event hub with the auto-save listener attached."""
    hub = EventHub()
    AutoSaveHandler(session_factory).register(hub)
    return hub


def build_queue_processor(
    session_factory: Callable[[], AsyncSession],
    dispatcher: Dispatcher | None = None,
    generator=None,
    registry: TemplateRegistry | None = None,
    events: EventHub | None = None,
) -> QueueProcessor:
    if dispatcher is None:
        from productgen.worker.dispatcher import HueyDispatcher

        dispatcher = HueyDispatcher()
    return QueueProcessor(
        session_factory,
        dispatcher,
        registry or get_registry(),
        generator or TextGenerator(),
        events or build_events(session_factory),
    )


@lru_cache
def get_queue_processor() -> QueueProcessor:
    """Processor used by the API process."""
    return build_queue_processor(async_session_maker)


@lru_cache
def get_worker_session_maker() -> async_sessionmaker[AsyncSession]:
    # each huey task runs on its own event loop
    return build_session_maker(build_engine(settings.database_url, null_pool=True))


@lru_cache
def get_worker_processor() -> QueueProcessor:
    return build_queue_processor(get_worker_session_maker())


@lru_cache
def get_content_generator() -> ContentGenerator:
    return ContentGenerator(get_registry(), TextGenerator(), build_events(async_session_maker))
