"""Shared fixtures: a temporary database per test, a recording task backend
and a scripted generator."""

import os
import tempfile

# Settings are read at import time, so these must be set first
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="productgen-test-"))
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.environ['DATA_DIR']}/productgen.db"
)
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["AI_PROVIDER"] = "ollama"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""

from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio

from productgen.database import build_engine, build_session_maker, create_tables
from productgen.exceptions import GenerationError
from productgen.models import GenerationRecord, Product
from productgen.runtime import build_queue_processor
from productgen.services.events import EventHub
from productgen.templates import build_default_registry


@dataclass
class DispatchedCall:
    action_id: str
    hook: str
    args: dict[str, Any]
    delay: float
    backend_id: str


class RecordingDispatcher:
    """Task backend that records calls instead of running them."""

    def __init__(self):
        self.calls: list[DispatchedCall] = []
        self.revoked: list[str] = []
        self.fail_hooks: set[str] = set()
        self._counter = 0

    def dispatch(self, action_id: str, hook: str, args: dict[str, Any], delay: float) -> str:
        if hook in self.fail_hooks:
            raise RuntimeError("backend unavailable")
        self._counter += 1
        call = DispatchedCall(action_id, hook, dict(args), delay, f"job-{self._counter}")
        self.calls.append(call)
        return call.backend_id

    def revoke(self, backend_id: str) -> None:
        self.revoked.append(backend_id)

    def take(self, hook: str | None = None) -> list[DispatchedCall]:
        """Remove and return recorded calls, optionally only for one hook."""
        taken = [c for c in self.calls if hook is None or c.hook == hook]
        self.calls = [c for c in self.calls if c not in taken]
        return taken


class FakeGenerator:
    """Generator returning canned text; calls listed in ``fail_on`` raise."""

    def __init__(self, text: str = "Generated copy", fail_on: set[int] | None = None):
        self.text = text
        self.fail_on = fail_on or set()
        self.calls: list[dict[str, Any]] = []

    async def generate(self, system_prompt, user_prompt, temperature=0.7, max_tokens=2000):
        index = len(self.calls)
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if index in self.fail_on:
            raise GenerationError("API error: 500 - upstream failure")
        return self.text


async def run_dispatched(processor, dispatcher: RecordingDispatcher, max_rounds: int = 50) -> int:
    """Run recorded callbacks in order until none are left. Returns how many ran."""
    ran = 0
    for _ in range(max_rounds):
        calls = dispatcher.take()
        if not calls:
            return ran
        for call in calls:
            await processor.run_action(call.hook, call.args)
            ran += 1
    raise AssertionError("callbacks kept scheduling more callbacks")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", null_pool=True)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_maker(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def events():
    return EventHub()


@pytest.fixture
def processor(session_factory, dispatcher, generator, events):
    return build_queue_processor(
        session_factory,
        dispatcher,
        generator=generator,
        registry=build_default_registry(),
        events=events,
    )


@pytest.fixture
def make_product(db):
    """Create a product; keyword arguments override column defaults."""

    async def _make(name: str = "Test Product", **kwargs) -> Product:
        kwargs.setdefault("status", "publish")
        product = Product(name=name, **kwargs)
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product

    return _make


@pytest.fixture
def mark_done(db):
    """Give a product a generation record for a task."""
    from datetime import UTC, datetime

    async def _mark(product_id: int, task_id: str) -> None:
        db.add(GenerationRecord(product_id=product_id, task_id=task_id, generated_at=datetime.now(UTC)))
        await db.commit()

    return _mark
