"""Work-item planner - computes the (product, task) pairs a queue still owes."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from productgen.config import settings
from productgen.exceptions import NoMatchingProducts, NoTasksEnabled, NoWorkRemaining
from productgen.schemas.queue import TaskSettings
from productgen.services.generation_records import get_generations
from productgen.services.selector import parse_selector, resolve_products

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    """One (product, task) pair owed a generation attempt."""
    product_id: int
    task_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "task_id": self.task_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkItem":
        return cls(product_id=int(data["product_id"]), task_id=str(data["task_id"]))


@dataclass
class PlanStats:
    product_count: int
    template_count: int
    total_generations: int
    preview_products: list[dict[str, Any]] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


@dataclass
class Plan:
    work_items: list[WorkItem]
    stats: PlanStats


def enabled_tasks(
    task_config: dict[str, Any] | None,
    task_options: dict[str, Any] | None = None,
) -> dict[str, TaskSettings]:
    """Enabled tasks in configured order."""
    if task_options is not None and not task_options.get("generate_content", True):
        return {}
    tasks = {}
    for task_id, raw in (task_config or {}).items():
        config = TaskSettings.from_config(raw)
        if config.enabled:
            tasks[task_id] = config
    return tasks


async def plan_work(
    db: AsyncSession,
    query_selector: Any,
    task_config: dict[str, Any] | None,
    task_options: dict[str, Any] | None = None,
    preview_limit: int | None = None,
) -> Plan:
    """
    Compute the outstanding work for a selector and task configuration.

    Pure with respect to queue state: nothing is written.

    Raises:
        InvalidSelector, NoTasksEnabled, NoMatchingProducts, NoWorkRemaining
    """
    if preview_limit is None:
        preview_limit = settings.preview_limit

    selector = parse_selector(query_selector)
    tasks = enabled_tasks(task_config, task_options)
    if not tasks:
        raise NoTasksEnabled()

    products = await resolve_products(db, selector)
    if not products:
        raise NoMatchingProducts()

    generations = await get_generations(db, [p.id for p in products])

    work_items: list[WorkItem] = []
    preview_products: list[dict[str, Any]] = []

    for index, product in enumerate(products):
        done = generations.get(product.id, {})
        product_tasks = [
            task_id
            for task_id, config in tasks.items()
            if not (config.skip_if_generated and task_id in done)
        ]
        work_items.extend(WorkItem(product.id, task_id) for task_id in product_tasks)

        if index < preview_limit:
            preview_products.append(
                {"id": product.id, "name": product.name, "templates": product_tasks}
            )

    if not work_items:
        raise NoWorkRemaining()

    stats = PlanStats(
        product_count=len(products),
        template_count=len(tasks),
        total_generations=len(work_items),
        preview_products=preview_products,
    )
    logger.info(
        f"Planned {stats.total_generations} generations over "
        f"{stats.product_count} products and {stats.template_count} templates"
    )
    return Plan(work_items=work_items, stats=stats)
