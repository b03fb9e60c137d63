"""Dispatcher that hands scheduled actions to huey."""

import logging
from typing import Any

from productgen.worker.queue import huey

logger = logging.getLogger(__name__)


class HueyDispatcher:
    def dispatch(self, action_id: str, hook: str, args: dict[str, Any], delay: float) -> str | None:
        from productgen.worker.tasks import HOOK_TASKS

        task = HOOK_TASKS.get(hook)
        if task is None:
            raise ValueError(f"No task registered for hook {hook}")
        result = task.schedule(kwargs=args, delay=delay)
        logger.debug(f"Scheduled {hook} ({action_id}) in {delay:.0f}s as {result.id}")
        return result.id

    def revoke(self, backend_id: str) -> None:
        huey.revoke_by_id(backend_id)
