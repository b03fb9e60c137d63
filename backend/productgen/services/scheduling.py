"""Scheduled-action bookkeeping on top of a task backend.

Every delayed callback a queue needs (batch ticks, item executions) is first
written as a ``ScheduledAction`` row and then handed to a ``Dispatcher``.
The row is what makes an action cancellable: pausing deletes the group's
unclaimed rows, and a callback that can no longer claim its row does nothing.
A callback stamps its row when it starts and deletes it when done, so a
claim that is never finished shows work lost with its worker.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from productgen.models import ScheduledAction

logger = logging.getLogger(__name__)

HOOK_PROCESS_BATCH = "process_queue_batch"
HOOK_PROCESS_ITEM = "process_queue_item"


class Dispatcher(Protocol):
    """Backend that runs a hook with keyword args after a delay."""

    def dispatch(self, action_id: str, hook: str, args: dict[str, Any], delay: float) -> str | None:
        """Schedule the hook; returns the backend's handle if it has one."""
        ...

    def revoke(self, backend_id: str) -> None:
        ...


@dataclass
class DispatchFailure:
    action: ScheduledAction
    error: Exception


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ActionScheduler:
    """Creates, dispatches, cancels and claims scheduled actions."""

    def __init__(self, db: AsyncSession, dispatcher: Dispatcher):
        self.db = db
        self.dispatcher = dispatcher

    def add(
        self,
        hook: str,
        args: dict[str, Any],
        group: str,
        run_at: datetime | None = None,
    ) -> ScheduledAction:
        """Stage an action row in the current transaction. Not yet dispatched."""
        action = ScheduledAction(
            id=uuid.uuid4().hex,
            group=group,
            hook=hook,
            args=dict(args),
            run_at=run_at or datetime.now(UTC),
        )
        self.db.add(action)
        return action

    async def dispatch(self, actions: list[ScheduledAction]) -> list[DispatchFailure]:
        """
        Hand committed actions to the backend.

        Rows whose dispatch fails are deleted so they do not linger as
        pending, and are returned to the caller for handling.
        """
        now = datetime.now(UTC)
        failures = []
        for action in actions:
            delay = max(0.0, (as_utc(action.run_at) - now).total_seconds())
            args = {**action.args, "action_id": action.id}
            try:
                backend_id = self.dispatcher.dispatch(action.id, action.hook, args, delay)
            except Exception as e:
                logger.error(f"Failed to dispatch {action.hook} ({action.id}): {e}")
                failures.append(DispatchFailure(action, e))
                continue
            if backend_id:
                # the worker may already have claimed the row
                await self.db.execute(
                    update(ScheduledAction)
                    .where(ScheduledAction.id == action.id)
                    .values(backend_id=backend_id)
                )
        if failures:
            await self.db.execute(
                delete(ScheduledAction).where(
                    ScheduledAction.id.in_([f.action.id for f in failures])
                )
            )
        await self.db.commit()
        return failures

    async def schedule_once(
        self,
        run_at: datetime,
        hook: str,
        args: dict[str, Any],
        group: str,
    ) -> str:
        """Add, commit and dispatch a single action. Returns its id.

        Raises the dispatcher's error if the backend refuses the action.
        """
        action = self.add(hook, args, group, run_at)
        await self.db.commit()
        failures = await self.dispatch([action])
        if failures:
            raise failures[0].error
        return action.id

    async def schedule_in(self, seconds: float, hook: str, args: dict[str, Any], group: str) -> str:
        run_at = datetime.now(UTC) + timedelta(seconds=seconds)
        return await self.schedule_once(run_at, hook, args, group)

    async def pending(
        self,
        group: str,
        hook: str | None = None,
        include_claimed: bool = True,
    ) -> list[ScheduledAction]:
        query = select(ScheduledAction).where(ScheduledAction.group == group)
        if hook:
            query = query.where(ScheduledAction.hook == hook)
        if not include_claimed:
            query = query.where(ScheduledAction.claimed_at.is_(None))
        result = await self.db.execute(
            query.order_by(ScheduledAction.run_at).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def cancel_group(self, group: str) -> list[ScheduledAction]:
        """
        Cancel every action in a group that has not started.

        Rows are deleted in the current transaction (caller commits) and the
        backend is asked to revoke them. Callbacks that still fire find no row
        to claim. Claimed actions are left to finish. Returns the cancelled
        actions ordered by run time.
        """
        actions = await self.pending(group, include_claimed=False)
        if not actions:
            return []
        await self.db.execute(
            delete(ScheduledAction).where(
                ScheduledAction.id.in_([a.id for a in actions]),
                ScheduledAction.claimed_at.is_(None),
            )
        )
        for action in actions:
            if not action.backend_id:
                continue
            try:
                self.dispatcher.revoke(action.backend_id)
            except Exception as e:
                # the deleted row already prevents the callback from running
                logger.warning(f"Could not revoke {action.hook} ({action.id}): {e}")
        logger.info(f"Cancelled {len(actions)} pending actions in group {group}")
        return actions

    async def claim(self, action_id: str) -> bool:
        """Take ownership of an action before running it. Caller commits.

        Only one caller can claim a given action, and a cancelled action
        cannot be claimed.
        """
        result = await self.db.execute(
            update(ScheduledAction)
            .where(ScheduledAction.id == action_id, ScheduledAction.claimed_at.is_(None))
            .values(claimed_at=datetime.now(UTC))
        )
        return result.rowcount == 1

    async def finish(self, action_id: str) -> bool:
        """Drop a claimed action once its work is done. Caller commits.

        Returns False if the claim was released in the meantime.
        """
        result = await self.db.execute(
            delete(ScheduledAction).where(
                ScheduledAction.id == action_id,
                ScheduledAction.claimed_at.is_not(None),
            )
        )
        return result.rowcount == 1

    async def release_stale(self, group: str, older_than: timedelta) -> list[ScheduledAction]:
        """
        Delete claims that were taken more than ``older_than`` ago and never
        finished, so their work can be scheduled again. Caller commits.
        """
        cutoff = datetime.now(UTC) - older_than
        claimed = [
            a for a in await self.pending(group)
            if a.claimed_at is not None and as_utc(a.claimed_at) < cutoff
        ]
        if claimed:
            await self.db.execute(
                delete(ScheduledAction).where(ScheduledAction.id.in_([a.id for a in claimed]))
            )
            logger.warning(f"Released {len(claimed)} stale claims in group {group}")
        return claimed
