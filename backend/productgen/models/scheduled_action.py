"""Scheduled action model - bookkeeping for delayed queue callbacks."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from productgen.database import Base


class ScheduledAction(Base):
    """A callback handed to the task backend and not yet finished.

    Starting the callback stamps ``claimed_at``; finishing it deletes the row.
    Cancelling a group deletes its unclaimed rows, so a callback that cannot
    claim its row must not run. A claimed row that is never finished marks
    work lost with a dead worker.
    """

    __tablename__ = "scheduled_actions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    group: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    hook: Mapped[str] = mapped_column(String(100), nullable=False)
    args: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    backend_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ScheduledAction(id='{self.id}', hook='{self.hook}', group='{self.group}')>"
