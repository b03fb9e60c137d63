"""Huey task queue configuration.

Uses SQLite storage next to the application database. Run the consumer with
``huey_consumer productgen.worker.tasks.huey``.
"""

from huey import SqliteHuey

from productgen.config import settings

db_path = settings.data_dir / "huey.db"
db_path.parent.mkdir(parents=True, exist_ok=True)

huey = SqliteHuey(
    name="productgen",
    filename=str(db_path),
    immediate=False,
)
