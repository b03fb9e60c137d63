"""Generation record - last successful generation per product and task."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from productgen.database import Base


class GenerationRecord(Base):
    """Timestamp of the last successful generation of a task for a product."""

    __tablename__ = "generation_records"
    __table_args__ = (
        UniqueConstraint("product_id", "task_id", name="uq_generation_product_task"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id: Mapped[str] = mapped_column(String(100), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<GenerationRecord(product_id={self.product_id}, task_id='{self.task_id}')>"
