"""Source ledger ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from foodgraph.models.base import Base, IdMixin


class SourceLedgerRecord(Base, IdMixin):
    """A Reddit post/comment already ingested by one pipeline."""

    __tablename__ = "source_ledger"
    __table_args__ = (UniqueConstraint("pipeline", "source_id", name="uq_source_ledger_pipeline_source"),)

    pipeline: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subreddit: Mapped[str | None] = mapped_column(String(255), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
