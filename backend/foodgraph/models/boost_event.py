"""Append-only category boost event log."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from foodgraph.models.base import Base, CreatedAtMixin, IdMixin


class BoostEvent(Base, IdMixin, CreatedAtMixin):
    """A category mention received by a restaurant at a point in time."""

    __tablename__ = "boost_events"
    __table_args__ = (Index("ix_boost_events_restaurant_created", "restaurant_id", "mention_created_at"),)

    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    food_attribute_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    mention_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    upvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
