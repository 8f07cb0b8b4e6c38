"""Category-level popularity signal per restaurant."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from foodgraph.models.base import Base, IdMixin, TimestampMixin


class CategoryAggregate(Base, IdMixin, TimestampMixin):
    """Accumulated category interest for a restaurant, with or without a direct connection."""

    __tablename__ = "category_aggregates"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "category_id", name="uq_category_aggregates_restaurant_category"),
    )

    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    mentions_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_upvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_mentioned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_mentioned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    decayed_mention_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    decayed_upvote_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    decayed_scores_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
