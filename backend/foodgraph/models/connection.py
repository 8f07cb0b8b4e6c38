"""Restaurant to food connection ORM model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from foodgraph.models.base import Base, IdMixin, TimestampMixin


class Connection(Base, IdMixin, TimestampMixin):
    """Directed restaurant -> food edge carrying aggregate popularity signals."""

    __tablename__ = "connections"
    __table_args__ = (Index("ix_connections_restaurant_food", "restaurant_id", "food_id"),)

    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    food_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    category_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    food_attribute_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    mention_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_upvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recent_mention_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_mentioned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    activity_level: Mapped[str] = mapped_column(String(16), default="normal", nullable=False)
    food_quality_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    decayed_mention_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    decayed_upvote_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    decayed_scores_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    boost_last_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
