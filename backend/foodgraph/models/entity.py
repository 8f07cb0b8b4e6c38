"""Entity ORM model."""

from typing import Any

from sqlalchemy import JSON, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from foodgraph.models.base import Base, IdMixin, TimestampMixin


class Entity(Base, IdMixin, TimestampMixin):
    """Canonical graph node: restaurant, food/category, or attribute."""

    __tablename__ = "entities"
    __table_args__ = (UniqueConstraint("name", "type", name="uq_entities_name_type"),)

    name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    aliases_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    restaurant_attribute_ids_json: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    restaurant_quality_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    general_praise_upvotes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
