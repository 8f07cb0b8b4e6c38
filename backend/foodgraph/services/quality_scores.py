"""Time-decayed food, restaurant, category and attribute quality scores.

All scores are recomputed from persisted aggregates and bounded to [0, 100].
Decayed running sums are projected forward to `now` before scoring; nothing
here mutates them.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from foodgraph.config import Settings, get_settings
from foodgraph.models.category_aggregate import CategoryAggregate
from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.services.decay import current_decayed_value, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MAX_SCORE = 100.0


@dataclass(slots=True, frozen=True)
class QualityScoreConfig:
    """Decay, weighting, normalization and fallback parameters."""

    mention_decay_period: timedelta
    upvote_decay_period: timedelta
    food_connection_strength_weight: float
    food_restaurant_context_weight: float
    restaurant_top_food_weight: float
    restaurant_consistency_weight: float
    restaurant_general_praise_weight: float
    top_food_count: int
    mention_count_weight: float
    upvote_weight: float
    mention_scale: float
    upvote_scale: float
    general_praise_scale: float
    signal_weight_scale: float
    weight_floor: float
    default_average_restaurant_score: float
    category_fallback_score: float
    connection_batch_size: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "QualityScoreConfig":
        active = settings or get_settings()
        return cls(
            mention_decay_period=timedelta(days=active.quality_score_mention_decay_days),
            upvote_decay_period=timedelta(days=active.quality_score_upvote_decay_days),
            food_connection_strength_weight=active.quality_score_food_connection_strength_weight,
            food_restaurant_context_weight=active.quality_score_food_restaurant_context_weight,
            restaurant_top_food_weight=active.quality_score_restaurant_top_food_weight,
            restaurant_consistency_weight=active.quality_score_restaurant_consistency_weight,
            restaurant_general_praise_weight=active.quality_score_restaurant_general_praise_weight,
            top_food_count=max(1, active.quality_score_restaurant_top_food_count),
            mention_count_weight=active.quality_score_mention_count_weight,
            upvote_weight=active.quality_score_upvote_weight,
            mention_scale=active.quality_score_mention_scale,
            upvote_scale=active.quality_score_upvote_scale,
            general_praise_scale=active.quality_score_general_praise_scale,
            signal_weight_scale=active.quality_score_signal_weight_scale,
            weight_floor=active.quality_score_weight_floor,
            default_average_restaurant_score=active.quality_score_default_average_restaurant_score,
            category_fallback_score=active.quality_score_category_fallback_score,
            connection_batch_size=max(1, active.quality_score_connection_batch_size),
        )


@dataclass(slots=True)
class QualityScoreFailure:
    error: str
    connection_id: int | None = None
    restaurant_id: int | None = None


@dataclass(slots=True)
class QualityScoreUpdateResult:
    connections_updated: int = 0
    restaurants_updated: int = 0
    average_processing_time_ms: float = 0.0
    errors: list[QualityScoreFailure] = field(default_factory=list)


def clamp_score(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(MAX_SCORE, float(value)))


def log_scaled(value: float, scale: float) -> float:
    """min(100, log1p(value) * scale) for non-negative values."""

    return min(MAX_SCORE, math.log1p(max(0.0, value)) * scale)


class QualityScoreService:
    """Quality score calculations over one session."""

    def __init__(
        self,
        db: Session,
        config: QualityScoreConfig | None = None,
        *,
        now: datetime | None = None,
    ) -> None:
        self.db = db
        self.config = config or QualityScoreConfig.from_settings()
        self.now = ensure_utc(now) if now is not None else utc_now()

    def current_decayed_scores(self, row: Connection | CategoryAggregate) -> tuple[float, float]:
        """Decayed mention/upvote sums projected to `now`."""

        anchor = row.decayed_scores_updated_at or row.last_mentioned_at or row.created_at
        if isinstance(row, Connection):
            raw_mentions, raw_upvotes = row.mention_count, row.total_upvotes
        else:
            raw_mentions, raw_upvotes = row.mentions_count, row.total_upvotes
        mention_base = row.decayed_mention_score if row.decayed_mention_score else raw_mentions
        upvote_base = row.decayed_upvote_score if row.decayed_upvote_score else raw_upvotes
        return (
            current_decayed_value(mention_base or 0.0, anchor, self.now, self.config.mention_decay_period),
            current_decayed_value(upvote_base or 0.0, anchor, self.now, self.config.upvote_decay_period),
        )

    def calculate_connection_strength(self, connection: Connection) -> float:
        mention_score, upvote_score = self.current_decayed_scores(connection)
        mention_component = log_scaled(mention_score, self.config.mention_scale)
        upvote_component = log_scaled(upvote_score, self.config.upvote_scale)
        total_weight = self.config.mention_count_weight + self.config.upvote_weight
        if total_weight <= 0:
            return 0.0
        strength = (
            mention_component * self.config.mention_count_weight
            + upvote_component * self.config.upvote_weight
        ) / total_weight
        return clamp_score(strength)

    def calculate_food_quality_score(
        self,
        connection: Connection,
        restaurant_score: float | None = None,
    ) -> float:
        primary = self.calculate_connection_strength(connection)
        secondary = (
            restaurant_score
            if restaurant_score is not None
            else self._restaurant_context_score(connection.restaurant_id)
        )
        score = (
            primary * self.config.food_connection_strength_weight
            + clamp_score(secondary) * self.config.food_restaurant_context_weight
        )
        return clamp_score(score)

    def calculate_restaurant_quality_score(self, restaurant_id: int) -> float:
        restaurant = self.db.get(Entity, restaurant_id)
        if restaurant is None:
            raise LookupError(f"Restaurant {restaurant_id} does not exist.")
        connections = self._restaurant_connections(restaurant_id)
        food_scores = [self._stored_or_computed_food_score(connection) for connection in connections]

        top_food = self._top_food_component(food_scores)
        consistency = sum(food_scores) / len(food_scores) if food_scores else 0.0
        praise = log_scaled(float(restaurant.general_praise_upvotes or 0), self.config.general_praise_scale)
        score = (
            top_food * self.config.restaurant_top_food_weight
            + consistency * self.config.restaurant_consistency_weight
            + praise * self.config.restaurant_general_praise_weight
        )
        return clamp_score(score)

    def calculate_category_performance_score(self, restaurant_id: int, category_id: int) -> float:
        connections = [
            connection
            for connection in self._restaurant_connections(restaurant_id)
            if category_id in (connection.category_ids_json or [])
        ]
        entries = [
            (self._stored_or_computed_food_score(connection), self._signal_weight(connection))
            for connection in connections
        ]
        if not entries:
            aggregate = self.db.scalar(
                select(CategoryAggregate).where(
                    CategoryAggregate.restaurant_id == restaurant_id,
                    CategoryAggregate.category_id == category_id,
                )
            )
            if aggregate is not None:
                entries.append(
                    (
                        self._restaurant_signal_score(restaurant_id),
                        self._signal_weight(aggregate) * self.config.signal_weight_scale,
                    )
                )
        return self._weighted_average(entries)

    def calculate_attribute_performance_score(self, restaurant_id: int, attribute_id: int) -> float:
        entries = [
            (self._stored_or_computed_food_score(connection), self._signal_weight(connection))
            for connection in self._restaurant_connections(restaurant_id)
            if attribute_id in (connection.food_attribute_ids_json or [])
        ]
        return self._weighted_average(entries)

    def update_quality_scores_for_connections(
        self,
        connection_ids: Iterable[int],
        *,
        restaurant_ids: Iterable[int] = (),
    ) -> QualityScoreUpdateResult:
        """Recompute and persist scores for connections and their restaurants.

        Each restaurant group commits separately; per-item failures are
        collected and never abort the run.
        """

        result = QualityScoreUpdateResult()
        total_started = perf_counter()
        requested = sorted(set(connection_ids))
        connections = self._load_connections(requested)
        found = {connection.id for connection in connections}
        for missing_id in requested:
            if missing_id not in found:
                result.errors.append(QualityScoreFailure(connection_id=missing_id, error="Connection not found."))

        by_restaurant: dict[int, list[Connection]] = defaultdict(list)
        for connection in connections:
            by_restaurant[connection.restaurant_id].append(connection)
        for restaurant_id in restaurant_ids:
            by_restaurant.setdefault(restaurant_id, [])

        restaurant_context: dict[int, float] = {}
        for restaurant_id in sorted(by_restaurant):
            group = by_restaurant[restaurant_id]
            updated_in_group = 0
            if restaurant_id not in restaurant_context:
                restaurant_context[restaurant_id] = self._restaurant_context_score(restaurant_id)
            for connection in group:
                try:
                    connection.food_quality_score = self.calculate_food_quality_score(
                        connection,
                        restaurant_score=restaurant_context[restaurant_id],
                    )
                    updated_in_group += 1
                except Exception as exc:
                    logger.exception("quality.connection_failed connection_id=%d", connection.id)
                    result.errors.append(QualityScoreFailure(connection_id=connection.id, error=str(exc)))

            restaurant_updated = False
            try:
                self.db.flush()
                restaurant = self.db.get(Entity, restaurant_id)
                if restaurant is None:
                    raise LookupError(f"Restaurant {restaurant_id} does not exist.")
                restaurant.restaurant_quality_score = self.calculate_restaurant_quality_score(restaurant_id)
                restaurant_updated = True
            except Exception as exc:
                logger.exception("quality.restaurant_failed restaurant_id=%d", restaurant_id)
                result.errors.append(QualityScoreFailure(restaurant_id=restaurant_id, error=str(exc)))

            try:
                self.db.commit()
            except Exception as exc:
                self.db.rollback()
                logger.exception("quality.commit_failed restaurant_id=%d", restaurant_id)
                result.errors.append(QualityScoreFailure(restaurant_id=restaurant_id, error=str(exc)))
                continue
            result.connections_updated += updated_in_group
            result.restaurants_updated += 1 if restaurant_updated else 0

        elapsed_ms = (perf_counter() - total_started) * 1000.0
        result.average_processing_time_ms = elapsed_ms / max(1, len(connections))
        logger.info(
            "quality.update_timing connections=%d restaurants=%d errors=%d total_ms=%.2f",
            result.connections_updated,
            result.restaurants_updated,
            len(result.errors),
            elapsed_ms,
        )
        return result

    def _load_connections(self, connection_ids: list[int]) -> list[Connection]:
        loaded: list[Connection] = []
        size = self.config.connection_batch_size
        for start in range(0, len(connection_ids), size):
            chunk = connection_ids[start : start + size]
            loaded.extend(self.db.scalars(select(Connection).where(Connection.id.in_(chunk))))
        return loaded

    def _restaurant_connections(self, restaurant_id: int) -> list[Connection]:
        return list(
            self.db.scalars(
                select(Connection)
                .where(Connection.restaurant_id == restaurant_id)
                .order_by(Connection.id.asc())
            )
        )

    def _restaurant_context_score(self, restaurant_id: int) -> float:
        restaurant = self.db.get(Entity, restaurant_id)
        stored = restaurant.restaurant_quality_score if restaurant is not None else 0.0
        if stored and stored > 0:
            return clamp_score(stored)
        return clamp_score(self.config.default_average_restaurant_score)

    def _restaurant_signal_score(self, restaurant_id: int) -> float:
        restaurant = self.db.get(Entity, restaurant_id)
        if restaurant is not None and restaurant.restaurant_quality_score > 0:
            return clamp_score(restaurant.restaurant_quality_score)
        return clamp_score(self.config.category_fallback_score)

    def _stored_or_computed_food_score(self, connection: Connection) -> float:
        if connection.food_quality_score and connection.food_quality_score > 0:
            return clamp_score(connection.food_quality_score)
        return self.calculate_food_quality_score(
            connection,
            restaurant_score=self.config.default_average_restaurant_score,
        )

    def _top_food_component(self, food_scores: list[float]) -> float:
        top = sorted(food_scores, reverse=True)[: self.config.top_food_count]
        if not top:
            return 0.0
        weights = [1.0 / (index + 1) for index in range(len(top))]
        return sum(score * weight for score, weight in zip(top, weights)) / sum(weights)

    def _signal_weight(self, row: Connection | CategoryAggregate) -> float:
        mention_score, upvote_score = self.current_decayed_scores(row)
        floor = self.config.weight_floor
        return math.sqrt(max(floor, math.log1p(mention_score)) * max(floor, math.log1p(upvote_score)))

    @staticmethod
    def _weighted_average(entries: list[tuple[float, float]]) -> float:
        total_weight = sum(weight for _, weight in entries)
        if total_weight <= 0:
            return 0.0
        return clamp_score(sum(score * weight for score, weight in entries) / total_weight)
