"""Rule engine that folds validated mentions into graph mutations.

Runs inside the caller's transaction. Every mention is routed through up to
five independent branches: restaurant attributes, general praise, specific
food, category-only and attribute-only. Category-only mentions never touch
connections directly; they update the category aggregate and append boost
events that `boost_replay` applies after commit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from foodgraph.entity_resolution.context import ResolutionContext
from foodgraph.entity_resolution.temp_ids import MentionTempIds
from foodgraph.models.boost_event import BoostEvent
from foodgraph.models.category_aggregate import CategoryAggregate
from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.schema.entity_types import ENTITY_TYPE_RESTAURANT
from foodgraph.schemas.mentions import MentionInput
from foodgraph.services.decay import (
    DecayParameters,
    apply_decayed_update,
    compute_activity_level,
    ensure_utc,
    is_recent,
)
from foodgraph.services.errors import MalformedMentionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CounterDelta:
    mentions: int = 0
    upvotes: int = 0
    recent_mentions: int = 0


@dataclass(slots=True)
class MentionMutationSummary:
    """What one (sub-)batch changed; ids are final once the transaction commits."""

    created_connection_ids: list[int] = field(default_factory=list)
    boosted_connection_ids: set[int] = field(default_factory=set)
    boost_events_created: int = 0
    category_aggregates_upserted: int = 0
    restaurants_with_boost_events: set[int] = field(default_factory=set)
    restaurants_touched: set[int] = field(default_factory=set)
    general_praise_mentions: int = 0

    @property
    def affected_connection_ids(self) -> list[int]:
        return sorted({*self.created_connection_ids, *self.boosted_connection_ids})


@dataclass(slots=True)
class _ResolvedMention:
    mention: MentionInput
    restaurant_id: int
    food_id: int | None
    category_ids: list[int]
    food_attribute_ids: list[int]
    restaurant_attribute_ids: list[int]


class _MutationState:
    """Per-transaction caches and pending counter increments."""

    def __init__(self, db: Session, params: DecayParameters, now: datetime) -> None:
        self.db = db
        self.params = params
        self.now = now
        self.summary = MentionMutationSummary()
        self._connections: dict[int, list[Connection]] = {}
        self._aggregates: dict[tuple[int, int], CategoryAggregate] = {}
        self._connection_deltas: dict[int, CounterDelta] = defaultdict(CounterDelta)
        self._aggregate_deltas: dict[int, CounterDelta] = defaultdict(CounterDelta)
        self._praise_deltas: dict[int, int] = defaultdict(int)

    def connections_for(self, restaurant_id: int) -> list[Connection]:
        cached = self._connections.get(restaurant_id)
        if cached is None:
            cached = list(
                self.db.scalars(
                    select(Connection)
                    .where(Connection.restaurant_id == restaurant_id)
                    .order_by(Connection.id.asc())
                )
            )
            self._connections[restaurant_id] = cached
        return cached

    def pending_recent(self, connection: Connection) -> int:
        return connection.recent_mention_count + self._connection_deltas[connection.id].recent_mentions

    def add_connection(self, connection: Connection) -> None:
        self.db.add(connection)
        self.db.flush()
        self.connections_for(connection.restaurant_id).append(connection)
        self.summary.created_connection_ids.append(connection.id)

    def bump_connection(self, connection: Connection, *, upvotes: int, recent: bool) -> None:
        delta = self._connection_deltas[connection.id]
        delta.mentions += 1
        delta.upvotes += upvotes
        delta.recent_mentions += 1 if recent else 0
        self.summary.boosted_connection_ids.add(connection.id)

    def bump_aggregate(self, aggregate: CategoryAggregate, *, upvotes: int) -> None:
        delta = self._aggregate_deltas[aggregate.id]
        delta.mentions += 1
        delta.upvotes += upvotes

    def bump_praise(self, restaurant_id: int, upvotes: int) -> None:
        self._praise_deltas[restaurant_id] += upvotes

    def cached_aggregate(self, key: tuple[int, int]) -> CategoryAggregate | None:
        return self._aggregates.get(key)

    def remember_aggregate(self, key: tuple[int, int], aggregate: CategoryAggregate) -> None:
        self._aggregates[key] = aggregate

    def flush_increments(self) -> None:
        """Apply accumulated counters as atomic SQL increments."""

        self.db.flush()
        for connection_id, delta in self._connection_deltas.items():
            if not delta.mentions:
                continue
            self.db.execute(
                update(Connection)
                .where(Connection.id == connection_id)
                .values(
                    mention_count=Connection.mention_count + delta.mentions,
                    total_upvotes=Connection.total_upvotes + delta.upvotes,
                    recent_mention_count=Connection.recent_mention_count + delta.recent_mentions,
                )
                .execution_options(synchronize_session="evaluate")
            )
        for aggregate_id, delta in self._aggregate_deltas.items():
            if not delta.mentions:
                continue
            self.db.execute(
                update(CategoryAggregate)
                .where(CategoryAggregate.id == aggregate_id)
                .values(
                    mentions_count=CategoryAggregate.mentions_count + delta.mentions,
                    total_upvotes=CategoryAggregate.total_upvotes + delta.upvotes,
                )
                .execution_options(synchronize_session="evaluate")
            )
        for restaurant_id, upvotes in self._praise_deltas.items():
            self.db.execute(
                update(Entity)
                .where(Entity.id == restaurant_id)
                .values(general_praise_upvotes=func.coalesce(Entity.general_praise_upvotes, 0) + upvotes)
                .execution_options(synchronize_session="fetch")
            )
        self._connection_deltas.clear()
        self._aggregate_deltas.clear()
        self._praise_deltas.clear()


def apply_mentions(
    db: Session,
    mentions: list[MentionInput],
    mention_temp_ids: list[MentionTempIds],
    context: ResolutionContext,
    *,
    params: DecayParameters,
    now: datetime,
) -> MentionMutationSummary:
    """Apply every rule branch for every mention; caller owns commit/rollback."""

    if len(mentions) != len(mention_temp_ids):
        raise MalformedMentionError(
            f"Mention/temp id count mismatch ({len(mentions)} != {len(mention_temp_ids)})."
        )

    state = _MutationState(db, params, ensure_utc(now))
    for mention, temp_ids in zip(mentions, mention_temp_ids):
        resolved = _resolve_mention(mention, temp_ids, context)
        state.summary.restaurants_touched.add(resolved.restaurant_id)

        if resolved.restaurant_attribute_ids:
            _merge_restaurant_attributes(state, resolved)
        if mention.general_praise:
            state.bump_praise(resolved.restaurant_id, mention.source_ups)
            state.summary.general_praise_mentions += 1

        if mention.is_specific_food and resolved.food_id is not None:
            _apply_specific_food(state, resolved)
        elif mention.is_category_reference and resolved.category_ids:
            _apply_category_only(state, resolved)
        elif mention.food is None and resolved.food_attribute_ids:
            _apply_attribute_only(state, resolved)

    state.flush_increments()
    return state.summary


def _resolve_mention(
    mention: MentionInput,
    temp_ids: MentionTempIds,
    context: ResolutionContext,
) -> _ResolvedMention:
    food_id = context.entity_id_for(temp_ids.food) if temp_ids.food else None
    category_ids = context.entity_ids_for(temp_ids.categories)
    if food_id is not None and mention.is_menu_item is False and food_id not in category_ids:
        # A non-menu food reference is a category mention.
        category_ids.append(food_id)
    return _ResolvedMention(
        mention=mention,
        restaurant_id=context.entity_id_for(temp_ids.restaurant),
        food_id=food_id,
        category_ids=category_ids,
        food_attribute_ids=context.entity_ids_for(temp_ids.food_attributes),
        restaurant_attribute_ids=context.entity_ids_for(temp_ids.restaurant_attributes),
    )


def _merge_restaurant_attributes(state: _MutationState, resolved: _ResolvedMention) -> None:
    restaurant = state.db.get(Entity, resolved.restaurant_id)
    if restaurant is None or restaurant.type != ENTITY_TYPE_RESTAURANT:
        raise MalformedMentionError(f"Entity {resolved.restaurant_id} is not a restaurant.")
    merged = _union(restaurant.restaurant_attribute_ids_json or [], resolved.restaurant_attribute_ids)
    if merged != (restaurant.restaurant_attribute_ids_json or []):
        restaurant.restaurant_attribute_ids_json = merged


def _apply_specific_food(state: _MutationState, resolved: _ResolvedMention) -> None:
    pair_connections = [
        connection
        for connection in state.connections_for(resolved.restaurant_id)
        if connection.food_id == resolved.food_id
    ]
    if resolved.food_attribute_ids:
        wanted = set(resolved.food_attribute_ids)
        matches = [
            connection
            for connection in pair_connections
            if wanted & set(connection.food_attribute_ids_json or [])
        ]
    else:
        matches = [connection for connection in pair_connections if not connection.food_attribute_ids_json]

    if not matches:
        _create_connection(state, resolved)
        return
    if not resolved.food_attribute_ids:
        matches = matches[:1]
    for connection in matches:
        _boost_connection(state, connection, resolved, merge_categories=True)


def _apply_category_only(state: _MutationState, resolved: _ResolvedMention) -> None:
    mention = resolved.mention
    for category_id in resolved.category_ids:
        _upsert_category_aggregate(state, resolved.restaurant_id, category_id, mention)
        state.db.add(
            BoostEvent(
                restaurant_id=resolved.restaurant_id,
                category_id=category_id,
                food_attribute_ids_json=list(resolved.food_attribute_ids),
                mention_created_at=mention.source_created_at,
                upvotes=mention.source_ups,
            )
        )
        state.summary.boost_events_created += 1
    state.summary.restaurants_with_boost_events.add(resolved.restaurant_id)


def _apply_attribute_only(state: _MutationState, resolved: _ResolvedMention) -> None:
    wanted = set(resolved.food_attribute_ids)
    for connection in state.connections_for(resolved.restaurant_id):
        if wanted & set(connection.food_attribute_ids_json or []):
            _boost_connection(state, connection, resolved, merge_categories=False)


def _create_connection(state: _MutationState, resolved: _ResolvedMention) -> Connection:
    mention = resolved.mention
    mentioned_at = mention.source_created_at
    recent = is_recent(mentioned_at, state.now, state.params)
    recent_count = 1 if recent else 0
    connection = Connection(
        restaurant_id=resolved.restaurant_id,
        food_id=resolved.food_id,
        category_ids_json=list(resolved.category_ids),
        food_attribute_ids_json=list(resolved.food_attribute_ids),
        mention_count=1,
        total_upvotes=mention.source_ups,
        recent_mention_count=recent_count,
        last_mentioned_at=mentioned_at,
        activity_level=compute_activity_level(
            last_mentioned_at=mentioned_at,
            recent_mention_count=recent_count,
            now=state.now,
            params=state.params,
        ),
        food_quality_score=0.0,
        decayed_mention_score=1.0,
        decayed_upvote_score=float(mention.source_ups),
        decayed_scores_updated_at=mentioned_at,
        boost_last_applied_at=None,
    )
    state.add_connection(connection)
    return connection


def _boost_connection(
    state: _MutationState,
    connection: Connection,
    resolved: _ResolvedMention,
    *,
    merge_categories: bool,
) -> None:
    mention = resolved.mention
    mentioned_at = mention.source_created_at
    recent = is_recent(mentioned_at, state.now, state.params)
    state.bump_connection(connection, upvotes=mention.source_ups, recent=recent)

    decayed = apply_decayed_update(
        connection.decayed_mention_score,
        connection.decayed_upvote_score,
        connection.decayed_scores_updated_at,
        mentioned_at,
        upvotes=mention.source_ups,
        params=state.params,
    )
    connection.decayed_mention_score = decayed.mention_score
    connection.decayed_upvote_score = decayed.upvote_score
    connection.decayed_scores_updated_at = decayed.updated_at
    connection.last_mentioned_at = max(ensure_utc(connection.last_mentioned_at), mentioned_at)

    attributes = _union(connection.food_attribute_ids_json or [], resolved.food_attribute_ids)
    if attributes != (connection.food_attribute_ids_json or []):
        connection.food_attribute_ids_json = attributes
    if merge_categories:
        categories = _union(connection.category_ids_json or [], resolved.category_ids)
        if categories != (connection.category_ids_json or []):
            connection.category_ids_json = categories

    connection.activity_level = compute_activity_level(
        last_mentioned_at=connection.last_mentioned_at,
        recent_mention_count=state.pending_recent(connection),
        now=state.now,
        params=state.params,
    )


def _upsert_category_aggregate(
    state: _MutationState,
    restaurant_id: int,
    category_id: int,
    mention: MentionInput,
) -> None:
    key = (restaurant_id, category_id)
    aggregate = state.cached_aggregate(key)
    if aggregate is None:
        aggregate = state.db.scalar(
            select(CategoryAggregate).where(
                CategoryAggregate.restaurant_id == restaurant_id,
                CategoryAggregate.category_id == category_id,
            )
        )
    if aggregate is None:
        aggregate = _insert_category_aggregate(state, restaurant_id, category_id, mention)
        if aggregate is not None:
            state.remember_aggregate(key, aggregate)
            state.summary.category_aggregates_upserted += 1
            return
        aggregate = state.db.scalar(
            select(CategoryAggregate).where(
                CategoryAggregate.restaurant_id == restaurant_id,
                CategoryAggregate.category_id == category_id,
            )
        )
        if aggregate is None:
            raise MalformedMentionError(
                f"Category aggregate ({restaurant_id}, {category_id}) vanished after insert conflict."
            )
    state.remember_aggregate(key, aggregate)

    mentioned_at = mention.source_created_at
    state.bump_aggregate(aggregate, upvotes=mention.source_ups)
    decayed = apply_decayed_update(
        aggregate.decayed_mention_score,
        aggregate.decayed_upvote_score,
        aggregate.decayed_scores_updated_at,
        mentioned_at,
        upvotes=mention.source_ups,
        params=state.params,
    )
    aggregate.decayed_mention_score = decayed.mention_score
    aggregate.decayed_upvote_score = decayed.upvote_score
    aggregate.decayed_scores_updated_at = decayed.updated_at
    aggregate.first_mentioned_at = min(ensure_utc(aggregate.first_mentioned_at), mentioned_at)
    aggregate.last_mentioned_at = max(ensure_utc(aggregate.last_mentioned_at), mentioned_at)
    state.summary.category_aggregates_upserted += 1


def _insert_category_aggregate(
    state: _MutationState,
    restaurant_id: int,
    category_id: int,
    mention: MentionInput,
) -> CategoryAggregate | None:
    mentioned_at = mention.source_created_at
    try:
        with state.db.begin_nested():
            aggregate = CategoryAggregate(
                restaurant_id=restaurant_id,
                category_id=category_id,
                mentions_count=1,
                total_upvotes=mention.source_ups,
                first_mentioned_at=mentioned_at,
                last_mentioned_at=mentioned_at,
                decayed_mention_score=1.0,
                decayed_upvote_score=float(mention.source_ups),
                decayed_scores_updated_at=mentioned_at,
            )
            state.db.add(aggregate)
            state.db.flush()
    except IntegrityError:
        logger.warning(
            "mentions.category_aggregate_race restaurant_id=%d category_id=%d",
            restaurant_id,
            category_id,
        )
        return None
    return aggregate


def _union(existing: list[int], incoming: list[int]) -> list[int]:
    merged = list(existing)
    for value in incoming:
        if value not in merged:
            merged.append(value)
    return merged
