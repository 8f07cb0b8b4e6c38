"""Post-commit replay of category boost events onto matching connections."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from foodgraph.models.boost_event import BoostEvent
from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.services.decay import (
    DecayParameters,
    apply_decayed_update,
    compute_activity_level,
    ensure_utc,
    is_recent,
    utc_now,
)

logger = logging.getLogger(__name__)

RESTAURANT_LOCK_STRIPES = 64

_restaurant_locks = tuple(threading.Lock() for _ in range(RESTAURANT_LOCK_STRIPES))


@dataclass(slots=True)
class ReplayFailure:
    restaurant_id: int
    error: str


@dataclass(slots=True)
class ReplayResult:
    restaurants_processed: int = 0
    connections_boosted: int = 0
    events_applied: int = 0
    boosted_connection_ids: list[int] = field(default_factory=list)
    errors: list[ReplayFailure] = field(default_factory=list)


@dataclass(slots=True)
class _RestaurantReplay:
    boosted_connection_ids: list[int] = field(default_factory=list)
    events_applied: int = 0


def restaurant_lock(restaurant_id: int) -> threading.Lock:
    """Single-writer lock for one restaurant's decayed scores within this process.

    Locks are striped by id, so unrelated restaurants may share one.
    """

    return _restaurant_locks[restaurant_id % RESTAURANT_LOCK_STRIPES]


def replay_boosts_for_restaurants(
    db: Session,
    restaurant_ids: Iterable[int],
    *,
    params: DecayParameters | None = None,
    now: datetime | None = None,
) -> ReplayResult:
    """Replay unapplied boost events for each restaurant; each restaurant commits on its own."""

    active_params = params or DecayParameters.from_settings()
    reference_now = ensure_utc(now) if now is not None else utc_now()
    result = ReplayResult()
    total_started = perf_counter()

    for restaurant_id in sorted(set(restaurant_ids)):
        started = perf_counter()
        with restaurant_lock(restaurant_id):
            try:
                replayed = _replay_restaurant(db, restaurant_id, active_params, reference_now)
                db.commit()
            except Exception as exc:
                db.rollback()
                logger.exception(
                    "replay.restaurant_failed restaurant_id=%d elapsed_ms=%.2f",
                    restaurant_id,
                    (perf_counter() - started) * 1000.0,
                )
                result.errors.append(ReplayFailure(restaurant_id=restaurant_id, error=str(exc)))
                continue
        result.restaurants_processed += 1
        result.connections_boosted += len(replayed.boosted_connection_ids)
        result.boosted_connection_ids.extend(replayed.boosted_connection_ids)
        result.events_applied += replayed.events_applied

    logger.info(
        "replay.timing restaurants=%d connections_boosted=%d events_applied=%d errors=%d total_ms=%.2f",
        result.restaurants_processed,
        result.connections_boosted,
        result.events_applied,
        len(result.errors),
        (perf_counter() - total_started) * 1000.0,
    )
    return result


def _replay_restaurant(
    db: Session,
    restaurant_id: int,
    params: DecayParameters,
    now: datetime,
) -> _RestaurantReplay:
    replayed = _RestaurantReplay()
    # Row lock serializes replay across processes sharing the store.
    restaurant = db.scalar(select(Entity).where(Entity.id == restaurant_id).with_for_update())
    if restaurant is None:
        raise LookupError(f"Restaurant {restaurant_id} does not exist.")

    connections = list(
        db.scalars(
            select(Connection)
            .where(Connection.restaurant_id == restaurant_id)
            .order_by(Connection.id.asc())
            .with_for_update()
        )
    )
    if not connections:
        return replayed

    watermarks = [connection.boost_last_applied_at for connection in connections]
    statement = select(BoostEvent).where(BoostEvent.restaurant_id == restaurant_id)
    if all(watermark is not None for watermark in watermarks):
        minimum = min(ensure_utc(watermark) for watermark in watermarks)
        statement = statement.where(BoostEvent.mention_created_at > minimum)
    events = list(db.scalars(statement.order_by(BoostEvent.mention_created_at.asc(), BoostEvent.id.asc())))
    if not events:
        return replayed
    latest_considered = max(ensure_utc(event.mention_created_at) for event in events)

    for connection in connections:
        applied = _apply_events(db, connection, events, params, now)
        watermark = connection.boost_last_applied_at
        if watermark is None or ensure_utc(watermark) < latest_considered:
            connection.boost_last_applied_at = latest_considered
        if applied:
            replayed.boosted_connection_ids.append(connection.id)
            replayed.events_applied += applied
    return replayed


def _apply_events(
    db: Session,
    connection: Connection,
    events: list[BoostEvent],
    params: DecayParameters,
    now: datetime,
) -> int:
    watermark = ensure_utc(connection.boost_last_applied_at) if connection.boost_last_applied_at else None
    categories = set(connection.category_ids_json or [])
    attributes = list(connection.food_attribute_ids_json or [])
    mentions = upvotes = recent_mentions = 0

    for event in events:
        event_at = ensure_utc(event.mention_created_at)
        if watermark is not None and event_at <= watermark:
            continue
        if event.category_id not in categories:
            continue
        event_attributes = event.food_attribute_ids_json or []
        if event_attributes and not set(event_attributes) & set(attributes):
            continue

        decayed = apply_decayed_update(
            connection.decayed_mention_score,
            connection.decayed_upvote_score,
            connection.decayed_scores_updated_at,
            event_at,
            upvotes=event.upvotes,
            params=params,
        )
        connection.decayed_mention_score = decayed.mention_score
        connection.decayed_upvote_score = decayed.upvote_score
        connection.decayed_scores_updated_at = decayed.updated_at
        connection.last_mentioned_at = max(ensure_utc(connection.last_mentioned_at), event_at)
        for attribute_id in event_attributes:
            if attribute_id not in attributes:
                attributes.append(attribute_id)
        mentions += 1
        upvotes += event.upvotes
        recent_mentions += 1 if is_recent(event_at, now, params) else 0

    if not mentions:
        return 0

    if attributes != (connection.food_attribute_ids_json or []):
        connection.food_attribute_ids_json = attributes
    connection.activity_level = compute_activity_level(
        last_mentioned_at=connection.last_mentioned_at,
        recent_mention_count=connection.recent_mention_count + recent_mentions,
        now=now,
        params=params,
    )
    db.flush()
    db.execute(
        update(Connection)
        .where(Connection.id == connection.id)
        .values(
            mention_count=Connection.mention_count + mentions,
            total_upvotes=Connection.total_upvotes + upvotes,
            recent_mention_count=Connection.recent_mention_count + recent_mentions,
        )
        .execution_options(synchronize_session="evaluate")
    )
    return mentions
