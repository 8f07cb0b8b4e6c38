"""Exponential time-decay helpers shared by boosts, replay and scoring."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from foodgraph.config import Settings, get_settings
from foodgraph.schema.entity_types import (
    ACTIVITY_LEVEL_ACTIVE,
    ACTIVITY_LEVEL_NORMAL,
    ACTIVITY_LEVEL_TRENDING,
)


@dataclass(slots=True, frozen=True)
class DecayParameters:
    """Decay periods and activity thresholds."""

    mention_decay_period: timedelta
    upvote_decay_period: timedelta
    recent_threshold: timedelta
    active_threshold: timedelta
    trending_min_mentions: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DecayParameters":
        active = settings or get_settings()
        return cls(
            mention_decay_period=timedelta(days=active.quality_score_mention_decay_days),
            upvote_decay_period=timedelta(days=active.quality_score_upvote_decay_days),
            recent_threshold=timedelta(days=active.quality_score_recent_threshold_days),
            active_threshold=timedelta(days=active.quality_score_active_threshold_days),
            trending_min_mentions=active.quality_score_trending_min_mentions,
        )


@dataclass(slots=True, frozen=True)
class DecayedScores:
    mention_score: float
    upvote_score: float
    updated_at: datetime


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def decay_factor(elapsed: timedelta, period: timedelta) -> float:
    """Return exp(-elapsed / period); elapsed below zero counts as zero."""

    period_seconds = period.total_seconds()
    if period_seconds <= 0:
        return 0.0
    elapsed_seconds = max(0.0, elapsed.total_seconds())
    return math.exp(-elapsed_seconds / period_seconds)


def apply_decayed_update(
    previous_mention_score: float,
    previous_upvote_score: float,
    previous_updated_at: datetime | None,
    event_at: datetime,
    *,
    upvotes: int,
    params: DecayParameters,
    mention_weight: float = 1.0,
) -> DecayedScores:
    """Fold one event into an exponentially weighted running sum.

    Out-of-order events (older than the anchor) are added undecayed and do not
    move the anchor backwards.
    """

    event_at = ensure_utc(event_at)
    if previous_updated_at is None:
        return DecayedScores(
            mention_score=float(mention_weight),
            upvote_score=float(upvotes),
            updated_at=event_at,
        )
    anchor = ensure_utc(previous_updated_at)
    elapsed = event_at - anchor
    mention_factor = decay_factor(elapsed, params.mention_decay_period)
    upvote_factor = decay_factor(elapsed, params.upvote_decay_period)
    return DecayedScores(
        mention_score=(previous_mention_score or 0.0) * mention_factor + mention_weight,
        upvote_score=(previous_upvote_score or 0.0) * upvote_factor + upvotes,
        updated_at=max(anchor, event_at),
    )


def current_decayed_value(
    base_value: float,
    anchor: datetime | None,
    now: datetime,
    period: timedelta,
) -> float:
    """Decay a stored running sum forward to `now` without persisting it."""

    if base_value <= 0:
        return 0.0
    if anchor is None:
        return float(base_value)
    return float(base_value) * decay_factor(ensure_utc(now) - ensure_utc(anchor), period)


def is_recent(mentioned_at: datetime, now: datetime, params: DecayParameters) -> bool:
    return ensure_utc(now) - ensure_utc(mentioned_at) <= params.recent_threshold


def compute_activity_level(
    *,
    last_mentioned_at: datetime,
    recent_mention_count: int,
    now: datetime,
    params: DecayParameters,
) -> str:
    """Classify a connection as trending, active, or normal."""

    since_last = ensure_utc(now) - ensure_utc(last_mentioned_at)
    if recent_mention_count >= params.trending_min_mentions and since_last <= params.recent_threshold:
        return ACTIVITY_LEVEL_TRENDING
    if since_last <= params.active_threshold:
        return ACTIVITY_LEVEL_ACTIVE
    return ACTIVITY_LEVEL_NORMAL
