"""Mention batch orchestration: validate, dedup, split, transact with retry, replay, score."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session

from foodgraph.config import get_settings
from foodgraph.entity_resolution.context import ResolutionContext
from foodgraph.entity_resolution.resolver import EntityResolver
from foodgraph.entity_resolution.temp_ids import collect_resolution_inputs
from foodgraph.schema.entity_types import ENTITY_TYPE_RESTAURANT
from foodgraph.schemas.mentions import MentionBatch, MentionInput, ProcessingConfig
from foodgraph.schemas.processing import (
    CreatedEntitySummary,
    ProcessingResult,
    QualityScoreError,
    QualityScoreUpdateSummary,
    ReplayError,
    ReplaySummary,
    SkippedMention,
    SubBatchFailure,
)
from foodgraph.services.boost_replay import replay_boosts_for_restaurants
from foodgraph.services.decay import DecayParameters, ensure_utc, utc_now
from foodgraph.services.entity_creation import materialize_resolution
from foodgraph.services.errors import ErrorKind, ProcessingError, classify_exception
from foodgraph.services.mention_processing import MentionMutationSummary, apply_mentions
from foodgraph.services.quality_scores import QualityScoreService
from foodgraph.services.source_ledger import (
    filter_new_mentions,
    insert_ledger_rows,
    pipeline_for_collection_type,
)

logger = logging.getLogger(__name__)

RestaurantEnrichmentHook = Callable[[list[CreatedEntitySummary]], None]


@dataclass(slots=True)
class _SubBatchOutcome:
    sub_batch_id: str
    mentions_accepted: int = 0
    duplicates_skipped: int = 0
    mutations: MentionMutationSummary = field(default_factory=MentionMutationSummary)
    created_entities: list[CreatedEntitySummary] = field(default_factory=list)


def validate_mentions(raw_mentions: list[dict]) -> tuple[list[MentionInput], list[SkippedMention]]:
    """Validate loosely shaped mention records one by one."""

    valid: list[MentionInput] = []
    skipped: list[SkippedMention] = []
    for index, raw in enumerate(raw_mentions):
        try:
            valid.append(MentionInput.model_validate(raw))
        except ValidationError as exc:
            skipped.append(SkippedMention(index=index, error=_summarize_validation_error(exc)))
    return valid, skipped


def split_into_sub_batches(
    batch_id: str,
    mentions: list[MentionInput],
    batch_size: int,
) -> list[tuple[str, list[MentionInput]]]:
    if len(mentions) <= batch_size:
        return [(batch_id, mentions)]
    return [
        (f"{batch_id}_batch_{index + 1}", mentions[start : start + batch_size])
        for index, start in enumerate(range(0, len(mentions), batch_size))
    ]


def retry_delay_ms(attempt: int) -> int:
    """Backoff before retrying after failed attempt number `attempt` (1-based)."""

    settings = get_settings()
    return min(settings.processing_retry_base_delay_ms * 2 ** (attempt - 1), settings.processing_retry_max_delay_ms)


def process_mention_batch(
    db: Session,
    batch: MentionBatch,
    config: ProcessingConfig | None = None,
    *,
    resolver: EntityResolver | None = None,
    now: datetime | None = None,
    enrichment_hook: RestaurantEnrichmentHook | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProcessingResult:
    """Ingest one mention batch.

    Sub-batches commit independently. When the batch is not split, a
    sub-batch failure propagates as `ProcessingError`; otherwise failed
    sub-batches are reported and their siblings still run. Replay and
    quality scoring run after commit and only report per-item errors.
    """

    active_config = config or ProcessingConfig.from_settings()
    active_resolver = resolver or EntityResolver()
    reference_now = ensure_utc(now) if now is not None else utc_now()
    params = DecayParameters.from_settings()
    metadata = batch.source_metadata
    batch_id = metadata.batch_id
    pipeline = pipeline_for_collection_type(metadata.collection_type)
    total_started = perf_counter()

    result = ProcessingResult(batch_id=batch_id, pipeline=pipeline, mentions_received=len(batch.mentions))
    try:
        started = perf_counter()
        mentions, skipped = validate_mentions(batch.mentions)
        result.skipped_mentions = skipped
        result.mentions_skipped = len(skipped)
        for item in skipped:
            logger.warning(
                "ingest.mention_skipped batch_id=%s index=%d error=%s",
                batch_id,
                item.index,
                item.error,
            )
        validate_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        ledger = filter_new_mentions(
            db,
            mentions,
            pipeline,
            batch_id=batch_id,
            default_subreddit=metadata.subreddit,
        )
        db.rollback()
        result.duplicates_skipped = ledger.duplicates_skipped
        dedup_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        sub_batches = split_into_sub_batches(batch_id, ledger.accepted, active_config.batch_size)
        touched_restaurants: set[int] = set()
        replay_restaurants: set[int] = set()
        affected_connections: set[int] = set()
        for sub_batch_id, sub_mentions in sub_batches:
            if not sub_mentions:
                continue
            try:
                outcome = _run_sub_batch_with_retry(
                    db,
                    sub_batch_id,
                    sub_mentions,
                    pipeline=pipeline,
                    default_subreddit=metadata.subreddit,
                    config=active_config,
                    resolver=active_resolver,
                    params=params,
                    now=reference_now,
                    sleep=sleep,
                )
            except ProcessingError as exc:
                if len(sub_batches) == 1:
                    raise
                result.failed_sub_batches.append(
                    SubBatchFailure(
                        sub_batch_id=sub_batch_id,
                        mention_count=len(sub_mentions),
                        error_kind=exc.kind.value,
                        error=str(exc),
                        attempts=exc.attempts,
                    )
                )
                continue

            mutations = outcome.mutations
            result.succeeded_sub_batches.append(sub_batch_id)
            result.mentions_accepted += outcome.mentions_accepted
            result.duplicates_skipped += outcome.duplicates_skipped
            result.entities_created += len(outcome.created_entities)
            result.created_entities.extend(outcome.created_entities)
            result.connections_created += len(mutations.created_connection_ids)
            result.connections_boosted += len(mutations.boosted_connection_ids - set(mutations.created_connection_ids))
            result.boost_events_created += mutations.boost_events_created
            touched_restaurants.update(mutations.restaurants_touched)
            affected_connections.update(mutations.affected_connection_ids)
            replay_restaurants.update(mutations.restaurants_with_boost_events)
            if mutations.created_connection_ids:
                # New connections start unwatermarked and must pick up earlier category events.
                replay_restaurants.update(mutations.restaurants_touched)
        mutate_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        if replay_restaurants:
            replay = replay_boosts_for_restaurants(db, replay_restaurants, params=params, now=reference_now)
            affected_connections.update(replay.boosted_connection_ids)
            result.replay = ReplaySummary(
                restaurants_processed=replay.restaurants_processed,
                connections_boosted=replay.connections_boosted,
                events_applied=replay.events_applied,
                errors=[ReplayError(restaurant_id=item.restaurant_id, error=item.error) for item in replay.errors],
            )
        replay_ms = (perf_counter() - started) * 1000.0
        result.affected_connection_ids = sorted(affected_connections)

        started = perf_counter()
        if active_config.enable_quality_scores and (affected_connections or touched_restaurants):
            scores = QualityScoreService(db, now=reference_now).update_quality_scores_for_connections(
                result.affected_connection_ids,
                restaurant_ids=touched_restaurants,
            )
            result.quality_scores = QualityScoreUpdateSummary(
                connections_updated=scores.connections_updated,
                restaurants_updated=scores.restaurants_updated,
                average_processing_time_ms=scores.average_processing_time_ms,
                errors=[
                    QualityScoreError(
                        connection_id=item.connection_id,
                        restaurant_id=item.restaurant_id,
                        error=item.error,
                    )
                    for item in scores.errors
                ],
            )
        scoring_ms = (perf_counter() - started) * 1000.0

        _notify_new_restaurants(batch_id, result.created_entities, enrichment_hook)

        result.processing_time_ms = (perf_counter() - total_started) * 1000.0
        logger.info(
            (
                "ingest.batch_timing batch_id=%s pipeline=%s mentions=%d accepted=%d skipped=%d "
                "duplicates=%d sub_batches=%d failed_sub_batches=%d entities=%d connections=%d "
                "boost_events=%d validate_ms=%.2f dedup_ms=%.2f mutate_ms=%.2f replay_ms=%.2f "
                "scoring_ms=%.2f total_ms=%.2f"
            ),
            batch_id,
            pipeline,
            result.mentions_received,
            result.mentions_accepted,
            result.mentions_skipped,
            result.duplicates_skipped,
            len(sub_batches),
            len(result.failed_sub_batches),
            result.entities_created,
            result.connections_created,
            result.boost_events_created,
            validate_ms,
            dedup_ms,
            mutate_ms,
            replay_ms,
            scoring_ms,
            result.processing_time_ms,
        )
        return result
    except Exception:
        logger.exception(
            "ingest.batch_failed batch_id=%s pipeline=%s mentions=%d elapsed_ms=%.2f",
            batch_id,
            pipeline,
            len(batch.mentions),
            (perf_counter() - total_started) * 1000.0,
        )
        raise


def _run_sub_batch_with_retry(
    db: Session,
    sub_batch_id: str,
    mentions: list[MentionInput],
    *,
    pipeline: str,
    default_subreddit: str | None,
    config: ProcessingConfig,
    resolver: EntityResolver,
    params: DecayParameters,
    now: datetime,
    sleep: Callable[[float], None],
) -> _SubBatchOutcome:
    attempt = 0
    while True:
        attempt += 1
        started = perf_counter()
        try:
            outcome = _run_sub_batch_once(
                db,
                sub_batch_id,
                mentions,
                pipeline=pipeline,
                default_subreddit=default_subreddit,
                timeout_seconds=config.batch_timeout_seconds,
                resolver=resolver,
                params=params,
                now=now,
            )
        except Exception as exc:
            db.rollback()
            kind = classify_exception(exc)
            elapsed_ms = (perf_counter() - started) * 1000.0
            if not kind.retryable or attempt >= config.max_retries:
                logger.error(
                    "ingest.sub_batch_failed sub_batch_id=%s mentions=%d attempt=%d kind=%s elapsed_ms=%.2f error=%s",
                    sub_batch_id,
                    len(mentions),
                    attempt,
                    kind.value,
                    elapsed_ms,
                    exc,
                )
                raise ProcessingError(
                    f"Sub-batch {sub_batch_id} failed after {attempt} attempt(s): {exc}",
                    kind,
                    batch_id=sub_batch_id,
                    mention_count=len(mentions),
                    attempts=attempt,
                ) from exc
            delay_ms = retry_delay_ms(attempt)
            logger.warning(
                "ingest.sub_batch_retry sub_batch_id=%s attempt=%d kind=%s delay_ms=%d error=%s",
                sub_batch_id,
                attempt,
                kind.value,
                delay_ms,
                exc,
            )
            sleep(delay_ms / 1000.0)
            continue

        logger.info(
            "ingest.sub_batch_committed sub_batch_id=%s attempt=%d accepted=%d connections_created=%d elapsed_ms=%.2f",
            sub_batch_id,
            attempt,
            outcome.mentions_accepted,
            len(outcome.mutations.created_connection_ids),
            (perf_counter() - started) * 1000.0,
        )
        return outcome


def _run_sub_batch_once(
    db: Session,
    sub_batch_id: str,
    mentions: list[MentionInput],
    *,
    pipeline: str,
    default_subreddit: str | None,
    timeout_seconds: float,
    resolver: EntityResolver,
    params: DecayParameters,
    now: datetime,
) -> _SubBatchOutcome:
    started = perf_counter()
    _apply_statement_timeout(db, timeout_seconds)
    outcome = _SubBatchOutcome(sub_batch_id=sub_batch_id)

    # Re-check the ledger inside the transaction; a concurrent batch may have won the race.
    ledger = filter_new_mentions(
        db,
        mentions,
        pipeline,
        batch_id=sub_batch_id,
        default_subreddit=default_subreddit,
    )
    outcome.duplicates_skipped = ledger.already_processed
    if not ledger.accepted:
        db.commit()
        return outcome

    context = ResolutionContext(batch_id=sub_batch_id)
    inputs = collect_resolution_inputs(ledger.accepted)
    resolution = resolver.resolve_batch(db, inputs.inputs)
    materialize_resolution(db, resolution, context)
    outcome.mutations = apply_mentions(
        db,
        ledger.accepted,
        inputs.mention_temp_ids,
        context,
        params=params,
        now=now,
    )
    insert_ledger_rows(db, ledger.ledger_rows, processed_at=now)

    elapsed = perf_counter() - started
    if elapsed > timeout_seconds:
        raise ProcessingError(
            f"Sub-batch {sub_batch_id} exceeded {timeout_seconds:.0f}s ({elapsed:.2f}s).",
            ErrorKind.TIMEOUT,
            batch_id=sub_batch_id,
            mention_count=len(mentions),
        )
    db.commit()

    outcome.mentions_accepted = len(ledger.accepted)
    outcome.created_entities = [
        CreatedEntitySummary(id=item.id, name=item.name, type=item.type, temp_ids=item.temp_ids)
        for item in context.created
    ]
    return outcome


def _apply_statement_timeout(db: Session, timeout_seconds: float) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))


def _notify_new_restaurants(
    batch_id: str,
    created: list[CreatedEntitySummary],
    hook: RestaurantEnrichmentHook | None,
) -> None:
    if hook is None:
        return
    restaurants = [item for item in created if item.type == ENTITY_TYPE_RESTAURANT]
    if not restaurants:
        return
    try:
        hook(restaurants)
    except Exception:
        logger.exception(
            "ingest.enrichment_hook_failed batch_id=%s restaurants=%d",
            batch_id,
            len(restaurants),
        )


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:3]:
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts) or "invalid mention"
