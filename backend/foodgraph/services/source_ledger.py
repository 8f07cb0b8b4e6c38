"""Source ledger: at-most-once ingestion per (pipeline, source id)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from foodgraph.models.source_ledger_record import SourceLedgerRecord
from foodgraph.schema.entity_types import normalize_pipeline
from foodgraph.schemas.mentions import MentionInput
from foodgraph.services.decay import utc_now

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK_SIZE = 500


@dataclass(slots=True)
class LedgerRow:
    pipeline: str
    source_id: str
    subreddit: str | None
    batch_id: str | None = None


@dataclass(slots=True)
class LedgerFilterResult:
    """Mentions to process plus the ledger rows their transaction must insert."""

    accepted: list[MentionInput] = field(default_factory=list)
    ledger_rows: list[LedgerRow] = field(default_factory=list)
    duplicates_in_batch: int = 0
    already_processed: int = 0

    @property
    def duplicates_skipped(self) -> int:
        return self.duplicates_in_batch + self.already_processed


def pipeline_for_collection_type(collection_type: str | None) -> str:
    return normalize_pipeline(collection_type)


def filter_new_mentions(
    db: Session,
    mentions: list[MentionInput],
    pipeline: str,
    *,
    batch_id: str | None = None,
    default_subreddit: str | None = None,
) -> LedgerFilterResult:
    """Drop mentions already ingested by `pipeline`; no writes happen here."""

    result = LedgerFilterResult()
    first_by_source: dict[str, MentionInput] = {}
    ordered: list[MentionInput] = []
    for mention in mentions:
        if mention.source_id is None:
            ordered.append(mention)
            continue
        if mention.source_id in first_by_source:
            result.duplicates_in_batch += 1
            continue
        first_by_source[mention.source_id] = mention
        ordered.append(mention)

    processed = _processed_source_ids(db, pipeline, list(first_by_source))
    for mention in ordered:
        if mention.source_id is None:
            result.accepted.append(mention)
            continue
        if mention.source_id in processed:
            result.already_processed += 1
            continue
        result.accepted.append(mention)
        result.ledger_rows.append(
            LedgerRow(
                pipeline=pipeline,
                source_id=mention.source_id,
                subreddit=mention.subreddit or default_subreddit,
                batch_id=batch_id,
            )
        )

    if result.duplicates_skipped:
        logger.info(
            "ledger.duplicates_skipped pipeline=%s batch_id=%s in_batch=%d already_processed=%d",
            pipeline,
            batch_id,
            result.duplicates_in_batch,
            result.already_processed,
        )
    return result


def insert_ledger_rows(db: Session, rows: list[LedgerRow], *, processed_at: datetime | None = None) -> None:
    """Insert ledger rows inside the caller's transaction, skipping existing keys."""

    if not rows:
        return
    timestamp = processed_at or utc_now()
    values = [
        {
            "pipeline": row.pipeline,
            "source_id": row.source_id,
            "subreddit": row.subreddit,
            "batch_id": row.batch_id,
            "processed_at": timestamp,
        }
        for row in rows
    ]
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        statement = postgresql_insert(SourceLedgerRecord).on_conflict_do_nothing(
            index_elements=["pipeline", "source_id"]
        )
    elif dialect == "sqlite":
        statement = sqlite_insert(SourceLedgerRecord).on_conflict_do_nothing(
            index_elements=["pipeline", "source_id"]
        )
    else:
        existing = _processed_source_ids(db, rows[0].pipeline, [row.source_id for row in rows])
        values = [value for value in values if value["source_id"] not in existing]
        if not values:
            return
        statement = insert(SourceLedgerRecord)
    db.execute(statement, values)


def _processed_source_ids(db: Session, pipeline: str, source_ids: list[str]) -> set[str]:
    found: set[str] = set()
    for start in range(0, len(source_ids), _LOOKUP_CHUNK_SIZE):
        chunk = source_ids[start : start + _LOOKUP_CHUNK_SIZE]
        found.update(
            db.scalars(
                select(SourceLedgerRecord.source_id).where(
                    SourceLedgerRecord.pipeline == pipeline,
                    SourceLedgerRecord.source_id.in_(chunk),
                )
            )
        )
    return found
