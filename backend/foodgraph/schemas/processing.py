"""Mention batch processing result schemas."""

from pydantic import BaseModel, Field


class CreatedEntitySummary(BaseModel):
    """Entity created while processing a batch."""

    id: int
    name: str
    type: str
    temp_ids: list[str]


class SubBatchFailure(BaseModel):
    """A sub-batch that exhausted retries or hit a non-retryable error."""

    sub_batch_id: str
    mention_count: int
    error_kind: str
    error: str
    attempts: int


class ReplayError(BaseModel):
    restaurant_id: int
    error: str


class ReplaySummary(BaseModel):
    """Boost replay outcome for the restaurants touched by a batch."""

    restaurants_processed: int = 0
    connections_boosted: int = 0
    events_applied: int = 0
    errors: list[ReplayError] = Field(default_factory=list)


class QualityScoreError(BaseModel):
    connection_id: int | None = None
    restaurant_id: int | None = None
    error: str


class QualityScoreUpdateSummary(BaseModel):
    """Quality score recompute outcome."""

    connections_updated: int = 0
    restaurants_updated: int = 0
    average_processing_time_ms: float = 0.0
    errors: list[QualityScoreError] = Field(default_factory=list)


class SkippedMention(BaseModel):
    index: int
    error: str


class ProcessingResult(BaseModel):
    """Mention batch processing summary."""

    batch_id: str
    pipeline: str
    mentions_received: int
    mentions_accepted: int = 0
    mentions_skipped: int = 0
    duplicates_skipped: int = 0
    entities_created: int = 0
    connections_created: int = 0
    connections_boosted: int = 0
    boost_events_created: int = 0
    affected_connection_ids: list[int] = Field(default_factory=list)
    created_entities: list[CreatedEntitySummary] = Field(default_factory=list)
    skipped_mentions: list[SkippedMention] = Field(default_factory=list)
    succeeded_sub_batches: list[str] = Field(default_factory=list)
    failed_sub_batches: list[SubBatchFailure] = Field(default_factory=list)
    replay: ReplaySummary = Field(default_factory=ReplaySummary)
    quality_scores: QualityScoreUpdateSummary | None = None
    processing_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failed_sub_batches
