"""Mention ingestion, boost replay and quality score routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from foodgraph.db.dependencies import get_db
from foodgraph.models.entity import Entity
from foodgraph.schema.entity_types import ENTITY_TYPE_RESTAURANT
from foodgraph.schemas.common import ApiErrorDetail, ApiResponse
from foodgraph.schemas.mentions import MentionBatchRequest
from foodgraph.schemas.processing import (
    CreatedEntitySummary,
    ProcessingResult,
    QualityScoreError,
    QualityScoreUpdateSummary,
    ReplayError,
    ReplaySummary,
)
from foodgraph.schemas.quality import BoostReplayRequest, PerformanceScoreRead, QualityScoreRefreshRequest
from foodgraph.services.background_jobs import queue_restaurant_enrichment
from foodgraph.services.batch_processing import process_mention_batch
from foodgraph.services.boost_replay import replay_boosts_for_restaurants
from foodgraph.services.errors import ProcessingError
from foodgraph.services.quality_scores import QualityScoreService


router = APIRouter()


@router.post("/mention-batches", response_model=ApiResponse[ProcessingResult])
def ingest_mention_batch(
    payload: MentionBatchRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ApiResponse[ProcessingResult]:
    """Ingest one batch of extracted mentions."""

    def schedule_enrichment(restaurants: list[CreatedEntitySummary]) -> None:
        background_tasks.add_task(queue_restaurant_enrichment, [item.id for item in restaurants])

    try:
        result = process_mention_batch(
            db,
            payload,
            payload.processing_config,
            enrichment_hook=schedule_enrichment,
        )
    except ProcessingError as exc:
        detail = ApiErrorDetail(
            kind=exc.kind.value,
            message=str(exc),
            batch_id=exc.batch_id,
            mention_count=exc.mention_count,
        )
        raise HTTPException(status_code=503 if exc.retryable else 422, detail=detail.model_dump()) from exc
    return ApiResponse(data=result)


@router.post("/boosts/replay", response_model=ApiResponse[ReplaySummary])
def replay_boosts(
    payload: BoostReplayRequest,
    db: Session = Depends(get_db),
) -> ApiResponse[ReplaySummary]:
    """Re-run boost replay for restaurants; safe to repeat."""

    result = replay_boosts_for_restaurants(db, payload.restaurant_ids)
    return ApiResponse(
        data=ReplaySummary(
            restaurants_processed=result.restaurants_processed,
            connections_boosted=result.connections_boosted,
            events_applied=result.events_applied,
            errors=[ReplayError(restaurant_id=item.restaurant_id, error=item.error) for item in result.errors],
        )
    )


@router.post("/quality-scores/refresh", response_model=ApiResponse[QualityScoreUpdateSummary])
def refresh_quality_scores(
    payload: QualityScoreRefreshRequest,
    db: Session = Depends(get_db),
) -> ApiResponse[QualityScoreUpdateSummary]:
    """Recompute food and restaurant quality scores for connections."""

    result = QualityScoreService(db).update_quality_scores_for_connections(payload.connection_ids)
    return ApiResponse(
        data=QualityScoreUpdateSummary(
            connections_updated=result.connections_updated,
            restaurants_updated=result.restaurants_updated,
            average_processing_time_ms=result.average_processing_time_ms,
            errors=[
                QualityScoreError(connection_id=item.connection_id, restaurant_id=item.restaurant_id, error=item.error)
                for item in result.errors
            ],
        )
    )


@router.get(
    "/restaurants/{restaurant_id}/performance",
    response_model=ApiResponse[PerformanceScoreRead],
)
def get_performance_score(
    restaurant_id: int = Path(..., ge=1),
    category_id: int | None = Query(default=None, ge=1),
    attribute_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[PerformanceScoreRead]:
    """Category or food-attribute performance score for one restaurant."""

    if (category_id is None) == (attribute_id is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of category_id or attribute_id.")
    restaurant = db.get(Entity, restaurant_id)
    if restaurant is None or restaurant.type != ENTITY_TYPE_RESTAURANT:
        raise HTTPException(status_code=404, detail="Restaurant not found")

    service = QualityScoreService(db)
    if category_id is None:
        score = service.calculate_attribute_performance_score(restaurant_id, attribute_id)
        target_id = attribute_id
    else:
        score = service.calculate_category_performance_score(restaurant_id, category_id)
        target_id = category_id
    return ApiResponse(data=PerformanceScoreRead(restaurant_id=restaurant_id, target_id=target_id, score=score))
