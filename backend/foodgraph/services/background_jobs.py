"""Background jobs that run after a batch has committed."""

from __future__ import annotations

import logging
from time import perf_counter

from sqlalchemy import select

from foodgraph.db.session import SessionLocal
from foodgraph.models.entity import Entity
from foodgraph.schema.entity_types import ENTITY_TYPE_RESTAURANT

logger = logging.getLogger(__name__)

ENRICHMENT_STATUS_PENDING = "pending"


def queue_restaurant_enrichment(restaurant_ids: list[int]) -> int:
    """Flag newly created restaurants for the external location enrichment worker."""

    total_started = perf_counter()
    db = SessionLocal()
    try:
        restaurants = list(
            db.scalars(
                select(Entity).where(
                    Entity.id.in_(sorted(set(restaurant_ids))),
                    Entity.type == ENTITY_TYPE_RESTAURANT,
                )
            )
        )
        for restaurant in restaurants:
            metadata = dict(restaurant.metadata_json or {})
            if metadata.get("enrichment_status"):
                continue
            metadata["enrichment_status"] = ENRICHMENT_STATUS_PENDING
            restaurant.metadata_json = metadata
        db.commit()
        logger.info(
            "ingest.enrichment_queued restaurants=%d total_ms=%.2f",
            len(restaurants),
            (perf_counter() - total_started) * 1000.0,
        )
        return len(restaurants)
    except Exception:
        logger.exception(
            "ingest.enrichment_queue_failed restaurants=%d elapsed_ms=%.2f",
            len(restaurant_ids),
            (perf_counter() - total_started) * 1000.0,
        )
        raise
    finally:
        db.close()
