"""Controlled vocabularies for the food graph."""

from foodgraph.schema.entity_types import (
    ACTIVITY_LEVEL_VALUES,
    ENTITY_TYPE_VALUES,
    normalize_entity_type,
    normalize_pipeline,
)

__all__ = [
    "ACTIVITY_LEVEL_VALUES",
    "ENTITY_TYPE_VALUES",
    "normalize_entity_type",
    "normalize_pipeline",
]
