"""Controlled entity, activity and pipeline vocabularies."""

from __future__ import annotations

import re


ENTITY_TYPE_RESTAURANT = "restaurant"
ENTITY_TYPE_FOOD = "food"
ENTITY_TYPE_FOOD_ATTRIBUTE = "food_attribute"
ENTITY_TYPE_RESTAURANT_ATTRIBUTE = "restaurant_attribute"

ENTITY_TYPE_VALUES: tuple[str, ...] = (
    ENTITY_TYPE_RESTAURANT,
    ENTITY_TYPE_FOOD,
    ENTITY_TYPE_FOOD_ATTRIBUTE,
    ENTITY_TYPE_RESTAURANT_ATTRIBUTE,
)
ENTITY_TYPE_SET = set(ENTITY_TYPE_VALUES)

ACTIVITY_LEVEL_NORMAL = "normal"
ACTIVITY_LEVEL_ACTIVE = "active"
ACTIVITY_LEVEL_TRENDING = "trending"
ACTIVITY_LEVEL_VALUES: tuple[str, ...] = (
    ACTIVITY_LEVEL_NORMAL,
    ACTIVITY_LEVEL_ACTIVE,
    ACTIVITY_LEVEL_TRENDING,
)

PIPELINE_ARCHIVE = "archive"
PIPELINE_CHRONOLOGICAL = "chronological"
PIPELINE_KEYWORD_SEARCH = "keyword_search"
PIPELINE_ON_DEMAND = "on_demand"
DEFAULT_PIPELINE = PIPELINE_CHRONOLOGICAL

_PIPELINE_SYNONYMS: dict[str, str] = {
    "archive": PIPELINE_ARCHIVE,
    "archival": PIPELINE_ARCHIVE,
    "pushshift": PIPELINE_ARCHIVE,
    "historical": PIPELINE_ARCHIVE,
    "chronological": PIPELINE_CHRONOLOGICAL,
    "chrono": PIPELINE_CHRONOLOGICAL,
    "realtime": PIPELINE_CHRONOLOGICAL,
    "new": PIPELINE_CHRONOLOGICAL,
    "keyword": PIPELINE_KEYWORD_SEARCH,
    "keyword_search": PIPELINE_KEYWORD_SEARCH,
    "search": PIPELINE_KEYWORD_SEARCH,
    "on_demand": PIPELINE_ON_DEMAND,
    "ondemand": PIPELINE_ON_DEMAND,
    "manual": PIPELINE_ON_DEMAND,
}

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def normalize_entity_type(raw_type: str | None) -> str | None:
    """Normalize to the controlled entity type list, or None when unknown."""

    cleaned = _clean_text(raw_type).lower().replace(" ", "_").replace("-", "_")
    return cleaned if cleaned in ENTITY_TYPE_SET else None


def normalize_pipeline(collection_type: str | None) -> str:
    """Derive the source-ledger pipeline key from a batch collection type."""

    cleaned = _clean_text(collection_type).lower()
    if not cleaned:
        return DEFAULT_PIPELINE
    slug = _NON_SLUG_RE.sub("_", cleaned).strip("_")
    if not slug:
        return DEFAULT_PIPELINE
    return _PIPELINE_SYNONYMS.get(slug, _PIPELINE_SYNONYMS.get(slug.replace("_", ""), slug))


def _clean_text(value: str | None) -> str:
    if not value:
        return ""
    return " ".join(value.strip().split())
