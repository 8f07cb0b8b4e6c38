"""Deterministic temp ids for entity-denoting mention fields."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Iterable

from foodgraph.entity_resolution.similarity import merge_aliases, normalize_entity_name
from foodgraph.schema.entity_types import (
    ENTITY_TYPE_FOOD,
    ENTITY_TYPE_FOOD_ATTRIBUTE,
    ENTITY_TYPE_RESTAURANT,
    ENTITY_TYPE_RESTAURANT_ATTRIBUTE,
)
from foodgraph.schemas.mentions import MentionInput


SCOPE_RESTAURANT = "restaurant"
SCOPE_FOOD = "food"
SCOPE_CATEGORY = "category"
SCOPE_FOOD_ATTRIBUTE = "food_attribute"
SCOPE_RESTAURANT_ATTRIBUTE = "restaurant_attribute"

_SCOPE_ENTITY_TYPES: dict[str, str] = {
    SCOPE_RESTAURANT: ENTITY_TYPE_RESTAURANT,
    SCOPE_FOOD: ENTITY_TYPE_FOOD,
    SCOPE_CATEGORY: ENTITY_TYPE_FOOD,
    SCOPE_FOOD_ATTRIBUTE: ENTITY_TYPE_FOOD_ATTRIBUTE,
    SCOPE_RESTAURANT_ATTRIBUTE: ENTITY_TYPE_RESTAURANT_ATTRIBUTE,
}

_NON_ALNUM_RUN_RE = re.compile(r"[^a-z0-9]+")
_HASH_LENGTH = 16


def slugify_temp_fragment(value: str | None) -> str:
    """Trim, lowercase, and collapse non-alphanumeric runs to '-'."""

    if not value:
        return ""
    return _NON_ALNUM_RUN_RE.sub("-", value.strip().lower()).strip("-")


def build_temp_id(
    scope: str,
    value: str | None,
    *,
    source_id: str | None,
    raw_values: Iterable[str | None] = (),
    parent_temp_id: str | None = None,
) -> str:
    """Build a reproducible temp id.

    Values that slugify to nothing fall back to a truncated sha1 of
    scope, source id and the raw field values.
    """

    slug = slugify_temp_fragment(value)
    if not slug:
        composite = "\x1f".join([scope, source_id or "", *(raw or "" for raw in raw_values)])
        slug = "h" + hashlib.sha1(composite.encode("utf-8")).hexdigest()[:_HASH_LENGTH]
    local_id = f"{scope}:{slug}"
    if parent_temp_id:
        return f"{parent_temp_id}/{local_id}"
    return local_id


@dataclass(slots=True)
class ResolutionInput:
    """One entity reference to resolve."""

    temp_id: str
    normalized_name: str
    original_text: str
    entity_type: str
    aliases: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MentionTempIds:
    """Temp ids for every entity-denoting field of one mention."""

    restaurant: str
    food: str | None = None
    categories: list[str] = field(default_factory=list)
    food_attributes: list[str] = field(default_factory=list)
    restaurant_attributes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResolutionInputSet:
    inputs: list[ResolutionInput]
    mention_temp_ids: list[MentionTempIds]


def collect_resolution_inputs(mentions: list[MentionInput]) -> ResolutionInputSet:
    """Build temp ids for each mention and the deduplicated resolver input list."""

    by_temp_id: dict[str, ResolutionInput] = {}
    mention_temp_ids: list[MentionTempIds] = []

    def register(scope: str, value: str, temp_id: str, extra_aliases: list[str | None]) -> None:
        aliases = [alias for alias in [value, *extra_aliases] if alias]
        existing = by_temp_id.get(temp_id)
        if existing is not None:
            existing.aliases = merge_aliases(existing.aliases, aliases)
            return
        by_temp_id[temp_id] = ResolutionInput(
            temp_id=temp_id,
            normalized_name=normalize_entity_name(value),
            original_text=value,
            entity_type=_SCOPE_ENTITY_TYPES[scope],
            aliases=merge_aliases([], aliases),
        )

    for mention in mentions:
        restaurant_temp_id = build_temp_id(
            SCOPE_RESTAURANT,
            mention.restaurant,
            source_id=mention.source_id,
            raw_values=[mention.restaurant, mention.restaurant_surface],
        )
        register(SCOPE_RESTAURANT, mention.restaurant, restaurant_temp_id, [mention.restaurant_surface])
        temp_ids = MentionTempIds(restaurant=restaurant_temp_id)

        if mention.food:
            food_temp_id = build_temp_id(
                SCOPE_FOOD,
                mention.food,
                source_id=mention.source_id,
                raw_values=[mention.food, mention.food_surface],
                parent_temp_id=restaurant_temp_id,
            )
            register(SCOPE_FOOD, mention.food, food_temp_id, [mention.food_surface])
            temp_ids.food = food_temp_id

        for scope, values, target in (
            (SCOPE_CATEGORY, mention.food_categories, temp_ids.categories),
            (SCOPE_FOOD_ATTRIBUTE, mention.food_attributes, temp_ids.food_attributes),
            (SCOPE_RESTAURANT_ATTRIBUTE, mention.restaurant_attributes, temp_ids.restaurant_attributes),
        ):
            for value in values:
                temp_id = build_temp_id(scope, value, source_id=mention.source_id, raw_values=[value])
                register(scope, value, temp_id, [])
                if temp_id not in target:
                    target.append(temp_id)

        mention_temp_ids.append(temp_ids)

    return ResolutionInputSet(inputs=list(by_temp_id.values()), mention_temp_ids=mention_temp_ids)
