"""Entity resolution package."""

from foodgraph.entity_resolution.context import CreatedEntity, ResolutionContext
from foodgraph.entity_resolution.resolver import (
    RESOLVER_VERSION,
    TIER_ALIAS,
    TIER_EXACT,
    TIER_FUZZY,
    TIER_NEW,
    BatchResolution,
    EntityResolver,
    ResolutionOutcome,
)
from foodgraph.entity_resolution.temp_ids import (
    MentionTempIds,
    ResolutionInput,
    build_temp_id,
    collect_resolution_inputs,
    slugify_temp_fragment,
)

__all__ = [
    "RESOLVER_VERSION",
    "TIER_ALIAS",
    "TIER_EXACT",
    "TIER_FUZZY",
    "TIER_NEW",
    "BatchResolution",
    "CreatedEntity",
    "EntityResolver",
    "MentionTempIds",
    "ResolutionContext",
    "ResolutionInput",
    "ResolutionOutcome",
    "build_temp_id",
    "collect_resolution_inputs",
    "slugify_temp_fragment",
]
