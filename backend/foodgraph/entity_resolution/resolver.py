"""Tiered entity resolution against the canonical entity store."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.orm import Session

from foodgraph.config import get_settings
from foodgraph.entity_resolution.similarity import (
    alias_key,
    edit_distance,
    merge_aliases,
    normalize_entity_text,
    string_similarity,
)
from foodgraph.entity_resolution.temp_ids import ResolutionInput
from foodgraph.models.entity import Entity

logger = logging.getLogger(__name__)

RESOLVER_VERSION = "ingest-v1"

TIER_EXACT = "exact"
TIER_ALIAS = "alias"
TIER_FUZZY = "fuzzy"
TIER_NEW = "new"

_ASCII_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(slots=True)
class ResolutionOutcome:
    """Resolver decision for one temp id."""

    temp_id: str
    tier: str
    entity_type: str
    normalized_name: str
    validated_aliases: list[str]
    confidence: float
    entity_id: int | None = None
    primary_temp_id: str | None = None


@dataclass(slots=True)
class BatchResolution:
    """Resolver output for one batch, keyed by temp id."""

    outcomes: dict[str, ResolutionOutcome] = field(default_factory=dict)

    def tier_counts(self) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for outcome in self.outcomes.values():
            counts[outcome.tier] += 1
        return dict(counts)

    def new_entity_groups(self) -> dict[str, list[ResolutionOutcome]]:
        """Primary temp id -> every outcome that should collapse into its row."""

        groups: dict[str, list[ResolutionOutcome]] = {}
        for outcome in self.outcomes.values():
            if outcome.tier != TIER_NEW:
                continue
            primary = self._root_primary(outcome)
            groups.setdefault(primary, []).append(outcome)
        return groups

    def _root_primary(self, outcome: ResolutionOutcome) -> str:
        seen: set[str] = set()
        current = outcome
        while current.primary_temp_id and current.primary_temp_id not in seen:
            seen.add(current.temp_id)
            parent = self.outcomes.get(current.primary_temp_id)
            if parent is None:
                return current.primary_temp_id
            current = parent
        return current.temp_id


class EntityResolver:
    """Resolve entity references by exact name, alias, fuzzy match, or mark them new."""

    def __init__(
        self,
        *,
        enable_fuzzy: bool | None = None,
        fuzzy_threshold: float | None = None,
        max_edit_distance: int | None = None,
        alias_confidence: float | None = None,
        max_candidates: int | None = None,
    ) -> None:
        settings = get_settings()
        self.enable_fuzzy = settings.resolution_enable_fuzzy_matching if enable_fuzzy is None else enable_fuzzy
        self.fuzzy_threshold = (
            settings.resolution_fuzzy_similarity_threshold if fuzzy_threshold is None else fuzzy_threshold
        )
        self.max_edit_distance = (
            settings.resolution_fuzzy_max_edit_distance if max_edit_distance is None else max_edit_distance
        )
        self.alias_confidence = (
            settings.resolution_alias_confidence if alias_confidence is None else alias_confidence
        )
        self.max_candidates = max(50, settings.resolution_max_candidates if max_candidates is None else max_candidates)

    def resolve_batch(self, db: Session, inputs: Iterable[ResolutionInput]) -> BatchResolution:
        resolution = BatchResolution()
        by_type: dict[str, list[ResolutionInput]] = defaultdict(list)
        for item in inputs:
            if item.temp_id in resolution.outcomes:
                continue
            by_type[item.entity_type].append(item)
            resolution.outcomes[item.temp_id] = ResolutionOutcome(
                temp_id=item.temp_id,
                tier=TIER_NEW,
                entity_type=item.entity_type,
                normalized_name=item.normalized_name,
                validated_aliases=merge_aliases([], [item.original_text, *item.aliases]),
                confidence=1.0,
            )

        for entity_type, items in by_type.items():
            unresolved = self._resolve_exact(db, entity_type, items, resolution)
            if not unresolved:
                continue
            candidates = self._load_candidates(db, entity_type, unresolved)
            unresolved = self._resolve_alias(unresolved, candidates, resolution)
            if self.enable_fuzzy and unresolved:
                unresolved = self._resolve_fuzzy(unresolved, candidates, resolution)
            self._group_new(unresolved, resolution)

        logger.debug(
            "resolution.batch resolver_version=%s inputs=%d tiers=%s",
            RESOLVER_VERSION,
            len(resolution.outcomes),
            resolution.tier_counts(),
        )
        return resolution

    def _resolve_exact(
        self,
        db: Session,
        entity_type: str,
        items: list[ResolutionInput],
        resolution: BatchResolution,
    ) -> list[ResolutionInput]:
        names = sorted({item.normalized_name for item in items})
        existing = {
            entity.name: entity
            for entity in db.scalars(
                select(Entity).where(Entity.type == entity_type, Entity.name.in_(names))
            )
        }
        unresolved: list[ResolutionInput] = []
        for item in items:
            entity = existing.get(item.normalized_name)
            if entity is None:
                unresolved.append(item)
                continue
            self._mark(resolution, item, entity, TIER_EXACT, 1.0)
        return unresolved

    def _load_candidates(
        self,
        db: Session,
        entity_type: str,
        items: list[ResolutionInput],
    ) -> list[Entity]:
        recent = list(
            db.scalars(
                select(Entity)
                .where(Entity.type == entity_type)
                .order_by(Entity.id.desc())
                .limit(self.max_candidates)
            )
        )
        tokens = {
            max(_ASCII_TOKEN_RE.findall(alias_key(alias)) or [""], key=len)
            for item in items
            for alias in [item.original_text, *item.aliases]
        }
        tokens.discard("")
        targeted: list[Entity] = []
        if tokens:
            aliases_text = func.lower(cast(Entity.aliases_json, String))
            targeted = list(
                db.scalars(
                    select(Entity)
                    .where(
                        Entity.type == entity_type,
                        or_(*(aliases_text.contains(token) for token in sorted(tokens))),
                    )
                    .limit(self.max_candidates)
                )
            )
        by_id = {entity.id: entity for entity in [*targeted, *recent]}
        return [by_id[key] for key in sorted(by_id)]

    def _resolve_alias(
        self,
        items: list[ResolutionInput],
        candidates: list[Entity],
        resolution: BatchResolution,
    ) -> list[ResolutionInput]:
        alias_index: dict[str, Entity] = {}
        for entity in candidates:
            for alias in [entity.name, *(entity.aliases_json or [])]:
                alias_index.setdefault(alias_key(alias), entity)

        unresolved: list[ResolutionInput] = []
        for item in items:
            match: Entity | None = None
            for alias in [item.original_text, *item.aliases]:
                match = alias_index.get(alias_key(alias))
                if match is not None:
                    break
            if match is None:
                unresolved.append(item)
                continue
            self._mark(resolution, item, match, TIER_ALIAS, self.alias_confidence)
        return unresolved

    def _resolve_fuzzy(
        self,
        items: list[ResolutionInput],
        candidates: list[Entity],
        resolution: BatchResolution,
    ) -> list[ResolutionInput]:
        unresolved: list[ResolutionInput] = []
        for item in items:
            best: tuple[Entity, float] | None = None
            needle = normalize_entity_text(item.normalized_name)
            if not needle:
                unresolved.append(item)
                continue
            for entity in candidates:
                for label in [entity.name, *(entity.aliases_json or [])]:
                    candidate = normalize_entity_text(label)
                    if not candidate or not _coarse_name_gate(needle, candidate):
                        continue
                    score = string_similarity(needle, candidate)
                    if score < self.fuzzy_threshold:
                        continue
                    if edit_distance(needle, candidate, limit=self.max_edit_distance) > self.max_edit_distance:
                        continue
                    if best is None or score > best[1]:
                        best = (entity, score)
            if best is None:
                unresolved.append(item)
                continue
            self._mark(resolution, item, best[0], TIER_FUZZY, best[1])
        return unresolved

    def _group_new(self, items: list[ResolutionInput], resolution: BatchResolution) -> None:
        primary_by_key: dict[tuple[str, str], str] = {}
        for item in items:
            outcome = resolution.outcomes[item.temp_id]
            outcome.tier = TIER_NEW
            outcome.entity_id = None
            outcome.confidence = 1.0
            primary = primary_by_key.setdefault((item.entity_type, item.normalized_name), item.temp_id)
            if primary != item.temp_id:
                outcome.primary_temp_id = primary

    @staticmethod
    def _mark(
        resolution: BatchResolution,
        item: ResolutionInput,
        entity: Entity,
        tier: str,
        confidence: float,
    ) -> None:
        outcome = resolution.outcomes[item.temp_id]
        outcome.tier = tier
        outcome.entity_id = entity.id
        outcome.normalized_name = entity.name
        outcome.confidence = confidence


def _coarse_name_gate(left: str, right: str) -> bool:
    if left[:1] == right[:1]:
        return True
    return bool(set(left.split()) & set(right.split()))
