"""Materialize resolver output inside the batch mutation transaction."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from foodgraph.entity_resolution.context import CreatedEntity, ResolutionContext
from foodgraph.entity_resolution.resolver import RESOLVER_VERSION, TIER_NEW, BatchResolution, ResolutionOutcome
from foodgraph.entity_resolution.similarity import merge_aliases
from foodgraph.models.entity import Entity
from foodgraph.schema.entity_types import ENTITY_TYPE_RESTAURANT
from foodgraph.services.errors import EntityCreationError

logger = logging.getLogger(__name__)


def materialize_resolution(db: Session, resolution: BatchResolution, context: ResolutionContext) -> None:
    """Bind every temp id in `resolution` to an entity id, creating rows for new entities."""

    _bind_existing(db, resolution, context)
    for primary_temp_id, members in resolution.new_entity_groups().items():
        primary = resolution.outcomes.get(primary_temp_id) or members[0]
        aliases: list[str] = []
        for member in [primary, *members]:
            aliases = merge_aliases(aliases, member.validated_aliases)
        temp_ids = sorted({primary_temp_id, *(member.temp_id for member in members)})

        entity = _find_entity(db, primary.normalized_name, primary.entity_type)
        if entity is not None:
            logger.warning(
                "resolution.storage_disagreement batch_id=%s temp_id=%s entity_id=%d name=%s type=%s",
                context.batch_id,
                primary_temp_id,
                entity.id,
                entity.name,
                entity.type,
            )
            entity.aliases_json = merge_aliases(entity.aliases_json or [], aliases)
            context.reused_after_recheck += 1
        else:
            entity = _insert_entity(db, primary, aliases, temp_ids, context)

        for temp_id in temp_ids:
            context.bind(temp_id, entity.id)


def _bind_existing(db: Session, resolution: BatchResolution, context: ResolutionContext) -> None:
    aliases_by_entity: dict[int, list[str]] = {}
    for outcome in resolution.outcomes.values():
        if outcome.tier == TIER_NEW:
            continue
        if outcome.entity_id is None:
            raise EntityCreationError(
                f"Resolver returned tier {outcome.tier!r} without an entity id.",
                temp_id=outcome.temp_id,
            )
        context.bind(outcome.temp_id, outcome.entity_id)
        aliases_by_entity[outcome.entity_id] = merge_aliases(
            aliases_by_entity.get(outcome.entity_id, []),
            outcome.validated_aliases,
        )
    if not aliases_by_entity:
        return
    entities = db.scalars(select(Entity).where(Entity.id.in_(sorted(aliases_by_entity))))
    for entity in entities:
        merged = merge_aliases(entity.aliases_json or [], aliases_by_entity[entity.id])
        if merged != (entity.aliases_json or []):
            entity.aliases_json = merged


def _find_entity(db: Session, name: str, entity_type: str) -> Entity | None:
    return db.scalar(select(Entity).where(Entity.name == name, Entity.type == entity_type))


def _insert_entity(
    db: Session,
    primary: ResolutionOutcome,
    aliases: list[str],
    temp_ids: list[str],
    context: ResolutionContext,
) -> Entity:
    is_restaurant = primary.entity_type == ENTITY_TYPE_RESTAURANT
    try:
        with db.begin_nested():
            entity = Entity(
                name=primary.normalized_name,
                type=primary.entity_type,
                aliases_json=aliases,
                restaurant_attribute_ids_json=[],
                restaurant_quality_score=0.0,
                general_praise_upvotes=0 if is_restaurant else None,
                metadata_json={
                    "display_name": aliases[0] if aliases else primary.normalized_name,
                    "resolver_version": RESOLVER_VERSION,
                },
            )
            db.add(entity)
            db.flush()
    except IntegrityError as exc:
        # Another writer committed the same (name, type) between re-check and insert.
        entity = _find_entity(db, primary.normalized_name, primary.entity_type)
        if entity is None:
            raise EntityCreationError(
                f"Could not create {primary.entity_type} entity {primary.normalized_name!r}.",
                temp_id=primary.temp_id,
            ) from exc
        entity.aliases_json = merge_aliases(entity.aliases_json or [], aliases)
        context.reused_after_recheck += 1
        logger.warning(
            "resolution.insert_race batch_id=%s temp_id=%s entity_id=%d",
            context.batch_id,
            primary.temp_id,
            entity.id,
        )
        return entity

    if entity.id is None:
        raise EntityCreationError(
            f"Store returned no id for {primary.entity_type} entity {primary.normalized_name!r}.",
            temp_id=primary.temp_id,
        )
    context.created.append(
        CreatedEntity(id=entity.id, name=entity.name, type=entity.type, temp_ids=temp_ids)
    )
    return entity
