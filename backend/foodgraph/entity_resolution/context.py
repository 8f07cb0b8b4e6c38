"""Per-batch temp id -> entity id arena."""

from __future__ import annotations

from dataclasses import dataclass, field

from foodgraph.services.errors import EntityCreationError


@dataclass(slots=True)
class CreatedEntity:
    id: int
    name: str
    type: str
    temp_ids: list[str]


@dataclass(slots=True)
class ResolutionContext:
    """Temp id bindings for one (sub-)batch transaction.

    Lives only as long as the batch; nothing here is shared across batches.
    """

    batch_id: str
    entity_ids: dict[str, int] = field(default_factory=dict)
    created: list[CreatedEntity] = field(default_factory=list)
    reused_after_recheck: int = 0

    def bind(self, temp_id: str, entity_id: int) -> None:
        self.entity_ids[temp_id] = entity_id

    def entity_id_for(self, temp_id: str) -> int:
        entity_id = self.entity_ids.get(temp_id)
        if entity_id is None:
            raise EntityCreationError(
                f"No entity id bound for temp id {temp_id!r} in batch {self.batch_id}.",
                temp_id=temp_id,
            )
        return entity_id

    def entity_ids_for(self, temp_ids: list[str]) -> list[int]:
        resolved: list[int] = []
        for temp_id in temp_ids:
            entity_id = self.entity_id_for(temp_id)
            if entity_id not in resolved:
                resolved.append(entity_id)
        return resolved
