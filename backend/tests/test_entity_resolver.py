"""Tests for tiered entity resolution and in-transaction materialization."""

from __future__ import annotations

from sqlalchemy import select

from foodgraph.entity_resolution.context import ResolutionContext
from foodgraph.entity_resolution.resolver import (
    TIER_ALIAS,
    TIER_EXACT,
    TIER_FUZZY,
    TIER_NEW,
    BatchResolution,
    EntityResolver,
    ResolutionOutcome,
)
from foodgraph.entity_resolution.temp_ids import ResolutionInput
from foodgraph.models.entity import Entity
from foodgraph.services.entity_creation import materialize_resolution
from foodgraph.services.errors import EntityCreationError, ErrorKind
from tests.support import DatabaseTestCase


def _input(temp_id: str, name: str, entity_type: str = "restaurant", aliases: list[str] | None = None) -> ResolutionInput:
    return ResolutionInput(
        temp_id=temp_id,
        normalized_name=name.lower(),
        original_text=name,
        entity_type=entity_type,
        aliases=aliases or [name],
    )


class EntityResolverTests(DatabaseTestCase):
    def _seed(self, name: str, entity_type: str = "restaurant", aliases: list[str] | None = None) -> Entity:
        entity = Entity(
            name=name,
            type=entity_type,
            aliases_json=aliases or [],
            restaurant_attribute_ids_json=[],
            metadata_json={},
        )
        self.db.add(entity)
        self.db.commit()
        return entity

    def test_resolution_tiers(self) -> None:
        franklin = self._seed("franklin barbecue", aliases=["Franklin Barbecue", "Franklin BBQ"])
        micklethwait = self._seed("micklethwait craft meats")
        brisket_food = self._seed("brisket", entity_type="food")

        resolution = EntityResolver().resolve_batch(
            self.db,
            [
                _input("r:exact", "Franklin Barbecue"),
                _input("r:alias", "Franklin BBQ"),
                _input("r:fuzzy", "Micklethwait Craft Meat"),
                _input("r:new", "Terry Black's"),
                _input("r:brisket", "Brisket"),
            ],
        )

        outcomes = resolution.outcomes
        self.assertEqual(outcomes["r:exact"].tier, TIER_EXACT)
        self.assertEqual(outcomes["r:exact"].entity_id, franklin.id)
        self.assertEqual(outcomes["r:alias"].tier, TIER_ALIAS)
        self.assertEqual(outcomes["r:alias"].entity_id, franklin.id)
        self.assertEqual(outcomes["r:fuzzy"].tier, TIER_FUZZY)
        self.assertEqual(outcomes["r:fuzzy"].entity_id, micklethwait.id)
        self.assertEqual(outcomes["r:new"].tier, TIER_NEW)
        self.assertIsNone(outcomes["r:new"].entity_id)
        # Same name under a different type never matches.
        self.assertEqual(outcomes["r:brisket"].tier, TIER_NEW)
        self.assertNotEqual(outcomes["r:brisket"].entity_id, brisket_food.id)

    def test_fuzzy_matching_can_be_disabled(self) -> None:
        self._seed("micklethwait craft meats")

        resolution = EntityResolver(enable_fuzzy=False).resolve_batch(
            self.db,
            [_input("r:fuzzy", "Micklethwait Craft Meat")],
        )

        self.assertEqual(resolution.outcomes["r:fuzzy"].tier, TIER_NEW)

    def test_new_duplicates_are_grouped_under_primary(self) -> None:
        resolution = EntityResolver().resolve_batch(
            self.db,
            [
                _input("restaurant:a/food:brisket", "Brisket", entity_type="food"),
                _input("restaurant:b/food:brisket", "brisket", entity_type="food", aliases=["Beef Brisket"]),
                _input("category:brisket", "Brisket", entity_type="food"),
            ],
        )

        groups = resolution.new_entity_groups()
        self.assertEqual(list(groups), ["restaurant:a/food:brisket"])
        self.assertEqual(len(groups["restaurant:a/food:brisket"]), 3)
        self.assertEqual(
            resolution.outcomes["category:brisket"].primary_temp_id,
            "restaurant:a/food:brisket",
        )

    def test_materialize_creates_one_row_per_group_with_alias_union(self) -> None:
        resolver = EntityResolver()
        resolution = resolver.resolve_batch(
            self.db,
            [
                _input("restaurant:a/food:brisket", "Brisket", entity_type="food"),
                _input("restaurant:b/food:brisket", "brisket", entity_type="food", aliases=["Beef Brisket"]),
                _input("restaurant:franklin", "Franklin Barbecue"),
            ],
        )
        context = ResolutionContext(batch_id="b1")

        materialize_resolution(self.db, resolution, context)
        self.db.commit()

        brisket = self.db.scalar(select(Entity).where(Entity.name == "brisket", Entity.type == "food"))
        self.assertIsNotNone(brisket)
        self.assertEqual(brisket.aliases_json, ["Brisket", "Beef Brisket"])
        self.assertIsNone(brisket.general_praise_upvotes)
        self.assertEqual(context.entity_id_for("restaurant:a/food:brisket"), brisket.id)
        self.assertEqual(context.entity_id_for("restaurant:b/food:brisket"), brisket.id)

        restaurant = self.db.scalar(select(Entity).where(Entity.type == "restaurant"))
        self.assertEqual(restaurant.general_praise_upvotes, 0)
        self.assertEqual({item.type for item in context.created}, {"food", "restaurant"})

    def test_materialize_reuses_row_when_store_disagrees_with_resolver(self) -> None:
        existing = self._seed("franklin barbecue", aliases=["Franklin Barbecue"])
        resolution = BatchResolution(
            outcomes={
                "restaurant:franklin": ResolutionOutcome(
                    temp_id="restaurant:franklin",
                    tier=TIER_NEW,
                    entity_type="restaurant",
                    normalized_name="franklin barbecue",
                    validated_aliases=["Franklin's"],
                    confidence=1.0,
                )
            }
        )
        context = ResolutionContext(batch_id="b2")

        with self.assertLogs("foodgraph.services.entity_creation", level="WARNING"):
            materialize_resolution(self.db, resolution, context)
        self.db.commit()

        self.assertEqual(context.entity_id_for("restaurant:franklin"), existing.id)
        self.assertEqual(context.created, [])
        self.assertEqual(context.reused_after_recheck, 1)
        self.db.refresh(existing)
        self.assertEqual(existing.aliases_json, ["Franklin Barbecue", "Franklin's"])
        self.assertEqual(len(list(self.db.scalars(select(Entity)))), 1)

    def test_existing_matches_merge_new_aliases(self) -> None:
        existing = self._seed("franklin barbecue", aliases=["Franklin Barbecue"])
        resolution = EntityResolver().resolve_batch(
            self.db,
            [_input("restaurant:franklin", "franklin barbecue", aliases=["Franklin's"])],
        )
        context = ResolutionContext(batch_id="b3")

        materialize_resolution(self.db, resolution, context)
        self.db.commit()

        self.db.refresh(existing)
        self.assertEqual(existing.aliases_json, ["Franklin Barbecue", "Franklin's"])

    def test_unbound_temp_id_raises_entity_creation_error(self) -> None:
        context = ResolutionContext(batch_id="b4")

        with self.assertRaises(EntityCreationError) as raised:
            context.entity_id_for("restaurant:missing")
        self.assertEqual(raised.exception.kind, ErrorKind.ENTITY_CREATION)
        self.assertFalse(raised.exception.retryable)
