"""Tests for category boost replay onto restaurant connections."""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.services.batch_processing import process_mention_batch
from foodgraph.services.boost_replay import (
    RESTAURANT_LOCK_STRIPES,
    replay_boosts_for_restaurants,
    restaurant_lock,
)
from foodgraph.services.decay import ensure_utc
from tests.support import NOW, T0, DatabaseTestCase, batch, mention

T1 = T0 + timedelta(days=1)


class BoostReplayTests(DatabaseTestCase):
    def _restaurant(self) -> Entity:
        return self.db.scalar(select(Entity).where(Entity.type == "restaurant"))

    def _connection_for(self, food_name: str) -> Connection:
        food = self.db.scalar(select(Entity).where(Entity.name == food_name, Entity.type == "food"))
        return self.db.scalar(select(Connection).where(Connection.food_id == food.id))

    def test_category_event_is_applied_exactly_once(self) -> None:
        process_mention_batch(
            self.db,
            batch([mention(food="Brisket Sandwich", is_menu_item=True, food_categories=["Sandwiches"])]),
            now=NOW,
        )

        result = process_mention_batch(
            self.db,
            batch(
                [mention(food_categories=["Sandwiches"], source_ups=30, source_created_at=T1.isoformat())],
                batch_id="batch-002",
            ),
            now=NOW,
        )

        connection = self._connection_for("brisket sandwich")
        self.assertEqual(result.replay.events_applied, 1)
        self.assertEqual(result.replay.connections_boosted, 1)
        self.assertIn(connection.id, result.affected_connection_ids)
        self.assertEqual((connection.mention_count, connection.total_upvotes), (2, 40))
        self.assertEqual(ensure_utc(connection.boost_last_applied_at), T1)

        again = replay_boosts_for_restaurants(self.db, [self._restaurant().id], now=NOW)

        self.assertEqual(again.events_applied, 0)
        self.assertEqual(again.errors, [])
        connection = self._connection_for("brisket sandwich")
        self.assertEqual((connection.mention_count, connection.total_upvotes), (2, 40))

    def test_earlier_category_events_reach_new_connections(self) -> None:
        process_mention_batch(
            self.db,
            batch([mention(food_categories=["Sandwiches"], source_ups=30)]),
            now=NOW,
        )

        result = process_mention_batch(
            self.db,
            batch(
                [
                    mention(
                        food="Brisket Sandwich",
                        is_menu_item=True,
                        food_categories=["Sandwiches"],
                        source_ups=10,
                        source_created_at=T1.isoformat(),
                    )
                ],
                batch_id="batch-002",
            ),
            now=NOW,
        )

        connection = self._connection_for("brisket sandwich")
        self.assertEqual(result.replay.events_applied, 1)
        self.assertEqual((connection.mention_count, connection.total_upvotes), (2, 40))
        self.assertAlmostEqual(connection.decayed_mention_score, 2.0)
        self.assertEqual(ensure_utc(connection.decayed_scores_updated_at), T1)

    def test_events_with_attributes_only_reach_overlapping_connections(self) -> None:
        process_mention_batch(
            self.db,
            batch(
                [
                    mention(
                        food="Brisket Sandwich",
                        is_menu_item=True,
                        food_categories=["Sandwiches"],
                        food_attributes=["spicy"],
                    ),
                    mention(food="Turkey Sandwich", is_menu_item=True, food_categories=["Sandwiches"]),
                ]
            ),
            now=NOW,
        )

        result = process_mention_batch(
            self.db,
            batch(
                [
                    mention(
                        food_categories=["Sandwiches"],
                        food_attributes=["spicy"],
                        source_ups=9,
                        source_created_at=T1.isoformat(),
                    )
                ],
                batch_id="batch-002",
            ),
            now=NOW,
        )

        brisket = self._connection_for("brisket sandwich")
        turkey = self._connection_for("turkey sandwich")
        self.assertEqual(result.replay.events_applied, 1)
        self.assertEqual(brisket.mention_count, 2)
        self.assertEqual(turkey.mention_count, 1)
        # Both connections considered the event, so neither rescans it.
        self.assertEqual(ensure_utc(turkey.boost_last_applied_at), T1)
        self.assertEqual(ensure_utc(brisket.boost_last_applied_at), T1)

    def test_failures_are_reported_per_restaurant(self) -> None:
        process_mention_batch(
            self.db,
            batch([mention(food="Brisket Sandwich", is_menu_item=True, food_categories=["Sandwiches"])]),
            now=NOW,
        )
        restaurant_id = self._restaurant().id

        with self.assertLogs("foodgraph.services.boost_replay", level="ERROR"):
            result = replay_boosts_for_restaurants(self.db, [restaurant_id, 999_999], now=NOW)

        self.assertEqual(result.restaurants_processed, 1)
        self.assertEqual([item.restaurant_id for item in result.errors], [999_999])

    def test_restaurant_locks_stay_bounded_for_arbitrary_ids(self) -> None:
        with self.assertLogs("foodgraph.services.boost_replay", level="ERROR"):
            result = replay_boosts_for_restaurants(self.db, range(100_000, 101_000), now=NOW)

        self.assertEqual(len(result.errors), 1000)
        distinct = {id(restaurant_lock(restaurant_id)) for restaurant_id in range(100_000, 101_000)}
        self.assertLessEqual(len(distinct), RESTAURANT_LOCK_STRIPES)
        self.assertIs(restaurant_lock(7), restaurant_lock(7 + RESTAURANT_LOCK_STRIPES))
