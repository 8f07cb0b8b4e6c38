"""HTTP surface tests for ingestion, replay and score routes."""

from __future__ import annotations

from unittest.mock import patch

from fastapi.testclient import TestClient

from foodgraph.db.dependencies import get_db
from foodgraph.main import app
from foodgraph.models.entity import Entity
from foodgraph.services.errors import ErrorKind, ProcessingError
from tests.support import DatabaseTestCase, mention


def _body(*mentions: dict) -> dict:
    return {
        "mentions": list(mentions),
        "source_metadata": {"batch_id": "http-001", "collection_type": "chronological"},
        "processing_config": {"max_retries": 1},
    }


class ProcessingRouterTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()

        def override_get_db():
            yield self.db

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def test_ingest_returns_summary_and_queues_enrichment(self) -> None:
        with patch("foodgraph.routers.processing.queue_restaurant_enrichment") as queue:
            response = self.client.post("/mention-batches", json=_body(mention(food="Brisket", is_menu_item=True)))

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["mentions_accepted"], 1)
        self.assertEqual(data["connections_created"], 1)
        restaurant_ids = [item["id"] for item in data["created_entities"] if item["type"] == "restaurant"]
        queue.assert_called_once_with(restaurant_ids)

    def test_processing_errors_map_to_status_codes(self) -> None:
        cases = [
            (ProcessingError("bad batch", ErrorKind.VALIDATION, batch_id="http-001", mention_count=1), 422),
            (ProcessingError("store down", ErrorKind.TRANSIENT_STORE, batch_id="http-001", mention_count=1), 503),
        ]
        for error, status_code in cases:
            with self.subTest(kind=error.kind):
                with patch("foodgraph.routers.processing.process_mention_batch", side_effect=error):
                    response = self.client.post("/mention-batches", json=_body(mention()))

                self.assertEqual(response.status_code, status_code)
                detail = response.json()["detail"]
                self.assertEqual(detail["kind"], error.kind.value)
                self.assertEqual(detail["batch_id"], "http-001")

    def test_invalid_envelope_is_rejected(self) -> None:
        response = self.client.post("/mention-batches", json={"mentions": []})

        self.assertEqual(response.status_code, 422)

    def test_performance_requires_exactly_one_target(self) -> None:
        self.assertEqual(self.client.get("/restaurants/1/performance").status_code, 400)
        self.assertEqual(
            self.client.get("/restaurants/1/performance", params={"category_id": 2, "attribute_id": 3}).status_code,
            400,
        )
        self.assertEqual(self.client.get("/restaurants/1/performance", params={"category_id": 2}).status_code, 404)

    def test_attribute_performance_for_known_restaurant(self) -> None:
        restaurant = Entity(name="franklin barbecue", type="restaurant", aliases_json=[], general_praise_upvotes=0)
        self.db.add(restaurant)
        self.db.commit()

        response = self.client.get(f"/restaurants/{restaurant.id}/performance", params={"attribute_id": 5})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], {"restaurant_id": restaurant.id, "target_id": 5, "score": 0.0})

    def test_replay_and_refresh_report_unknown_ids(self) -> None:
        replay = self.client.post("/boosts/replay", json={"restaurant_ids": [404]})
        refresh = self.client.post("/quality-scores/refresh", json={"connection_ids": [404]})

        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()["data"]["errors"][0]["restaurant_id"], 404)
        self.assertEqual(refresh.status_code, 200)
        self.assertEqual(refresh.json()["data"]["errors"][0]["connection_id"], 404)

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})
