"""Tests for source ledger dedup and skip-duplicate inserts."""

from __future__ import annotations

from sqlalchemy import func, select

from foodgraph.models.source_ledger_record import SourceLedgerRecord
from foodgraph.schemas.mentions import MentionInput
from foodgraph.services.source_ledger import (
    LedgerRow,
    filter_new_mentions,
    insert_ledger_rows,
    pipeline_for_collection_type,
)
from tests.support import DatabaseTestCase, mention


def _inputs(*payloads: dict) -> list[MentionInput]:
    return [MentionInput.model_validate(payload) for payload in payloads]


class SourceLedgerTests(DatabaseTestCase):
    def test_filter_collapses_batch_duplicates_and_passes_missing_ids(self) -> None:
        mentions = _inputs(
            mention(source_id="t1_a", food="Brisket", is_menu_item=True),
            mention(source_id="t1_a", food="Ribs", is_menu_item=True),
            mention(food="Sausage", is_menu_item=True),
            mention(food="Turkey", is_menu_item=True),
            mention(source_id="t1_b"),
        )

        result = filter_new_mentions(self.db, mentions, "chronological", batch_id="b1")

        self.assertEqual([item.food for item in result.accepted], ["Brisket", "Sausage", "Turkey", None])
        self.assertEqual([row.source_id for row in result.ledger_rows], ["t1_a", "t1_b"])
        self.assertEqual(result.duplicates_in_batch, 1)
        self.assertEqual(result.already_processed, 0)

    def test_filter_drops_ids_already_recorded_for_the_same_pipeline(self) -> None:
        insert_ledger_rows(self.db, [LedgerRow(pipeline="chronological", source_id="t1_a", subreddit="austinfood")])
        self.db.commit()
        mentions = _inputs(mention(source_id="t1_a"), mention(source_id="t1_c"))

        same_pipeline = filter_new_mentions(self.db, mentions, "chronological")
        other_pipeline = filter_new_mentions(self.db, mentions, "archive")

        self.assertEqual([item.source_id for item in same_pipeline.accepted], ["t1_c"])
        self.assertEqual(same_pipeline.already_processed, 1)
        self.assertEqual([item.source_id for item in other_pipeline.accepted], ["t1_a", "t1_c"])

    def test_insert_skips_existing_keys_without_failing(self) -> None:
        rows = [
            LedgerRow(pipeline="archive", source_id="t3_x", subreddit="austinfood", batch_id="b1"),
            LedgerRow(pipeline="archive", source_id="t3_y", subreddit=None, batch_id="b1"),
        ]
        insert_ledger_rows(self.db, rows)
        self.db.commit()

        insert_ledger_rows(
            self.db,
            [*rows, LedgerRow(pipeline="archive", source_id="t3_z", subreddit=None, batch_id="b2")],
        )
        self.db.commit()

        count = self.db.scalar(select(func.count()).select_from(SourceLedgerRecord))
        self.assertEqual(count, 3)

    def test_pipeline_key_from_collection_type(self) -> None:
        self.assertEqual(pipeline_for_collection_type("keyword"), "keyword_search")
        self.assertEqual(pipeline_for_collection_type(""), "chronological")
