"""Tests for batch orchestration: splitting, retries, isolation and hooks."""

from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.models.source_ledger_record import SourceLedgerRecord
from foodgraph.schemas.mentions import MentionInput, ProcessingConfig
from foodgraph.services import mention_processing
from foodgraph.services.batch_processing import (
    process_mention_batch,
    retry_delay_ms,
    split_into_sub_batches,
)
from foodgraph.services.errors import (
    ErrorKind,
    MalformedMentionError,
    ProcessingError,
    classify_exception,
)
from tests.support import NOW, DatabaseTestCase, batch, mention

APPLY_MENTIONS = "foodgraph.services.batch_processing.apply_mentions"


def _locked() -> OperationalError:
    return OperationalError("UPDATE connections", {}, Exception("database is locked"))


class BatchHelperTests(unittest.TestCase):
    def test_split_names_sub_batches_only_when_needed(self) -> None:
        mentions = [MentionInput.model_validate(mention(food=f"Dish {index}")) for index in range(5)]

        single = split_into_sub_batches("b1", mentions, 10)
        split = split_into_sub_batches("b1", mentions, 2)

        self.assertEqual([item[0] for item in single], ["b1"])
        self.assertEqual([item[0] for item in split], ["b1_batch_1", "b1_batch_2", "b1_batch_3"])
        self.assertEqual([len(item[1]) for item in split], [2, 2, 1])

    def test_retry_delay_doubles_up_to_the_cap(self) -> None:
        self.assertEqual([retry_delay_ms(attempt) for attempt in range(1, 5)], [1000, 2000, 4000, 5000])

    def test_error_classification(self) -> None:
        self.assertEqual(classify_exception(_locked()), ErrorKind.TRANSIENT_STORE)
        self.assertEqual(
            classify_exception(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))),
            ErrorKind.CONSTRAINT_VIOLATION,
        )
        self.assertEqual(classify_exception(ValueError("bad")), ErrorKind.MALFORMED_INPUT)
        self.assertEqual(classify_exception(MalformedMentionError("bad")), ErrorKind.MALFORMED_INPUT)
        self.assertEqual(classify_exception(RuntimeError("boom")), ErrorKind.UNKNOWN)
        self.assertTrue(ErrorKind.TRANSIENT_STORE.retryable)
        self.assertFalse(ErrorKind.CONSTRAINT_VIOLATION.retryable)

    def test_processing_config_rejects_excessive_retries(self) -> None:
        with self.assertRaises(ValueError):
            ProcessingConfig(max_retries=11)


class BatchProcessingTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sleeps: list[float] = []

    def _count(self, model) -> int:
        return self.db.scalar(select(func.count()).select_from(model))

    def _process(self, payload, config: ProcessingConfig | None = None, **kwargs):
        return process_mention_batch(self.db, payload, config, now=NOW, sleep=self.sleeps.append, **kwargs)

    def test_transient_failure_is_retried_with_backoff(self) -> None:
        calls = {"count": 0}
        real_apply = mention_processing.apply_mentions

        def flaky(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise _locked()
            return real_apply(*args, **kwargs)

        with patch(APPLY_MENTIONS, side_effect=flaky):
            with self.assertLogs("foodgraph.services.batch_processing", level="WARNING") as captured:
                result = self._process(batch([mention(food="Brisket", is_menu_item=True, source_id="t1_a")]))

        self.assertEqual(calls["count"], 2)
        self.assertEqual(self.sleeps, [1.0])
        self.assertTrue(any("ingest.sub_batch_retry" in line for line in captured.output))
        self.assertEqual(result.connections_created, 1)
        self.assertEqual(self._count(Entity), 2)
        self.assertEqual(self._count(SourceLedgerRecord), 1)

    def test_exhausted_retries_roll_back_and_raise(self) -> None:
        with patch(APPLY_MENTIONS, side_effect=_locked()):
            with self.assertLogs("foodgraph.services.batch_processing", level="ERROR"):
                with self.assertRaises(ProcessingError) as raised:
                    self._process(
                        batch([mention(food="Brisket", is_menu_item=True, source_id="t1_a")]),
                        ProcessingConfig(max_retries=2),
                    )

        self.assertEqual(raised.exception.kind, ErrorKind.TRANSIENT_STORE)
        self.assertEqual(raised.exception.attempts, 2)
        self.assertEqual(raised.exception.batch_id, "batch-001")
        self.assertEqual(self.sleeps, [1.0])
        self.assertEqual(self._count(Entity), 0)
        self.assertEqual(self._count(SourceLedgerRecord), 0)

    def test_non_retryable_failure_aborts_immediately(self) -> None:
        with patch(APPLY_MENTIONS, side_effect=MalformedMentionError("cannot route mention")):
            with self.assertLogs("foodgraph.services.batch_processing", level="ERROR"):
                with self.assertRaises(ProcessingError) as raised:
                    self._process(batch([mention(food="Brisket", is_menu_item=True)]))

        self.assertEqual(raised.exception.kind, ErrorKind.MALFORMED_INPUT)
        self.assertEqual(raised.exception.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_timeout_is_enforced_before_commit(self) -> None:
        with self.assertLogs("foodgraph.services.batch_processing", level="ERROR"):
            with self.assertRaises(ProcessingError) as raised:
                self._process(
                    batch([mention(food="Brisket", is_menu_item=True)]),
                    ProcessingConfig(max_retries=1, batch_timeout_seconds=1e-9),
                )

        self.assertEqual(raised.exception.kind, ErrorKind.TIMEOUT)
        self.assertEqual(self._count(Connection), 0)

    def test_failed_sub_batch_does_not_block_siblings(self) -> None:
        real_apply = mention_processing.apply_mentions

        def poisoned(db, mentions, *args, **kwargs):
            if any(item.food == "Poison" for item in mentions):
                raise MalformedMentionError("cannot route mention")
            return real_apply(db, mentions, *args, **kwargs)

        payload = batch(
            [
                mention(food="Brisket", is_menu_item=True, source_id="t1_a"),
                mention(food="Poison", is_menu_item=True, source_id="t1_b"),
                mention(food="Ribs", is_menu_item=True, source_id="t1_c"),
            ]
        )
        with patch(APPLY_MENTIONS, side_effect=poisoned):
            with self.assertLogs("foodgraph.services.batch_processing", level="ERROR"):
                result = self._process(payload, ProcessingConfig(batch_size=1))

        self.assertEqual(result.succeeded_sub_batches, ["batch-001_batch_1", "batch-001_batch_3"])
        self.assertEqual([item.sub_batch_id for item in result.failed_sub_batches], ["batch-001_batch_2"])
        self.assertEqual(result.failed_sub_batches[0].error_kind, "malformed_input")
        self.assertEqual(result.mentions_accepted, 2)
        self.assertEqual(self._count(Connection), 2)
        ledger_ids = set(self.db.scalars(select(SourceLedgerRecord.source_id)))
        self.assertEqual(ledger_ids, {"t1_a", "t1_c"})

    def test_malformed_mentions_are_skipped_individually(self) -> None:
        payload = batch(
            [
                mention(food="Brisket", is_menu_item=True),
                mention(restaurant=""),
                {"restaurant": "Snow's BBQ", "source_created_at": "2026-10-01T12:00:00+00:00"},
            ]
        )

        with self.assertLogs("foodgraph.services.batch_processing", level="WARNING") as captured:
            result = self._process(payload)

        self.assertEqual(result.mentions_received, 3)
        self.assertEqual(result.mentions_accepted, 1)
        self.assertEqual(result.mentions_skipped, 2)
        self.assertEqual([item.index for item in result.skipped_mentions], [1, 2])
        self.assertTrue(any("ingest.mention_skipped" in line for line in captured.output))

    def test_enrichment_hook_receives_new_restaurants_and_failures_are_logged(self) -> None:
        seen: list[list[str]] = []

        def hook(restaurants) -> None:
            seen.append([item.type for item in restaurants])
            raise RuntimeError("enrichment queue unavailable")

        with self.assertLogs("foodgraph.services.batch_processing", level="ERROR") as captured:
            result = self._process(batch([mention(food="Brisket", is_menu_item=True)]), enrichment_hook=hook)

        self.assertEqual(seen, [["restaurant"]])
        self.assertEqual(result.entities_created, 2)
        self.assertTrue(any("ingest.enrichment_hook_failed" in line for line in captured.output))

    def test_quality_scores_can_be_disabled(self) -> None:
        result = self._process(
            batch([mention(food="Brisket", is_menu_item=True)]),
            ProcessingConfig(enable_quality_scores=False),
        )

        self.assertIsNone(result.quality_scores)
        connection = self.db.scalar(select(Connection))
        self.assertEqual(connection.food_quality_score, 0.0)
