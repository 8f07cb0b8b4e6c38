"""Tests for the decayed-score recurrence and activity levels."""

import math
import unittest
from datetime import datetime, timedelta, timezone

from foodgraph.services.decay import (
    DecayParameters,
    apply_decayed_update,
    compute_activity_level,
    current_decayed_value,
    ensure_utc,
)

T0 = datetime(2026, 10, 1, tzinfo=timezone.utc)
PARAMS = DecayParameters(
    mention_decay_period=timedelta(days=180),
    upvote_decay_period=timedelta(days=120),
    recent_threshold=timedelta(days=30),
    active_threshold=timedelta(days=7),
    trending_min_mentions=3,
)


class DecayTests(unittest.TestCase):
    def test_first_event_seeds_scores(self) -> None:
        scores = apply_decayed_update(0.0, 0.0, None, T0, upvotes=150, params=PARAMS)

        self.assertEqual((scores.mention_score, scores.upvote_score), (1.0, 150.0))
        self.assertEqual(scores.updated_at, T0)

    def test_recurrence_decays_previous_totals(self) -> None:
        later = T0 + timedelta(days=1)
        scores = apply_decayed_update(1.0, 150.0, T0, later, upvotes=50, params=PARAMS)

        self.assertAlmostEqual(scores.mention_score, math.exp(-1 / 180) + 1)
        self.assertAlmostEqual(scores.upvote_score, 150 * math.exp(-1 / 120) + 50)
        self.assertEqual(scores.updated_at, later)

    def test_out_of_order_event_is_undecayed_and_keeps_anchor(self) -> None:
        earlier = T0 - timedelta(days=5)
        scores = apply_decayed_update(2.0, 20.0, T0, earlier, upvotes=4, params=PARAMS)

        self.assertEqual((scores.mention_score, scores.upvote_score), (3.0, 24.0))
        self.assertEqual(scores.updated_at, T0)

    def test_decay_is_monotonic_without_new_events(self) -> None:
        values = [
            current_decayed_value(10.0, T0, T0 + timedelta(days=days), PARAMS.mention_decay_period)
            for days in (0, 1, 30, 365)
        ]

        self.assertEqual(values[0], 10.0)
        self.assertTrue(all(left > right for left, right in zip(values, values[1:])))

    def test_naive_anchor_is_treated_as_utc(self) -> None:
        naive = datetime(2026, 10, 1)
        self.assertEqual(ensure_utc(naive), T0)
        self.assertEqual(current_decayed_value(5.0, naive, T0, PARAMS.upvote_decay_period), 5.0)

    def test_activity_levels(self) -> None:
        now = T0 + timedelta(days=2)
        self.assertEqual(
            compute_activity_level(last_mentioned_at=T0, recent_mention_count=3, now=now, params=PARAMS),
            "trending",
        )
        self.assertEqual(
            compute_activity_level(last_mentioned_at=T0, recent_mention_count=1, now=now, params=PARAMS),
            "active",
        )
        self.assertEqual(
            compute_activity_level(
                last_mentioned_at=T0 - timedelta(days=60),
                recent_mention_count=5,
                now=now,
                params=PARAMS,
            ),
            "normal",
        )


if __name__ == "__main__":
    unittest.main()
