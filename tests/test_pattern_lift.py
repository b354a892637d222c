from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.derive.pattern_lift import (
    PatternLiftConfig,
    compute_all_pattern_lifts,
    compute_pattern_lift,
    compute_pattern_stats,
    validate_lift_bounds,
)
from backbone_engine.errors import ColdStartNullResult
from tests.helpers import NOW, make_action, outcome_events


def _fresh_events(action_type: str, n: int, notes: str | None = "done") -> list[dict]:
    return [
        {
            "id": f"ev-fresh-{i}",
            "action_id": f"act-history-{i}",
            "event_type": "outcome_recorded",
            "timestamp": NOW,
            "actor": "partner-1",
            "payload": {"outcome": "success", "notes": notes, "action_type": action_type},
        }
        for i in range(n)
    ]


class PatternLiftTests(unittest.TestCase):
    def test_three_good_outcomes_give_small_positive_lift(self) -> None:
        lift = compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), outcome_events("REDUCE_BURN"), NOW)
        self.assertIsInstance(lift, float)
        self.assertGreater(lift, 0.0)
        self.assertLess(lift, 0.1)
        self.assertTrue(validate_lift_bounds(lift))

    def test_too_few_observations_is_cold_start(self) -> None:
        lift = compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), outcome_events("REDUCE_BURN", n=2), NOW)
        self.assertIsInstance(lift, ColdStartNullResult)
        self.assertFalse(lift)
        self.assertEqual(lift.observations, 2)
        self.assertEqual(lift.required, 3)
        self.assertTrue(validate_lift_bounds(lift))

    def test_unknown_bucket_is_cold_start(self) -> None:
        lift = compute_pattern_lift(make_action("act-a", action_type="HIRING_PUSH"), outcome_events("REDUCE_BURN"), NOW)
        self.assertIsInstance(lift, ColdStartNullResult)
        self.assertEqual(lift.observations, 0)

    def test_lift_saturates_at_max(self) -> None:
        lift = compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), _fresh_events("REDUCE_BURN", 40), NOW)
        self.assertAlmostEqual(lift, 0.5)
        cfg = PatternLiftConfig(lift_max=0.2)
        self.assertAlmostEqual(compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), _fresh_events("REDUCE_BURN", 40), NOW, cfg), 0.2)

    def test_outcomes_without_notes_lower_the_score(self) -> None:
        lift = compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), outcome_events("REDUCE_BURN", n=5), NOW)
        bare = [dict(e, payload=dict(e["payload"], notes=None)) for e in outcome_events("REDUCE_BURN", n=5)]
        self.assertLess(compute_pattern_lift(make_action("act-a", action_type="REDUCE_BURN"), bare, NOW), 0.0)
        self.assertGreater(lift, 0.0)

    def test_only_outcome_events_count(self) -> None:
        events = outcome_events("REDUCE_BURN", n=2) + [
            dict(outcome_events("REDUCE_BURN", n=1, start_day=20)[0], id="ev-note", event_type="note_added")
        ]
        stats = compute_pattern_stats(events, NOW)
        self.assertEqual(stats["REDUCE_BURN"].observations, 2)
        self.assertTrue(stats["REDUCE_BURN"].cold_start)

    def test_bucket_falls_back_to_resolution(self) -> None:
        action = make_action("act-a")
        action.resolution_id = "REDUCE_BURN"
        lifts = compute_all_pattern_lifts([action, make_action("act-b")], outcome_events("REDUCE_BURN"), NOW)
        self.assertGreater(lifts["act-a"], 0.0)
        self.assertEqual(lifts["act-b"], 0.0)

    def test_missing_now_measures_age_from_latest_outcome(self) -> None:
        action = make_action("act-a", action_type="REDUCE_BURN")
        events = outcome_events("REDUCE_BURN", n=5)
        anchored = compute_pattern_lift(action, events, None)
        self.assertIsInstance(anchored, float)
        self.assertGreater(anchored, 0.0)
        self.assertAlmostEqual(anchored, compute_pattern_lift(action, events, "2026-02-14T12:00:00+00:00"))

    def test_unparseable_now_raises(self) -> None:
        with self.assertRaises(ValueError):
            compute_pattern_stats(outcome_events("REDUCE_BURN"), "yesterday")

    def test_bounds_check_rejects_out_of_range(self) -> None:
        self.assertFalse(validate_lift_bounds(0.7))
        self.assertFalse(validate_lift_bounds(float("nan")))
        self.assertFalse(validate_lift_bounds("0.1"))
        self.assertTrue(validate_lift_bounds(-0.5))


if __name__ == "__main__":
    unittest.main()
