from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.derive import derive_health, derive_metrics, derive_runway, derive_trajectory, probability_of_hit
from backbone_engine.models import HealthBand, TrajectoryStatus
from tests.helpers import NOW, make_company, make_goal


class RunwayTests(unittest.TestCase):
    def test_runway_is_cash_over_burn(self) -> None:
        runway = derive_runway(300_000, 100_000, "2026-02-20", NOW, "c-alpha")
        self.assertEqual(runway.months, 3.0)
        self.assertEqual(runway.reason, "ok")
        self.assertAlmostEqual(runway.confidence, 0.85, places=4)
        self.assertFalse(runway.low_confidence)

    def test_missing_inputs_give_no_runway(self) -> None:
        runway = derive_runway(None, 100_000, "2026-02-20", NOW)
        self.assertIsNone(runway.months)
        self.assertEqual(runway.reason, "missing_input")
        self.assertTrue(runway.low_confidence)

    def test_non_positive_burn_is_not_an_error(self) -> None:
        runway = derive_runway(300_000, 0, "2026-02-20", NOW)
        self.assertIsNone(runway.months)
        self.assertEqual(runway.reason, "non_positive_burn")

    def test_stale_inputs_lower_confidence(self) -> None:
        runway = derive_runway(300_000, 100_000, "2025-12-01", NOW)
        self.assertEqual(runway.reason, "stale_inputs")
        self.assertAlmostEqual(runway.confidence, 0.5)
        self.assertTrue(runway.low_confidence)

    def test_negative_cash_clamps_to_zero(self) -> None:
        self.assertEqual(derive_runway(-10, 100, "2026-02-28", NOW).months, 0.0)


class TrajectoryTests(unittest.TestCase):
    def test_slow_velocity_is_behind(self) -> None:
        traj = derive_trajectory(make_goal(), NOW)
        self.assertEqual(traj.status, TrajectoryStatus.BEHIND)
        self.assertFalse(traj.on_track)
        self.assertEqual(traj.days_left, 91)
        self.assertEqual(traj.history_points, 2)
        self.assertGreater(traj.probability_of_hit, 0.0)
        self.assertLess(traj.probability_of_hit, 0.6)
        self.assertAlmostEqual(traj.gap_ratio, 0.75)

    def test_flat_history_is_stalled(self) -> None:
        goal = make_goal(history=[{"date": "2026-01-01", "value": 500_000}, {"date": "2026-02-01", "value": 500_000}])
        self.assertEqual(derive_trajectory(goal, NOW).status, TrajectoryStatus.STALLED)

    def test_fast_velocity_is_on_track(self) -> None:
        goal = make_goal(history=[{"date": "2026-01-01", "value": 100_000}, {"date": "2026-02-01", "value": 1_500_000}])
        traj = derive_trajectory(goal, NOW)
        self.assertEqual(traj.status, TrajectoryStatus.ON_TRACK)
        self.assertTrue(traj.on_track)
        self.assertIsNotNone(traj.projected_date)

    def test_achieved_and_missed(self) -> None:
        achieved = derive_trajectory(make_goal(current=2_000_000), NOW)
        self.assertEqual(achieved.status, TrajectoryStatus.ACHIEVED)
        self.assertEqual(achieved.probability_of_hit, 1.0)
        missed = derive_trajectory(make_goal(due="2026-02-01"), NOW)
        self.assertEqual(missed.status, TrajectoryStatus.MISSED)
        self.assertEqual(missed.probability_of_hit, 0.0)

    def test_single_point_is_insufficient_history(self) -> None:
        traj = derive_trajectory(make_goal(history=[{"date": "2026-02-01", "value": 500_000}]), NOW)
        self.assertEqual(traj.status, TrajectoryStatus.INSUFFICIENT_HISTORY)
        self.assertIsNone(traj.on_track)
        self.assertLess(traj.confidence, 0.3)

    def test_probability_of_hit_bounds(self) -> None:
        self.assertEqual(probability_of_hit(1.0, 10, True, 1.0, 1.0, 1.0), 1.0)
        self.assertEqual(probability_of_hit(0.5, -1, False, 1.0, 1.0, 1.0), 0.0)
        p = probability_of_hit(0.5, 90, True, 1.0, 2.0, 1.0)
        self.assertTrue(0.0 <= p <= 1.0)
        self.assertAlmostEqual(p, 0.75)


class HealthAndMetricsTests(unittest.TestCase):
    def test_short_runway_is_red(self) -> None:
        company = make_company()
        runway = derive_runway(company["cash"], company["burn"], company["as_of"], NOW, company["id"])
        health = derive_health(company, runway, [derive_trajectory(make_goal(), NOW)])
        self.assertEqual(health.band, HealthBand.RED)
        self.assertIn("runway_critical_3mo", health.signals)
        self.assertIn("goals_off_track_1", health.signals)

    def test_missing_runway_does_not_force_red(self) -> None:
        company = make_company(cash=None)
        runway = derive_runway(None, company["burn"], company["as_of"], NOW)
        health = derive_health(company, runway)
        self.assertEqual(health.band, HealthBand.GREEN)
        self.assertIn("runway_unknown", health.signals)

    def test_metrics_use_facts_and_company_headline(self) -> None:
        facts = [
            {"metric_key": "burn", "value": 90_000, "as_of": "2025-12-31"},
            {"metric_key": "burn", "value": 100_000, "as_of": "2026-02-20"},
        ]
        snap = derive_metrics("c-alpha", facts, NOW, company=make_company())
        self.assertEqual(snap.latest["burn"], 100_000.0)
        self.assertEqual(snap.points["burn"], 2)
        self.assertGreater(snap.velocity_per_day["burn"], 0.0)
        self.assertEqual(snap.missing_core, [])
        self.assertEqual(snap.blindspot_ratio, 0.0)

    def test_metrics_report_missing_core(self) -> None:
        snap = derive_metrics("c-x", [], NOW)
        self.assertEqual(sorted(snap.missing_core), ["arr", "burn", "cash"])
        self.assertEqual(snap.blindspot_ratio, 1.0)


if __name__ == "__main__":
    unittest.main()
