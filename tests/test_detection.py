from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.derive import derive_metrics, derive_runway, derive_trajectory
from backbone_engine.models import GoalTrajectory, Severity, TrajectoryStatus
from backbone_engine.predict import (
    DetectionThresholds,
    ForecastConfig,
    aggregate_ripple,
    derive_company_preissues,
    derive_portfolio_preissues,
    detect_issues,
)
from backbone_engine.predict.preissues import (
    detect_dependency_risk,
    detect_goal_miss,
    detect_runway_breach,
    get_imminent_preissues,
    rank_preissues_by_cost_of_delay,
)
from tests.helpers import NOW, make_company, make_dataset, make_goal


def _trajectory(p_hit: float, on_track: bool | None = False, days_left: int | None = 40) -> GoalTrajectory:
    return GoalTrajectory(
        goal_id="g-1",
        company_id="c-alpha",
        goal_type="revenue",
        goal_name="Revenue",
        current=10.0,
        target=100.0,
        due="2026-04-10",
        days_left=days_left,
        required_slope=1.0,
        velocity=0.5,
        probability_of_hit=p_hit,
        on_track=on_track,
        status=TrajectoryStatus.BEHIND,
    )


class IssueDetectionTests(unittest.TestCase):
    def _alpha_issues(self, **company_overrides) -> list:
        raw = make_dataset()
        company = make_company(**company_overrides)
        runway = derive_runway(company.get("cash"), company.get("burn"), company.get("as_of"), NOW, company["id"])
        goals = [g for g in raw["goals"] if g["company_id"] == "c-alpha"]
        trajectories = [derive_trajectory(g, NOW) for g in goals]
        return detect_issues(company, runway, trajectories, raw["deals"], raw["rounds"], NOW, DetectionThresholds())

    def test_short_runway_raises_critical_issue(self) -> None:
        issues = self._alpha_issues()
        by_type = {i.issue_type: i for i in issues}
        runway = by_type["RUNWAY_CRITICAL"]
        self.assertEqual(runway.severity, Severity.CRITICAL)
        self.assertEqual(runway.evidence["runway_months"], 3.0)
        self.assertTrue(runway.issue_id.startswith("RUNWAY_CRITICAL-c-alpha-"))
        self.assertIn("GOAL_BEHIND", by_type)
        self.assertIn("GOAL_STALLED", by_type)
        self.assertIn("PIPELINE_GAP", by_type)
        self.assertIn("DEAL_STALE", by_type)

    def test_detection_is_idempotent(self) -> None:
        first = [i.to_dict() for i in self._alpha_issues()]
        second = [i.to_dict() for i in self._alpha_issues()]
        self.assertEqual(first, second)

    def test_missing_financials_raise_data_missing(self) -> None:
        issues = self._alpha_issues(cash=None)
        missing = [i for i in issues if i.issue_type == "DATA_MISSING"]
        self.assertEqual(len(missing), 1)
        self.assertEqual(missing[0].evidence["missing"], ["cash"])
        self.assertFalse(any(i.issue_type.startswith("RUNWAY_") for i in issues))

    def test_old_snapshot_raises_data_stale(self) -> None:
        issues = self._alpha_issues(as_of="2025-12-01")
        self.assertIn("DATA_STALE", {i.issue_type for i in issues})

    def test_no_goals_and_no_pipeline(self) -> None:
        company = make_company(cash=3_000_000)
        runway = derive_runway(company["cash"], company["burn"], company["as_of"], NOW, company["id"])
        rounds = [{"id": "r-1", "company_id": "c-alpha", "status": "active", "target_amount": 1_000_000}]
        issues = detect_issues(company, runway, [], [], rounds, NOW)
        types = {i.issue_type: i.severity for i in issues}
        self.assertEqual(types, {"NO_GOALS": Severity.MEDIUM, "NO_PIPELINE": Severity.CRITICAL})

    def test_ripple_compounds_with_decay(self) -> None:
        ripple = aggregate_ripple(self._alpha_issues())
        self.assertEqual(ripple["risk_level"], "HIGH")
        self.assertLessEqual(ripple["score"], 1.0)
        self.assertEqual(ripple["by_issue"][0]["issue_type"], "RUNWAY_CRITICAL")
        self.assertEqual(aggregate_ripple([])["score"], 0.0)


class PreIssueTests(unittest.TestCase):
    def test_three_month_runway_breach(self) -> None:
        company = make_company()
        runway = derive_runway(300_000, 100_000, company["as_of"], NOW, company["id"])
        pre = detect_runway_breach(company, runway, NOW, ForecastConfig())
        self.assertIsNotNone(pre)
        self.assertEqual(pre.preissue_id, "preissue-runway-breach-c-alpha")
        self.assertEqual(pre.probability, 0.8)
        self.assertEqual(pre.severity, Severity.HIGH)
        self.assertEqual(pre.time_to_breach_days, 90.0)
        self.assertEqual(pre.escalation.buffer_days, 90.0)
        self.assertEqual(pre.escalation.delta_days, 0.0)
        self.assertTrue(pre.escalation.is_imminent)
        self.assertEqual(pre.preventative_actions, ["REDUCE_BURN"])
        self.assertEqual(pre.cost_of_delay.today, 7.5)

    def test_company_preissues_cover_runway_round_and_deal(self) -> None:
        raw = make_dataset()
        company = make_company()
        runway = derive_runway(company["cash"], company["burn"], company["as_of"], NOW, company["id"])
        goals = [g for g in raw["goals"] if g["company_id"] == "c-alpha"]
        trajectories = [derive_trajectory(g, NOW) for g in goals]
        metrics = derive_metrics("c-alpha", raw["metric_facts"], NOW, company=company)
        found = derive_company_preissues(company, runway, trajectories, raw["deals"], raw["rounds"], metrics, NOW)
        types = {p.preissue_type for p in found}
        for expected in ("RUNWAY_BREACH", "RUNWAY_COMPRESSION", "DEAL_STALL", "ROUND_STALL", "LEAD_VACANCY"):
            self.assertIn(expected, types)
        self.assertNotIn("DATA_BLINDSPOT", types)
        self.assertEqual(len({p.dedupe_key for p in found}), len(found))
        for pre in found:
            self.assertTrue(0.0 <= pre.probability <= 1.0)
            self.assertTrue(0.2 <= pre.irreversibility <= 0.9)
            self.assertGreaterEqual(pre.escalation.delta_days, 0.0)

    def test_goal_miss_suppressed_when_likely_to_hit(self) -> None:
        company = make_company()
        cfg = ForecastConfig()
        self.assertIsNone(detect_goal_miss(company, _trajectory(0.75), NOW, cfg))
        self.assertIsNone(detect_goal_miss(company, _trajectory(0.4, on_track=True), NOW, cfg))
        self.assertIsNone(detect_goal_miss(company, _trajectory(0.4, days_left=None), NOW, cfg))
        self.assertIsNone(detect_goal_miss(company, _trajectory(0.0), NOW, cfg))
        pre = detect_goal_miss(company, _trajectory(0.2), NOW, cfg)
        self.assertIsNotNone(pre)
        self.assertEqual(pre.probability, 0.8)
        self.assertEqual(pre.severity, Severity.HIGH)
        self.assertEqual(pre.preventative_actions, ["REVENUE_PUSH"])
        self.assertEqual(pre.escalation.delta_days, 26.0)

    def test_dependency_risk_from_unmet_prerequisites(self) -> None:
        company = make_company()
        cfg = ForecastConfig()
        goal = {
            "id": "g-1",
            "dependencies": [
                {"name": "SOC2 report", "met": False, "type": "regulatory"},
                {"name": "Pilot signed", "met": True},
                {"name": "Sales hire", "met": False},
            ],
        }
        pre = detect_dependency_risk(company, _trajectory(0.4), goal, NOW, cfg)
        self.assertIsNotNone(pre)
        self.assertEqual(pre.preissue_id, "preissue-dependency-risk-g-1")
        self.assertEqual(pre.entity_ref.type, "goal")
        self.assertEqual(pre.probability, 0.67)
        self.assertEqual(pre.severity, Severity.MEDIUM)
        self.assertEqual(pre.irreversibility, 0.7)
        self.assertEqual(pre.evidence["missing"], 2)
        self.assertEqual(pre.evidence["total"], 3)
        self.assertEqual(pre.escalation.delta_days, 26.0)
        self.assertEqual(pre.preventative_actions, ["ACCELERATE_GOAL"])

        blocked = {"id": "g-1", "dependencies": [{"name": "a", "met": False}, {"name": "b", "met": False}]}
        pre = detect_dependency_risk(company, _trajectory(0.4), blocked, NOW, cfg)
        self.assertEqual(pre.severity, Severity.HIGH)
        self.assertEqual(pre.irreversibility, 0.5)

    def test_dependency_risk_suppressed(self) -> None:
        company = make_company()
        cfg = ForecastConfig()
        mostly_met = {"id": "g-1", "dependencies": [{"met": True}, {"met": True}, {"met": False}]}
        blocked = {"id": "g-1", "dependencies": [{"met": False}]}
        self.assertIsNone(detect_dependency_risk(company, _trajectory(0.4), mostly_met, NOW, cfg))
        self.assertIsNone(detect_dependency_risk(company, _trajectory(0.4), {"id": "g-1"}, NOW, cfg))
        self.assertIsNone(detect_dependency_risk(company, _trajectory(0.4), None, NOW, cfg))
        self.assertIsNone(detect_dependency_risk(company, _trajectory(0.4, days_left=150), blocked, NOW, cfg))
        self.assertIsNone(detect_dependency_risk(company, _trajectory(0.4, days_left=-2), blocked, NOW, cfg))

    def test_company_preissues_read_goal_dependencies(self) -> None:
        raw = make_dataset()
        company = make_company()
        runway = derive_runway(company["cash"], company["burn"], company["as_of"], NOW, company["id"])
        goal = make_goal(dependencies=[{"name": "Lead term sheet", "met": False, "type": "relationship"}])
        trajectories = [derive_trajectory(goal, NOW)]
        metrics = derive_metrics("c-alpha", raw["metric_facts"], NOW, company=company)
        found = derive_company_preissues(
            company, runway, trajectories, raw["deals"], raw["rounds"], metrics, NOW, goals=[goal]
        )
        dependency = [p for p in found if p.preissue_type == "DEPENDENCY_RISK"]
        self.assertEqual(len(dependency), 1)
        self.assertEqual(dependency[0].entity_ref.id, "g-alpha-raise")
        without_goals = derive_company_preissues(company, runway, trajectories, raw["deals"], raw["rounds"], metrics, NOW)
        self.assertNotIn("DEPENDENCY_RISK", {p.preissue_type for p in without_goals})

    def test_imminent_and_cost_of_delay_helpers(self) -> None:
        raw = make_dataset()
        company = make_company()
        runway = derive_runway(company["cash"], company["burn"], company["as_of"], NOW, company["id"])
        goals = [g for g in raw["goals"] if g["company_id"] == "c-alpha"]
        trajectories = [derive_trajectory(g, NOW) for g in goals]
        metrics = derive_metrics("c-alpha", raw["metric_facts"], NOW, company=company)
        found = derive_company_preissues(company, runway, trajectories, raw["deals"], raw["rounds"], metrics, NOW)

        imminent = get_imminent_preissues(found)
        self.assertTrue(imminent)
        self.assertTrue(all(p.escalation.is_imminent for p in imminent))
        self.assertEqual(len(imminent), sum(1 for p in found if p.escalation.is_imminent))

        ranked = rank_preissues_by_cost_of_delay(found)
        self.assertEqual(sorted(p.preissue_id for p in ranked), sorted(p.preissue_id for p in found))
        costs = [p.cost_of_delay.today for p in ranked]
        self.assertEqual(costs, sorted(costs, reverse=True))
        self.assertEqual(rank_preissues_by_cost_of_delay(list(reversed(found))), ranked)

    def test_portfolio_preissues_for_firms_and_dormant_connections(self) -> None:
        found = derive_portfolio_preissues(make_dataset(), NOW)
        by_type = {p.preissue_type: p for p in found}
        self.assertIn("FIRM_RELATIONSHIP_DECAY", by_type)
        self.assertIn("CONNECTION_DORMANT", by_type)
        self.assertIsNone(by_type["FIRM_RELATIONSHIP_DECAY"].company_id)
        self.assertEqual(by_type["CONNECTION_DORMANT"].entity_ref.id, "rel-ben-ivy")
        self.assertEqual(derive_portfolio_preissues(make_dataset(), NOW, limit=0)[0].preissue_type, "FIRM_RELATIONSHIP_DECAY")


if __name__ == "__main__":
    unittest.main()
