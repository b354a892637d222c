from __future__ import annotations

from pathlib import Path
import sys
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.derive import derive_trajectory
from backbone_engine.models import OpportunityClass, SourceType, Timing
from backbone_engine.predict import (
    assess_trust_risk,
    company_introductions,
    cross_entity_synergy,
    duplicate_followups,
    generate_followups,
    score_path,
    trust_risk_by_action,
)
from backbone_engine.predict.introductions import conversion_lift, is_goal_blocked
from backbone_engine.predict.opportunities import (
    IntroPath,
    build_relationship_graph,
    find_paths,
    goal_acceleration,
    is_obvious_path,
    optionality_builders,
    relationship_leverage,
    timing_windows,
    validate_opportunity,
)
from tests.helpers import NOW, make_company, make_dataset, make_goal


def _alpha_goals(raw: dict) -> list[dict]:
    return [g for g in raw["goals"] if g["company_id"] == "c-alpha"]


class PathScoringTests(unittest.TestCase):
    def test_score_path_uses_geometric_mean_and_hop_decay(self) -> None:
        one = IntroPath("a", ["a", "b"], [{"strength": 80}])
        two = IntroPath("a", ["a", "b", "c"], [{"strength": 80}, {"strength": 45}])
        self.assertAlmostEqual(score_path(one), 0.8)
        self.assertAlmostEqual(score_path(two), 0.6 * 0.7)
        self.assertEqual(score_path(IntroPath("a", ["a"])), 0.0)

    def test_find_paths_walks_two_hops(self) -> None:
        graph = build_relationship_graph(make_dataset()["relationships"])
        paths = find_paths(graph, ["p-ada"], "p-ivy")
        self.assertEqual([p.nodes for p in paths], [["p-ada", "p-cal", "p-ivy"]])
        self.assertEqual(find_paths(graph, ["p-ada"], "p-ben"), [])

    def test_recent_direct_path_is_obvious(self) -> None:
        rel = {"strength": 50, "last_touch_at": "2026-02-20"}
        self.assertTrue(is_obvious_path(IntroPath("a", ["a", "b"], [rel]), NOW))
        cold = {"strength": 50, "last_touch_at": "2025-06-01"}
        self.assertFalse(is_obvious_path(IntroPath("a", ["a", "b"], [cold]), NOW))


class OpportunityTests(unittest.TestCase):
    def test_relationship_leverage_finds_non_obvious_investor_intro(self) -> None:
        raw = make_dataset()
        out = relationship_leverage(
            make_company(), _alpha_goals(raw), raw["people"], raw["relationships"], raw["team"], raw["investors"], NOW, NOW
        )
        self.assertEqual(len(out), 1)
        detail = out[0].primary_source.detail
        self.assertEqual(detail["opportunity_class"], OpportunityClass.RELATIONSHIP_LEVERAGE.value)
        self.assertEqual(detail["target_person_id"], "p-ivy")
        self.assertEqual(detail["path_length"], 2)
        self.assertTrue(out[0].action_id.startswith("opp-"))
        self.assertEqual(out[0].goal_id, "g-alpha-raise")

    def test_upcoming_demo_day_is_a_timing_window(self) -> None:
        out = timing_windows(make_company(), [make_goal()], make_dataset()["external_events"], [], [], NOW, NOW)
        self.assertEqual(len(out), 1)
        detail = out[0].primary_source.detail
        self.assertEqual(detail["days_until_window"], 19)
        self.assertEqual(detail["urgency"], "medium")
        self.assertEqual(out[0].timing, Timing.SOON)

    def test_deploying_fund_cycle_is_immediate(self) -> None:
        cycles = [{"id": "fc-1", "firm_id": "f-north", "firm_name": "Northwind", "fund_number": 3, "status": "deploying"}]
        out = timing_windows(make_company(), [make_goal()], [], cycles, [], NOW, NOW)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].timing, Timing.NOW)
        self.assertIn("Fund 3", out[0].title)

    def test_synergy_needs_complementary_sectors_and_a_partner_goal(self) -> None:
        raw = make_dataset()
        goals_by_company = {"c-alpha": _alpha_goals(raw)}
        out = cross_entity_synergy(raw["companies"], goals_by_company, NOW)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].company_id, "c-alpha")
        self.assertEqual(out[0].primary_source.detail["other_company_id"], "c-beta")
        self.assertEqual(out[0].goal_id, "g-alpha-partner")
        self.assertEqual(cross_entity_synergy(raw["companies"], {"c-alpha": [make_goal()]}, NOW), [])

    def test_synergy_goal_may_sit_on_either_company(self) -> None:
        raw = make_dataset()
        partner_goal = make_goal("g-beta-partner", company_id="c-beta", name="Integration partner", type="partnership")
        out = cross_entity_synergy(raw["companies"], {"c-alpha": [make_goal()], "c-beta": [partner_goal]}, NOW)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].company_id, "c-beta")
        self.assertEqual(out[0].goal_id, "g-beta-partner")
        self.assertEqual(out[0].primary_source.detail["other_company_id"], "c-alpha")
        flipped = cross_entity_synergy(list(reversed(raw["companies"])), {"c-beta": [partner_goal]}, NOW)
        self.assertEqual([a.action_id for a in flipped], [a.action_id for a in out])

    def test_goal_acceleration_skips_on_track_goals(self) -> None:
        goal = make_goal()
        behind = derive_trajectory(goal, NOW)
        out = goal_acceleration(make_company(), [goal], [behind], {}, NOW)
        self.assertEqual([a.action_type for a in out], ["narrative_shift", "anchor_strategy", "compressed_timeline"])
        fast = make_goal(history=[{"date": "2026-01-01", "value": 100_000}, {"date": "2026-02-01", "value": 1_500_000}])
        self.assertEqual(goal_acceleration(make_company(), [fast], [derive_trajectory(fast, NOW)], {}, NOW), [])

    def test_optionality_builders_declare_future_unlocks(self) -> None:
        raw = make_dataset()
        rel = {"id": "rel-ada-ivy", "from_person_id": "p-ada", "to_person_id": "p-ivy", "strength": 60, "last_touch_at": "2025-11-01"}
        out = optionality_builders(make_company(), [make_goal()], [rel], raw["people"], NOW, NOW)
        self.assertEqual(len(out), 2)
        for action in out:
            self.assertTrue(action.future_unlocks)
            self.assertTrue(action.act_now_rationale)
            self.assertEqual(validate_opportunity(action), [])
        self.assertEqual(out[0].future_unlocks[0]["goal_domain"], "fundraise")
        self.assertEqual(out[1].action_type, "fundraise_prep")

        with_deck = optionality_builders(make_company(has_fundraise_deck=True), [make_goal()], [rel], raw["people"], NOW, NOW)
        self.assertEqual(len(with_deck), 1)
        weak = dict(rel, strength=30)
        self.assertEqual(
            optionality_builders(make_company(has_fundraise_deck=True), [make_goal()], [weak], raw["people"], NOW, NOW), []
        )

    def test_optionality_builder_without_unlocks_is_invalid(self) -> None:
        raw = make_dataset()
        rel = {"id": "rel-ada-ivy", "from_person_id": "p-ada", "to_person_id": "p-ivy", "strength": 60, "last_touch_at": "2025-11-01"}
        action = optionality_builders(make_company(), [make_goal()], [rel], raw["people"], NOW, NOW)[0]
        action.future_unlocks = []
        action.act_now_rationale = None
        self.assertEqual(len(validate_opportunity(action)), 2)


class IntroductionTests(unittest.TestCase):
    def test_blocked_partnership_goal_gets_direct_intro(self) -> None:
        raw = make_dataset()
        goals = _alpha_goals(raw)
        self.assertFalse(is_goal_blocked(goals[0], raw["deals"], NOW))
        self.assertTrue(is_goal_blocked(goals[2], raw["deals"], NOW))
        out = company_introductions(make_company(), goals, raw["deals"], [], raw, NOW, NOW)
        self.assertEqual([a.action_id for a in out], ["intro-c-alpha-g-alpha-partner-p-cal"])
        detail = out[0].primary_source.detail
        self.assertEqual(detail["path_length"], 1)
        self.assertEqual(detail["trust_risk"]["band"], "low")
        self.assertEqual(out[0].timing, Timing.SOON)
        self.assertAlmostEqual(trust_risk_by_action(out)[out[0].action_id], 0.195)

    def test_trust_risk_components(self) -> None:
        low = assess_trust_risk(85, 9, 1, 1)
        self.assertEqual(low.score, 19.5)
        self.assertEqual(low.band, "low")
        high = assess_trust_risk(20, 200, 4, 3)
        self.assertEqual(high.score, 100.0)
        self.assertEqual(high.band, "high")

    def test_weak_second_order_path_is_excluded(self) -> None:
        path = IntroPath("a", ["a", "b", "c"], [{"strength": 85}, {"strength": 75}])
        lift = conversion_lift(path)
        self.assertTrue(lift["is_second_order"])
        self.assertFalse(lift["include"])
        self.assertTrue(conversion_lift(IntroPath("a", ["a", "b"], [{"strength": 10}]))["include"])


class FollowupTests(unittest.TestCase):
    def test_sent_intro_past_threshold_gets_one_followup(self) -> None:
        outcomes = make_dataset()["intro_outcomes"]
        first = generate_followups(outcomes, [], NOW, now_iso=NOW)
        self.assertEqual(len(first), 1)
        action = first[0]
        self.assertEqual(action.source_type, SourceType.FOLLOWUP)
        self.assertTrue(action.action_id.startswith("followup-"))
        self.assertEqual(action.primary_source.detail["days_since_sent"], 14)
        self.assertEqual(action.followup_for["action_id"], "intro-c-alpha-g-alpha-raise-p-ivy")
        self.assertEqual(generate_followups(outcomes, first, NOW), [])

    def test_recent_or_answered_outcomes_are_skipped(self) -> None:
        recent = [dict(make_dataset()["intro_outcomes"][0], status_updated_at="2026-02-25")]
        answered = [dict(make_dataset()["intro_outcomes"][0], status="replied")]
        self.assertEqual(generate_followups(recent, [], NOW), [])
        self.assertEqual(generate_followups(answered, [], NOW), [])

    def test_duplicate_followups_reported(self) -> None:
        action = generate_followups(make_dataset()["intro_outcomes"], [], NOW)[0]
        self.assertEqual(duplicate_followups([action]), [])
        self.assertEqual(duplicate_followups([action, action]), [action.action_id])


if __name__ == "__main__":
    unittest.main()
