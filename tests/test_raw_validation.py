from __future__ import annotations

import json
from pathlib import Path
import sys
import tempfile
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.errors import DatasetStructureError, ValidationError
from backbone_engine.raw import (
    check_payload_purity,
    days_between,
    load_dataset,
    parse_ts,
    validate_company_record,
    validate_dataset,
    validate_events,
    validate_goal_record,
    validate_no_forbidden_fields,
)
from tests.helpers import make_company, make_dataset, make_goal, outcome_events


class ForbiddenFieldTests(unittest.TestCase):
    def test_clean_dataset_passes(self) -> None:
        out = validate_no_forbidden_fields(make_dataset())
        self.assertTrue(out["valid"], out["message"])

    def test_stored_derivations_are_reported_with_paths(self) -> None:
        raw = make_dataset()
        raw["companies"][0]["runway_months"] = 3.0
        raw["goals"][1]["history"][0]["probability_of_hit"] = 0.4
        out = validate_no_forbidden_fields(raw)
        self.assertFalse(out["valid"])
        self.assertEqual(out["violations"], ["companies[0].runway_months", "goals[1].history[0].probability_of_hit"])
        self.assertIn("companies[0].runway_months", out["message"])


class EventValidationTests(unittest.TestCase):
    def test_well_formed_events_pass(self) -> None:
        events = outcome_events("REDUCE_BURN")
        out = validate_events(events, known_action_ids=[e["action_id"] for e in events])
        self.assertTrue(out["valid"], out["issues"])
        self.assertEqual(out["events_checked"], 3)

    def test_rank_score_in_payload_is_a_purity_violation(self) -> None:
        event = outcome_events("REDUCE_BURN", n=1)[0]
        event["payload"]["meta"] = {"rankScore": 12.5}
        event["payload"]["rank_score"] = 3
        issues = check_payload_purity(event)
        self.assertEqual(sorted(i.message for i in issues), [
            "derived scalar stored at payload.meta.rankScore",
            "derived scalar stored at payload.rank_score",
        ])
        out = validate_events([event])
        self.assertFalse(out["valid"])
        self.assertEqual(len(out["purity_violations"]), 2)

    def test_schema_uniqueness_and_references(self) -> None:
        good = outcome_events("REDUCE_BURN", n=1)[0]
        bad_type = dict(good, id="ev-x", event_type="exploded")
        bad_outcome = dict(good, id="ev-y", payload={"outcome": "great"})
        missing = {"id": "ev-z", "event_type": "created"}
        out = validate_events([good, dict(good), bad_type, bad_outcome, missing], known_action_ids=["act-other"])
        rules = {(i["event_id"], i["rule"]) for i in out["issues"]}
        self.assertIn((good["id"], "unique_id"), rules)
        self.assertIn(("ev-x", "schema"), rules)
        self.assertIn(("ev-y", "schema"), rules)
        self.assertIn(("ev-z", "schema"), rules)
        self.assertIn((good["id"], "referential_integrity"), rules)
        self.assertFalse(out["valid"])


class DatasetStructureTests(unittest.TestCase):
    def test_valid_dataset(self) -> None:
        self.assertEqual(validate_dataset(make_dataset()), [])

    def test_structure_problems_raise(self) -> None:
        with self.assertRaises(DatasetStructureError):
            validate_dataset(["not", "a", "mapping"])
        with self.assertRaises(DatasetStructureError) as ctx:
            validate_dataset({"goals": []})
        self.assertIn("missing required collection 'companies'", ctx.exception.problems)

        raw = make_dataset()
        raw["deals"] = {"d-1": {}}
        raw["companies"].append(make_company())
        raw["companies"].append({"name": "No id"})
        with self.assertRaises(DatasetStructureError) as ctx:
            validate_dataset(raw)
        problems = "\n".join(ctx.exception.problems)
        self.assertIn("collection 'deals' must be a list", problems)
        self.assertIn("duplicate company ids: ['c-alpha']", problems)
        self.assertIn("companies[4] has no id", problems)

    def test_load_dataset_reads_json(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        good = Path(td.name) / "good.json"
        good.write_text(json.dumps(make_dataset()), encoding="utf-8")
        self.assertEqual(len(load_dataset(good)["companies"]), 3)
        bad = Path(td.name) / "bad.json"
        bad.write_text("{ not json", encoding="utf-8")
        with self.assertRaises(DatasetStructureError) as ctx:
            load_dataset(bad)
        self.assertIn("not valid JSON", str(ctx.exception))

    def test_record_validators(self) -> None:
        validate_company_record(make_company())
        validate_goal_record(make_goal())
        with self.assertRaises(ValidationError) as ctx:
            validate_company_record(make_company(cash="lots", as_of="not-a-date"))
        self.assertEqual(ctx.exception.record_id, "c-alpha")
        self.assertEqual(len(ctx.exception.problems), 2)
        with self.assertRaises(ValidationError) as ctx:
            validate_goal_record(make_goal(target=float("inf"), history=[{"date": "2026-01-01"}]))
        self.assertEqual(ctx.exception.to_dict()["record_type"], "goal")
        self.assertEqual(len(ctx.exception.problems), 2)


class DateTests(unittest.TestCase):
    def test_dates_are_utc_aware(self) -> None:
        ts = parse_ts("2026-02-20")
        self.assertIsNotNone(ts.tzinfo)
        self.assertIsNone(parse_ts("not a date"))
        self.assertIsNone(parse_ts(None))
        self.assertEqual(days_between("2026-02-20", "2026-03-01T00:00:00+00:00"), 9.0)
        self.assertIsNone(days_between(None, "2026-03-01"))


if __name__ == "__main__":
    unittest.main()
