from __future__ import annotations

from contextlib import redirect_stdout
from datetime import date
import io
import json
from pathlib import Path
import sys
import tempfile
import unittest

import pandas as pd
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from backbone_engine.engine import BackboneEngine
from backbone_engine.errors import DatasetStructureError, InvariantViolation
from backbone_engine.models import GateCheck, HealthBand, SourceType
from backbone_engine.qa import InvariantGate, assert_gate_passed, gate_passed, summarize
from backbone_engine.qa.__main__ import main as gate_main
from backbone_engine.runtime import compute
from tests.helpers import NOW, make_dataset


class EngineIntegrationTests(unittest.TestCase):
    def _make_engine(self) -> tuple[BackboneEngine, Path, Path]:
        project_root = Path(__file__).resolve().parents[1]
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        tmp_root = Path(td.name)

        cfg_data = yaml.safe_load((project_root / "config.yaml").read_text(encoding="utf-8"))
        cfg_data["paths"] = {"output": "output"}
        cfg_data["logging"] = {"level": "WARNING"}
        cfg_path = tmp_root / "config.yaml"
        cfg_path.write_text(yaml.safe_dump(cfg_data, allow_unicode=True), encoding="utf-8")

        dataset_path = tmp_root / "dataset.json"
        dataset_path.write_text(json.dumps(make_dataset()), encoding="utf-8")
        return BackboneEngine(config_path=cfg_path), tmp_root, dataset_path

    def test_run_outputs_contract_files(self) -> None:
        eng, tmp_root, dataset_path = self._make_engine()
        out = eng.run(dataset_path, now=NOW)
        self.assertEqual(out["date"], "2026-03-01")
        self.assertEqual(out["errors"], [])
        self.assertGreater(out["ranked"], 0)
        daily_dir = tmp_root / "output" / "daily"
        self.assertTrue((daily_dir / "2026-03-01_ranked_actions.json").exists())
        self.assertTrue((daily_dir / "2026-03-01_ranked_actions.csv").exists())
        self.assertTrue((daily_dir / "2026-03-01_briefing.md").exists())
        manifest = tmp_root / "output" / "manifests" / "rank_20260301T000000.json"
        self.assertTrue(manifest.exists())

        payload = json.loads((daily_dir / "2026-03-01_ranked_actions.json").read_text(encoding="utf-8"))
        ranks = [row["rank"] for row in payload["ranked_actions"]]
        self.assertEqual(ranks, list(range(1, len(ranks) + 1)))
        self.assertEqual(payload["meta"]["counts"]["evaluated"], 2)

        frame = pd.read_csv(daily_dir / "2026-03-01_ranked_actions.csv")
        self.assertEqual(list(frame["action_id"]), [row["action_id"] for row in payload["ranked_actions"]])

        briefing = (daily_dir / "2026-03-01_briefing.md").read_text(encoding="utf-8")
        self.assertIn("# Portfolio action briefing | 2026-03-01", briefing)
        self.assertIn("Alpha Payments", briefing)

    def test_rank_returns_top_actions(self) -> None:
        eng, _, dataset_path = self._make_engine()
        out = eng.rank(dataset_path, now=NOW, top=3)
        self.assertEqual(len(out["ranked"]), 3)
        self.assertGreaterEqual(out["total_ranked"], 3)
        self.assertEqual([r["rank"] for r in out["ranked"]], [1, 2, 3])
        scores = [r["rank_score"] for r in out["ranked"]]
        self.assertTrue(all(a >= b - 1e-4 for a, b in zip(scores, scores[1:])))

    def test_gate_writes_review_report(self) -> None:
        eng, tmp_root, dataset_path = self._make_engine()
        out = eng.gate(dataset_path, now=NOW)
        self.assertTrue(out["passed"], out["failed"])
        self.assertTrue((tmp_root / "output" / "review" / "2026-03-01_invariant_gate.json").exists())
        self.assertTrue(any("referential_integrity" in w for w in out["warnings"]))

    def test_dependency_audit_passes(self) -> None:
        eng, tmp_root, _ = self._make_engine()
        out = eng.dependency_audit(as_of=date(2026, 3, 1))
        self.assertTrue(out["ok"], out.get("violations"))
        self.assertTrue((tmp_root / "output" / "review" / "2026-03-01_dependency_audit.json").exists())


class ComputeTests(unittest.TestCase):
    def test_compute_evaluates_portfolio_companies_only(self) -> None:
        result = compute(make_dataset(), NOW)
        self.assertEqual(sorted(result.per_company), ["c-alpha", "c-beta"])
        self.assertEqual(result.meta["errors"], [])
        self.assertEqual(result.meta["health_counts"][HealthBand.RED.value], 1)
        self.assertEqual(result.meta["execution_order"][-1], "priority")
        self.assertEqual(result.meta["events"]["used"], 3)
        alpha = result.per_company["c-alpha"]
        self.assertIn("RUNWAY_CRITICAL", {i.issue_type for i in alpha.issues})
        self.assertEqual(alpha.runway.months, 3.0)

    def test_every_source_type_reaches_the_pool(self) -> None:
        result = compute(make_dataset(), NOW)
        counts = result.meta["action_source_counts"]
        for st in (SourceType.ISSUE, SourceType.PREISSUE, SourceType.GOAL, SourceType.OPPORTUNITY, SourceType.INTRODUCTION, SourceType.FOLLOWUP):
            self.assertGreater(counts[st.value], 0, st.value)
        followups = [r for r in result.trace if r.action.source_type == SourceType.FOLLOWUP]
        self.assertEqual(len(followups), 1)

    def test_published_ranking_respects_cap_and_positivity(self) -> None:
        result = compute(make_dataset(), NOW)
        buckets: dict[tuple[str, str], int] = {}
        for r in result.ranked_actions:
            self.assertGreater(r.rank_score, 0)
            key = (r.action.company_id, r.action.source_type.value)
            buckets[key] = buckets.get(key, 0) + 1
        self.assertLessEqual(max(buckets.values()), 5)
        self.assertGreaterEqual(len(result.trace), len(result.ranked_actions))

    def test_record_order_does_not_change_ranking(self) -> None:
        raw = make_dataset()
        shuffled = make_dataset()
        for key in ("companies", "goals", "people", "relationships"):
            shuffled[key] = list(reversed(shuffled[key]))
        first = compute(raw, NOW).ranked_actions
        second = compute(shuffled, NOW).ranked_actions
        self.assertEqual([r.action_id for r in first], [r.action_id for r in second])
        self.assertEqual([round(r.rank_score, 6) for r in first], [round(r.rank_score, 6) for r in second])

    def test_stored_derivation_rejects_dataset(self) -> None:
        raw = make_dataset()
        raw["companies"][0]["health"] = "RED"
        with self.assertRaises(DatasetStructureError) as ctx:
            compute(raw, NOW)
        self.assertIn("stored derived field companies[0].health", ctx.exception.problems)

    def test_bad_company_record_is_reported_not_fatal(self) -> None:
        raw = make_dataset()
        raw["companies"][1]["burn"] = "unknown"
        result = compute(raw, NOW)
        self.assertEqual(sorted(result.per_company), ["c-alpha"])
        self.assertEqual(result.meta["errors"][0]["company_id"], "c-beta")
        self.assertEqual(result.meta["errors"][0]["kind"], "ValidationError")

    def test_impure_events_are_excluded_from_lift(self) -> None:
        raw = make_dataset()
        raw["action_events"][0]["payload"]["rankScore"] = 9.0
        result = compute(raw, NOW)
        self.assertEqual(result.meta["events"]["used"], 2)
        self.assertEqual(result.meta["events"]["issues"][0]["rule"], "payload_purity")

    def test_invalid_now_raises(self) -> None:
        with self.assertRaises(ValueError):
            compute(make_dataset(), "not-a-time")


class InvariantGateTests(unittest.TestCase):
    def test_gate_runs_all_checks(self) -> None:
        gate = InvariantGate(make_dataset(), NOW)
        checks = gate.run()
        self.assertEqual(
            [c.name for c in checks],
            [
                "layering",
                "no_stored_derivations",
                "dag_integrity",
                "ranking_correctness",
                "single_ranking_surface",
                "trace_integrity",
                "events_and_purity",
                "followup_dedup",
            ],
        )
        self.assertTrue(gate_passed(checks), summarize(checks)["failed"])
        assert_gate_passed(checks)

    def test_stored_derivation_fails_gate(self) -> None:
        raw = make_dataset()
        raw["goals"][0]["on_track"] = False
        checks = {c.name: c for c in InvariantGate(raw, NOW).run()}
        self.assertFalse(checks["no_stored_derivations"].passed)
        self.assertEqual(checks["no_stored_derivations"].diagnostics, ["goals[0].on_track"])
        self.assertFalse(checks["ranking_correctness"].passed)

    def test_assert_gate_passed_raises_on_failure(self) -> None:
        checks = [GateCheck("layering", True, []), GateCheck("followup_dedup", False, ["duplicate follow-up x"])]
        self.assertFalse(gate_passed(checks))
        with self.assertRaises(InvariantViolation) as ctx:
            assert_gate_passed(checks)
        self.assertEqual(ctx.exception.rule, "followup_dedup")
        self.assertEqual(summarize(checks)["failed"], ["followup_dedup"])

    def test_gate_cli_exit_codes(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            good = Path(td) / "good.json"
            good.write_text(json.dumps(make_dataset()), encoding="utf-8")
            bad = Path(td) / "bad.json"
            bad.write_text("[]", encoding="utf-8")

            buf = io.StringIO()
            with redirect_stdout(buf):
                code = gate_main([str(good), "--now", NOW])
            self.assertEqual(code, 0, buf.getvalue())
            self.assertIn("PASS ranking_correctness", buf.getvalue())

            buf = io.StringIO()
            with redirect_stdout(buf):
                code = gate_main([str(bad), "--now", NOW])
            self.assertEqual(code, 1)
            self.assertIn("FAIL dataset_structure", buf.getvalue())


if __name__ == "__main__":
    unittest.main()
