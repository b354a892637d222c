from __future__ import annotations

import ast
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import logging
import math
from pathlib import Path
from typing import Any

from backbone_engine.config import SystemSettings
from backbone_engine.decide import RankingContext, rank_actions, validate_ranking, verify_determinism
from backbone_engine.errors import BackboneError, InvariantViolation
from backbone_engine.models import GateCheck, RankedAction, RunResult, SourceType
from backbone_engine.predict.followups import duplicate_followups
from backbone_engine.qa.layering import PACKAGE, SOURCE_ROOT, LayeringAuditor
from backbone_engine.raw import validate_events, validate_no_forbidden_fields
from backbone_engine.runtime import compute, validate_graph
from backbone_engine.runtime.pipeline import RunConfig


logger = logging.getLogger(__name__)

RANKING_MODULE = Path("decide") / "ranking.py"
ORDERING_CALLS = {"sorted", "sort", "sort_values", "max", "min", "nlargest", "nsmallest"}


@dataclass(slots=True)
class InvariantGate:
    raw: Mapping[str, Any]
    now: Any
    settings: SystemSettings | None = None
    source_root: Path = SOURCE_ROOT
    warnings: list[str] = field(default_factory=list, init=False)
    _result: RunResult | None = field(default=None, init=False)
    _compute_error: str | None = field(default=None, init=False)

    @property
    def _gate_cfg(self) -> Mapping[str, Any]:
        return self.settings.gate if self.settings is not None else {}

    def _run_result(self) -> RunResult | None:
        if self._result is None and self._compute_error is None:
            try:
                self._result = compute(self.raw, self.now, self.settings)
            except (BackboneError, ValueError) as exc:
                self._compute_error = f"compute failed: {exc}"
        return self._result

    def check_layering(self) -> GateCheck:
        scan = LayeringAuditor(source_root=self.source_root).scan()
        return GateCheck("layering", scan["ok"], list(scan["violations"]))

    def check_no_stored_derivations(self) -> GateCheck:
        report = validate_no_forbidden_fields(self.raw)
        return GateCheck("no_stored_derivations", report["valid"], list(report["violations"]))

    def check_dag(self) -> GateCheck:
        report = validate_graph()
        return GateCheck("dag_integrity", report["valid"], list(report["errors"]))

    def check_ranking(self) -> GateCheck:
        result = self._run_result()
        if result is None:
            return GateCheck("ranking_correctness", False, [self._compute_error or "no result"])
        diagnostics = [f"published: {p}" for p in validate_ranking(result.ranked_actions)]
        diagnostics.extend(
            f"{r.action_id}: non-finite score" for r in result.trace if not math.isfinite(r.rank_score)
        )
        actions = [r.action for r in result.trace]
        cfg = RunConfig.from_settings(self.settings)
        with_events = RankingContext(
            events=list(self.raw.get("action_events") or []), now=self.now, weights=cfg.weights, lift=cfg.lift
        )
        for label, ctx in (("with events", with_events), ("without events", with_events.without_events())):
            report = verify_determinism(actions, ctx)
            if not report["deterministic"]:
                diagnostics.append(f"re-rank {label} not deterministic: {report['diffs'][:5]}")
            diagnostics.extend(f"re-rank {label}: {p}" for p in validate_ranking(rank_actions(actions, ctx)))
        again = compute(self.raw, self.now, self.settings)
        if [(r.action_id, round(r.rank_score, 4)) for r in again.ranked_actions] != [
            (r.action_id, round(r.rank_score, 4)) for r in result.ranked_actions
        ]:
            diagnostics.append("repeat compute produced a different ranking")
        return GateCheck("ranking_correctness", not diagnostics, diagnostics)

    def check_single_ranking_surface(self) -> GateCheck:
        root = self.source_root / PACKAGE
        diagnostics: list[str] = []
        for path in sorted(root.rglob("*.py")):
            rel = path.relative_to(root)
            if rel == RANKING_MODULE or "__pycache__" in path.parts:
                continue
            tree = ast.parse(path.read_text(encoding="utf-8"))
            for node in ast.walk(tree):
                if not isinstance(node, ast.Call):
                    continue
                func = node.func
                name = func.id if isinstance(func, ast.Name) else func.attr if isinstance(func, ast.Attribute) else ""
                if name not in ORDERING_CALLS:
                    continue
                text = " ".join(ast.unparse(arg) for arg in [*node.args, *(k.value for k in node.keywords)])
                if "rank_score" in text or "rankScore" in text:
                    diagnostics.append(f"{rel}:{node.lineno}: {name}() ordered by rank score")
        return GateCheck("single_ranking_surface", not diagnostics, diagnostics)

    def check_trace_integrity(self) -> GateCheck:
        result = self._run_result()
        if result is None:
            return GateCheck("trace_integrity", False, [self._compute_error or "no result"])
        cfg = self._gate_cfg
        eps = float(cfg.get("reconstruct_epsilon", 0.01))
        low = float(cfg.get("upside_min", 10.0))
        high = float(cfg.get("upside_max", 100.0))
        ratio = float(cfg.get("tier_ratio_min", 0.8))
        diagnostics: list[str] = []
        warnings: list[str] = []
        for item in result.trace:
            c = item.components
            rebuilt = (
                c.expected_net_impact
                - c.trust_penalty
                - c.execution_friction_penalty
                + c.time_criticality_boost
                + c.source_type_boost
                + c.pattern_lift
            )
            if abs(rebuilt - item.rank_score) > eps:
                diagnostics.append(f"{item.action_id}: components sum {rebuilt:.4f} != score {item.rank_score:.4f}")
            impact = item.action.impact
            if impact is None:
                diagnostics.append(f"{item.action_id}: missing impact model")
            elif not (low <= impact.upside_magnitude <= high):
                diagnostics.append(f"{item.action_id}: upside {impact.upside_magnitude} outside [{low:.0f}, {high:.0f}]")
        means = _upside_means(result.trace)
        issue_mean, pre_mean = means.get(SourceType.ISSUE), means.get(SourceType.PREISSUE)
        if issue_mean is None or pre_mean is None:
            warnings.append("tier ordering not evaluated: needs both ISSUE and PREISSUE actions")
        elif issue_mean < ratio * pre_mean:
            diagnostics.append(f"ISSUE mean upside {issue_mean:.1f} < {ratio} x PREISSUE mean {pre_mean:.1f}")
        return GateCheck("trace_integrity", not diagnostics, diagnostics, warnings)

    def check_events(self) -> GateCheck:
        events = list(self.raw.get("action_events") or [])
        result = self._run_result()
        known = {r.action_id for r in result.trace} if result is not None else None
        report = validate_events(events, known)
        diagnostics: list[str] = []
        warnings: list[str] = []
        for issue in report["issues"]:
            line = f"{issue['event_id']} [{issue['rule']}] {issue['message']}"
            # Events may reference actions from earlier runs that no longer surface.
            if issue["rule"] == "referential_integrity":
                warnings.append(line)
            else:
                diagnostics.append(line)
        return GateCheck("events_and_purity", not diagnostics, diagnostics, warnings)

    def check_followup_dedup(self) -> GateCheck:
        result = self._run_result()
        if result is None:
            return GateCheck("followup_dedup", False, [self._compute_error or "no result"])
        dupes = duplicate_followups(r.action for r in result.trace)
        return GateCheck("followup_dedup", not dupes, [f"duplicate follow-up {d}" for d in dupes])

    def checks(self) -> list[tuple[str, Callable[[], GateCheck]]]:
        return [
            ("layering", self.check_layering),
            ("no_stored_derivations", self.check_no_stored_derivations),
            ("dag_integrity", self.check_dag),
            ("ranking_correctness", self.check_ranking),
            ("single_ranking_surface", self.check_single_ranking_surface),
            ("trace_integrity", self.check_trace_integrity),
            ("events_and_purity", self.check_events),
            ("followup_dedup", self.check_followup_dedup),
        ]

    def run(self) -> list[GateCheck]:
        out: list[GateCheck] = []
        for name, check in self.checks():
            try:
                item = check()
            except (BackboneError, ValueError, TypeError, KeyError, SyntaxError) as exc:
                item = GateCheck(name, False, [f"check raised {type(exc).__name__}: {exc}"])
            if not item.passed:
                logger.warning("gate check %s failed: %s", item.name, item.diagnostics[:3])
            out.append(item)
        result = self._run_result()
        self.warnings = [w for c in out for w in c.warnings]
        if result is not None:
            self.warnings.extend(_run_warnings(result))
        return out


def _upside_means(trace: list[RankedAction]) -> dict[SourceType, float]:
    sums: dict[SourceType, list[float]] = {}
    for item in trace:
        st = item.action.source_type
        if st is None or item.action.impact is None:
            continue
        sums.setdefault(st, []).append(item.action.impact.upside_magnitude)
    return {k: sum(v) / len(v) for k, v in sums.items() if v}


def _run_warnings(result: RunResult) -> list[str]:
    meta = result.meta
    out = [f"company {e.get('company_id')} skipped: {e.get('kind')}" for e in meta.get("errors", [])]
    out.extend(f"low confidence {w['subject']}: {w['reason']}" for w in meta.get("warnings", []))
    out.extend(f"cold start {c['subject']}" for c in meta.get("cold_start", []))
    return out


def gate_passed(checks: list[GateCheck]) -> bool:
    return all(c.passed for c in checks)


def assert_gate_passed(checks: list[GateCheck]) -> None:
    for check in checks:
        if not check.passed:
            offender = check.diagnostics[0] if check.diagnostics else "unknown"
            raise InvariantViolation(check.name, offender, f"{len(check.diagnostics)} diagnostic(s)")


def summarize(checks: list[GateCheck]) -> dict[str, Any]:
    return {
        "passed": gate_passed(checks),
        "checks": [c.to_dict() for c in checks],
        "failed": [c.name for c in checks if not c.passed],
    }
