from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
import logging
from typing import Any

from backbone_engine.config import SystemSettings
from backbone_engine.decide import RankingContext, RankingWeights, rank_actions, rank_actions_with_trace
from backbone_engine.derive import (
    PatternLiftConfig,
    compute_pattern_stats,
    derive_health,
    derive_metrics,
    derive_runway,
    derive_trajectory,
)
from backbone_engine.derive.pattern_lift import action_bucket
from backbone_engine.errors import ColdStartNullResult, DatasetStructureError, LowConfidenceWarning, ValidationError
from backbone_engine.models import Action, CompanyResult, HealthBand, RunResult, SourceType
from backbone_engine.predict import (
    PORTFOLIO_SCOPE,
    DetectionThresholds,
    ForecastConfig,
    ImpactContext,
    actions_from_goals,
    actions_from_issues,
    actions_from_preissues,
    aggregate_ripple,
    attach_impacts,
    company_introductions,
    company_opportunities,
    cross_entity_synergy,
    derive_company_preissues,
    derive_portfolio_preissues,
    detect_issues,
    generate_followups,
    trust_risk_by_action,
)
from backbone_engine.raw import (
    ensure_now,
    group_by_company,
    validate_company_record,
    validate_dataset,
    validate_events,
    validate_goal_record,
    validate_no_forbidden_fields,
)
from backbone_engine.runtime.graph import GRAPH, topo_sort


logger = logging.getLogger(__name__)

TRAJECTORY_CONFIDENCE_MIN = 0.3


@dataclass(slots=True, frozen=True)
class RunConfig:
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    weights: RankingWeights = field(default_factory=RankingWeights)
    lift: PatternLiftConfig = field(default_factory=PatternLiftConfig)
    metric_stale_days: float = 45.0
    portfolio_preissue_limit: int = 100

    @classmethod
    def from_settings(cls, settings: SystemSettings | None) -> "RunConfig":
        if settings is None:
            return cls()
        base = cls()
        return cls(
            thresholds=DetectionThresholds.from_mapping(settings.detection),
            forecast=ForecastConfig.from_mapping(settings.forecast),
            weights=RankingWeights.from_mapping(settings.ranking),
            lift=PatternLiftConfig.from_mapping(settings.pattern_lift),
            metric_stale_days=float(settings.forecast.get("metric_stale_days", base.metric_stale_days)),
            portfolio_preissue_limit=int(settings.runtime.get("portfolio_preissue_limit", base.portfolio_preissue_limit)),
        )


@dataclass(slots=True)
class CompanyScope:
    company: Mapping[str, Any]
    records: Mapping[str, list[dict[str, Any]]]
    raw: Mapping[str, Any]
    now: Any
    now_iso: str
    cfg: RunConfig
    events: list[Mapping[str, Any]]
    warnings: list[LowConfidenceWarning] = field(default_factory=list)

    @property
    def company_id(self) -> str:
        return str(self.company.get("id"))

    @property
    def goals(self) -> list[dict[str, Any]]:
        return self.records.get("goals", [])

    @property
    def deals(self) -> list[dict[str, Any]]:
        return self.records.get("deals", [])

    @property
    def rounds(self) -> list[dict[str, Any]]:
        return self.records.get("rounds", [])


# Per-company nodes. Each reads its dependencies from `state` and returns its own value.


def _runway(state: dict[str, Any], scope: CompanyScope) -> Any:
    validate_company_record(scope.company)
    c = scope.company
    runway = derive_runway(c.get("cash"), c.get("burn"), c.get("as_of"), scope.now, scope.company_id)
    if runway.low_confidence:
        scope.warnings.append(LowConfidenceWarning(f"runway:{scope.company_id}", runway.reason, runway.confidence))
    return runway


def _metrics(state: dict[str, Any], scope: CompanyScope) -> Any:
    return derive_metrics(
        scope.company_id,
        scope.records.get("metric_facts", []),
        scope.now,
        company=scope.company,
        stale_days=scope.cfg.metric_stale_days,
    )


def _trajectory(state: dict[str, Any], scope: CompanyScope) -> Any:
    out = []
    for goal in scope.goals:
        validate_goal_record(goal)
        traj = derive_trajectory(goal, scope.now)
        if traj.confidence < TRAJECTORY_CONFIDENCE_MIN and traj.probability_of_hit < 1.0:
            scope.warnings.append(LowConfidenceWarning(f"trajectory:{traj.goal_id}", traj.status.value, traj.confidence))
        out.append(traj)
    return out


def _health(state: dict[str, Any], scope: CompanyScope) -> Any:
    return derive_health(scope.company, state["runway"], state["trajectory"], state["metrics"])


def _issues(state: dict[str, Any], scope: CompanyScope) -> Any:
    return detect_issues(
        scope.company, state["runway"], state["trajectory"], scope.deals, scope.rounds, scope.now, scope.cfg.thresholds
    )


def _preissues(state: dict[str, Any], scope: CompanyScope) -> Any:
    return derive_company_preissues(
        scope.company,
        state["runway"],
        state["trajectory"],
        scope.deals,
        scope.rounds,
        state["metrics"],
        scope.now,
        scope.cfg.forecast,
        goals=scope.goals,
    )


def _ripple(state: dict[str, Any], scope: CompanyScope) -> Any:
    return aggregate_ripple(state["issues"])


def _opportunities(state: dict[str, Any], scope: CompanyScope) -> Any:
    return company_opportunities(scope.company, scope.goals, state["trajectory"], scope.raw, scope.now, scope.now_iso)


def _introductions(state: dict[str, Any], scope: CompanyScope) -> Any:
    return company_introductions(
        scope.company, scope.goals, scope.deals, state["trajectory"], scope.raw, scope.now, scope.now_iso
    )


def _action_candidates(state: dict[str, Any], scope: CompanyScope) -> Any:
    actions: list[Action] = []
    actions.extend(actions_from_issues(state["issues"], scope.now_iso))
    actions.extend(actions_from_preissues(state["preissues"], scope.company_id, scope.now_iso))
    actions.extend(actions_from_goals(scope.company, scope.goals, state["trajectory"], scope.now_iso))
    actions.extend(state["opportunities"])
    actions.extend(state["introductions"])
    return dedupe_actions(actions)


def _impact_context(state: dict[str, Any], scope: CompanyScope) -> ImpactContext:
    return ImpactContext.build(
        company=scope.company,
        goals=scope.goals,
        deals=scope.deals,
        rounds=scope.rounds,
        issues=state["issues"],
        preissues=state["preissues"],
        trajectories=state["trajectory"],
        ripple_score=float(state["ripple"].get("score", 0.0)),
    )


def _action_impact(state: dict[str, Any], scope: CompanyScope) -> Any:
    return attach_impacts(state["action_candidates"], _impact_context(state, scope))


def _action_ranker(state: dict[str, Any], scope: CompanyScope) -> Any:
    actions = state["action_impact"]
    ctx = ranking_context(actions, state["trajectory"], state["preissues"], scope.events, scope.now, scope.cfg)
    return rank_actions(actions, ctx)


def _priority(state: dict[str, Any], scope: CompanyScope) -> Any:
    return [r.action_id for r in state["action_ranker"]]


NODES: dict[str, Callable[[dict[str, Any], CompanyScope], Any]] = {
    "runway": _runway,
    "metrics": _metrics,
    "trajectory": _trajectory,
    "health": _health,
    "issues": _issues,
    "preissues": _preissues,
    "ripple": _ripple,
    "opportunities": _opportunities,
    "introductions": _introductions,
    "action_candidates": _action_candidates,
    "action_impact": _action_impact,
    "action_ranker": _action_ranker,
    "priority": _priority,
}


def dedupe_actions(actions: Iterable[Action]) -> list[Action]:
    seen: set[str] = set()
    out: list[Action] = []
    for action in actions:
        if action.action_id in seen:
            continue
        seen.add(action.action_id)
        out.append(action)
    return out


def deadlines_by_action(actions: Iterable[Action], trajectories: Iterable[Any], preissues: Iterable[Any]) -> dict[str, float]:
    goal_days = {t.goal_id: float(t.days_left) for t in trajectories if t.days_left is not None}
    pre_days = {p.preissue_id: float(p.escalation.delta_days) for p in preissues}
    out: dict[str, float] = {}
    for action in actions:
        candidates = []
        if action.goal_id in goal_days:
            candidates.append(goal_days[action.goal_id])
        src = action.primary_source
        if src is not None and src.source_type == SourceType.PREISSUE and src.ref_id in pre_days:
            candidates.append(pre_days[src.ref_id])
        if candidates:
            out[action.action_id] = min(candidates)
    return out


def ranking_context(
    actions: list[Action],
    trajectories: Iterable[Any],
    preissues: Iterable[Any],
    events: list[Mapping[str, Any]],
    now: Any,
    cfg: RunConfig,
) -> RankingContext:
    return RankingContext(
        trust_risk_by_action=trust_risk_by_action(actions),
        deadline_by_action=deadlines_by_action(actions, trajectories, preissues),
        events=list(events),
        now=now,
        weights=cfg.weights,
        lift=cfg.lift,
    )


def evaluate_company(scope: CompanyScope, order: list[str] | None = None) -> CompanyResult:
    state: dict[str, Any] = {}
    for node in order or topo_sort(GRAPH):
        state[node] = NODES[node](state, scope)
    return CompanyResult(
        company_id=scope.company_id,
        company_name=str(scope.company.get("name") or scope.company_id),
        runway=state["runway"],
        metrics=state["metrics"],
        trajectories=state["trajectory"],
        health=state["health"],
        issues=state["issues"],
        preissues=state["preissues"],
        ripple=state["ripple"],
        actions=state["action_impact"],
        ranked=state["action_ranker"],
        execution_order=state["priority"],
    )


def _usable_events(raw: Mapping[str, Any]) -> tuple[list[Mapping[str, Any]], dict[str, Any]]:
    events = [e for e in raw.get("action_events") or [] if isinstance(e, Mapping)]
    report = validate_events(events)
    bad = {i["event_id"] for i in report["issues"]}
    return [e for e in events if str(e.get("id")) not in bad], report


def compute(raw: Mapping[str, Any], now: Any, settings: SystemSettings | None = None) -> RunResult:
    validate_dataset(raw)
    forbidden = validate_no_forbidden_fields(raw)
    if not forbidden["valid"]:
        raise DatasetStructureError([f"stored derived field {v}" for v in forbidden["violations"]])

    now_dt = ensure_now(now)
    now_iso = now_dt.isoformat()
    cfg = RunConfig.from_settings(settings)
    order = topo_sort(GRAPH)
    events, event_report = _usable_events(raw)
    grouped = group_by_company(raw)

    errors: list[dict[str, Any]] = []
    warnings: list[LowConfidenceWarning] = []
    per_company: dict[str, CompanyResult] = {}
    contexts: dict[str, ImpactContext] = {}
    companies = sorted((c for c in raw.get("companies") or [] if c.get("is_portfolio")), key=lambda c: str(c["id"]))

    for company in companies:
        scope = CompanyScope(company, grouped[str(company["id"])], raw, now_dt, now_iso, cfg, events)
        try:
            result = evaluate_company(scope, order)
        except ValidationError as exc:
            logger.warning("company %s skipped: %s", scope.company_id, exc)
            errors.append({"company_id": scope.company_id, **exc.to_dict()})
            continue
        except (TypeError, ValueError, KeyError, ArithmeticError) as exc:
            logger.warning("company %s failed: %s", scope.company_id, exc)
            errors.append({"company_id": scope.company_id, "kind": type(exc).__name__, "message": str(exc)})
            continue
        warnings.extend(scope.warnings)
        per_company[scope.company_id] = result
        contexts[scope.company_id] = ImpactContext.build(
            company=company,
            goals=scope.goals,
            deals=scope.deals,
            rounds=scope.rounds,
            issues=result.issues,
            preissues=result.preissues,
            trajectories=result.trajectories,
            ripple_score=float(result.ripple.get("score", 0.0)),
        )

    actions = dedupe_actions(a for cid in sorted(per_company) for a in per_company[cid].actions)
    portfolio_pre = derive_portfolio_preissues(raw, now_dt, cfg.forecast, cfg.portfolio_preissue_limit)
    portfolio_actions = actions_from_preissues(portfolio_pre, PORTFOLIO_SCOPE, now_iso)
    actions.extend(dedupe_new(actions, attach_impacts(portfolio_actions, ImpactContext.build(preissues=portfolio_pre))))
    goals_by_company = {cid: list(records.get("goals", [])) for cid, records in grouped.items() if cid in per_company}
    synergy = cross_entity_synergy(companies, goals_by_company, now_iso)
    actions.extend(dedupe_new(actions, [_with_impact(a, contexts) for a in synergy if a.company_id in contexts]))

    originals = {a.action_id: a for a in actions}
    followups = generate_followups(raw.get("intro_outcomes") or [], actions, now_dt, originals, now_iso)
    actions.extend(dedupe_new(actions, [_with_impact(a, contexts, originals) for a in followups]))

    trajectories = [t for r in per_company.values() for t in r.trajectories]
    preissues = [p for r in per_company.values() for p in r.preissues] + portfolio_pre
    ctx = ranking_context(actions, trajectories, preissues, events, now_dt, cfg)
    ranked, trace = rank_actions_with_trace(actions, ctx)

    for w in warnings:
        logger.warning("low confidence: %s", w)
    cold = cold_start_notes(actions, events, now_dt, cfg.lift)
    if cold:
        logger.warning("pattern lift cold start for %d action type(s)", len(cold))

    meta = {
        "computed_at": now_iso,
        "errors": errors,
        "warnings": [w.to_dict() for w in warnings],
        "health_counts": health_counts(per_company.values()),
        "action_source_counts": action_source_counts(actions),
        "execution_order": order,
        "cold_start": [c.to_dict() for c in cold],
        "events": {
            "checked": event_report["events_checked"],
            "used": len(events),
            "issues": event_report["issues"],
        },
        "counts": {
            "companies": len(companies),
            "evaluated": len(per_company),
            "actions": len(actions),
            "ranked": len(ranked),
        },
    }
    logger.info("computed %d ranked actions across %d companies", len(ranked), len(per_company))
    return RunResult(per_company=per_company, ranked_actions=ranked, trace=trace, meta=meta)


def dedupe_new(existing: list[Action], new: Iterable[Action]) -> list[Action]:
    seen = {a.action_id for a in existing}
    return [a for a in dedupe_actions(new) if a.action_id not in seen]


def _with_impact(action: Action, contexts: Mapping[str, ImpactContext], originals: Mapping[str, Action] | None = None) -> Action:
    ctx = contexts.get(action.company_id) or ImpactContext.build()
    if originals:
        ctx = replace(ctx, originals=dict(originals))
    return attach_impacts([action], ctx)[0]


def health_counts(results: Iterable[CompanyResult]) -> dict[str, int]:
    counts = {band.value: 0 for band in HealthBand}
    for result in results:
        if result.health is not None:
            counts[result.health.band.value] += 1
    return counts


def action_source_counts(actions: Iterable[Action]) -> dict[str, int]:
    counts = Counter(a.source_type.value for a in actions if a.source_type is not None)
    return {st.value: counts.get(st.value, 0) for st in SourceType}


def cold_start_notes(
    actions: Iterable[Action], events: list[Mapping[str, Any]], now: Any, cfg: PatternLiftConfig
) -> list[ColdStartNullResult]:
    stats = compute_pattern_stats(events, now, cfg)
    out = []
    for bucket in sorted({action_bucket(a) for a in actions}):
        est = stats.get(bucket)
        if est is not None and not est.cold_start:
            continue
        n = est.observations if est else 0
        out.append(
            ColdStartNullResult(
                subject=f"pattern_lift:{bucket}",
                observations=n,
                required=cfg.min_observations,
                notes=(f"{n} outcome event(s) recorded, lift held at 0",),
            )
        )
    return out
