from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
import logging
import math
from typing import Any

import numpy as np

from backbone_engine.models import Action, GoalImpact, GoalTrajectory, ImpactModel, Issue, PreIssue, SourceType, Timing
from backbone_engine.predict.candidates import get_resolution
from backbone_engine.predict.issues import active_round
from backbone_engine.raw.assumptions import stage_goal_modifier


logger = logging.getLogger(__name__)

GOAL_TYPE_WEIGHTS = {
    "fundraise": 90,
    "revenue": 85,
    "round_completion": 85,
    "deal_close": 80,
    "operational": 70,
    "retention": 65,
    "efficiency": 65,
    "hiring": 60,
    "customer_growth": 60,
    "product": 55,
    "partnership": 50,
    "intro_target": 45,
    "relationship_build": 40,
    "investor_activation": 35,
    "champion_cultivation": 30,
}

STAGE_MODIFIERS = {
    "Pre-seed": {"fundraise": 1.2, "revenue": 0.7, "operational": 1.1},
    "Seed": {"fundraise": 1.15, "revenue": 0.8, "operational": 1.0},
    "Series A": {"fundraise": 1.0, "revenue": 1.0, "operational": 0.9},
    "Series B": {"fundraise": 0.8, "revenue": 1.1, "operational": 0.85},
    "Series C": {"fundraise": 0.7, "revenue": 1.2, "operational": 0.8},
}

SOURCE_AFFECTS_GOALS = {
    "RUNWAY_WARNING": ("fundraise", "operational"),
    "RUNWAY_CRITICAL": ("fundraise", "operational"),
    "RUNWAY_BREACH": ("fundraise", "operational"),
    "RUNWAY_COMPRESSION": ("operational", "fundraise"),
    "DATA_MISSING": ("operational",),
    "DATA_STALE": ("operational", "revenue"),
    "DATA_BLINDSPOT": ("operational", "revenue"),
    "NO_GOALS": ("operational",),
    "DEAL_STALE": ("fundraise",),
    "DEAL_STALL": ("fundraise",),
    "NO_PIPELINE": ("fundraise",),
    "PIPELINE_GAP": ("fundraise",),
    "ROUND_STALL": ("fundraise",),
    "LEAD_VACANCY": ("fundraise",),
    "TIMING_WINDOW": ("fundraise",),
    "CONNECTION_DORMANT": ("partnership", "fundraise"),
    "FIRM_RELATIONSHIP_DECAY": ("fundraise", "partnership"),
}
EARLY_STAGES = ("Pre-seed", "Seed", "Series A")
INACTIVE_GOAL_STATUSES = ("completed", "abandoned")

ISSUE_FLOORS = (35, 40, 50, 60)
ISSUE_CEILINGS = (70, 80, 90, 95)
PREISSUE_FLOORS = (25, 30, 40, 50)
PREISSUE_CEILINGS = (55, 65, 75, 85)
GOAL_FLOORS = (25, 30, 40, 55)
GOAL_CEILINGS = (55, 65, 75, 85)

OPPORTUNITY_BASE = {
    "relationship_leverage": 45.0,
    "timing_window": 40.0,
    "cross_entity_synergy": 35.0,
    "goal_acceleration": 40.0,
    "optionality_builder": 30.0,
}
INTRODUCTION_BASE = 45.0
FOLLOWUP_BASE = 30.0
FOLLOWUP_CARRY = 0.7

TIMING_UPSIDE = {Timing.NOW: 1.2, Timing.SOON: 1.0, Timing.LATER: 0.7, Timing.NEVER: 0.0}
TIMING_EXECUTION = {Timing.NOW: 0.1, Timing.SOON: 0.0, Timing.LATER: -0.15, Timing.NEVER: -1.0}

STAGE_SUCCESS = {"Pre-seed": -0.08, "Seed": -0.04, "Series A": 0.0, "Series B": 0.03, "Series C": 0.05}
STAGE_EXECUTION = {"Pre-seed": -0.05, "Seed": -0.02, "Series A": 0.0, "Series B": 0.04, "Series C": 0.06}
STAGE_TIME_SCALE = {"Pre-seed": 0.7, "Seed": 0.8, "Series A": 1.0, "Series B": 1.1, "Series C": 1.2}
STAGE_OVERHEAD = {"Pre-seed": -5, "Seed": -2, "Series A": 0, "Series B": 3, "Series C": 5}

SOURCE_DEFAULT_EFFORT = {SourceType.FOLLOWUP: 0.5, SourceType.INTRODUCTION: 1.0}
PROBLEM_SOURCES = (SourceType.ISSUE, SourceType.PREISSUE)
ABSORBED_EXECUTION = (SourceType.ISSUE, SourceType.PREISSUE, SourceType.GOAL)


SEVERITY_DAMAGE = {3: 1.0, 2: 0.7, 1: 0.4, 0: 0.15}
DAMAGE_BLEND = 0.4


@dataclass(slots=True)
class GoalDamage:
    """How much one issue or pre-issue hurts one goal's chance of completion."""

    problem_id: str
    goal_id: str
    goal_type: str
    damage: float
    severity_multiplier: float
    goal_weight: float
    proximity: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _proximity(days_left: float | None) -> float:
    if days_left is None:
        return 0.5
    days_left = max(0.0, float(days_left))
    if days_left < 30:
        return 1.0
    if days_left < 90:
        return 0.8
    if days_left < 180:
        return 0.5
    return 0.3


def compute_goal_damage(
    problems: Iterable[Issue | PreIssue],
    goals: Iterable[Mapping[str, Any]],
    trajectories: Mapping[str, GoalTrajectory] | None = None,
) -> list[GoalDamage]:
    """damage = severity multiplier x goal weight x deadline proximity, per (problem, goal)."""
    goals = [g for g in goals if str(g.get("status") or "active") not in INACTIVE_GOAL_STATUSES]
    trajectories = trajectories or {}
    damages: list[GoalDamage] = []
    for problem in problems:
        if isinstance(problem, Issue):
            problem_id, kind = problem.issue_id, problem.issue_type
        else:
            problem_id, kind = problem.preissue_id, problem.preissue_type
        if problem.entity_ref.type == "goal":
            targets = [g for g in goals if str(g.get("id")) == problem.entity_ref.id]
        else:
            types = SOURCE_AFFECTS_GOALS.get(kind)
            if not types:
                continue
            targets = [g for g in goals if g.get("type") in types]
        multiplier = SEVERITY_DAMAGE.get(problem.severity.tier, 0.2)
        for goal in targets:
            goal_id = str(goal.get("id"))
            traj = trajectories.get(goal_id)
            proximity = _proximity(traj.days_left if traj is not None else None)
            weight = _num(goal.get("weight") or goal.get("priority"), 50.0) / 100.0
            damages.append(
                GoalDamage(
                    problem_id=problem_id,
                    goal_id=goal_id,
                    goal_type=str(goal.get("type") or ""),
                    damage=round(multiplier * weight * proximity, 3),
                    severity_multiplier=multiplier,
                    goal_weight=round(weight, 2),
                    proximity=proximity,
                )
            )
    damages.sort(key=lambda d: (-d.damage, d.problem_id, d.goal_id))
    return damages


@dataclass(slots=True)
class ImpactSignals:
    stake: float = 500_000.0
    probability: float = 0.5
    tti_days: float = 14.0
    severity: int = 1
    irreversibility: float = 0.5


@dataclass(slots=True)
class ImpactContext:
    company: Mapping[str, Any] = field(default_factory=dict)
    goals: list[Mapping[str, Any]] = field(default_factory=list)
    deals: list[Mapping[str, Any]] = field(default_factory=list)
    rounds: list[Mapping[str, Any]] = field(default_factory=list)
    issues: dict[str, Issue] = field(default_factory=dict)
    preissues: dict[str, PreIssue] = field(default_factory=dict)
    trajectories: dict[str, GoalTrajectory] = field(default_factory=dict)
    ripple_score: float = 0.0
    originals: dict[str, Action] = field(default_factory=dict)
    goal_damage: list[GoalDamage] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        company: Mapping[str, Any] | None = None,
        goals: Iterable[Mapping[str, Any]] = (),
        deals: Iterable[Mapping[str, Any]] = (),
        rounds: Iterable[Mapping[str, Any]] = (),
        issues: Iterable[Issue] = (),
        preissues: Iterable[PreIssue] = (),
        trajectories: Iterable[GoalTrajectory] = (),
        ripple_score: float = 0.0,
        originals: Mapping[str, Action] | None = None,
    ) -> "ImpactContext":
        goals = list(goals)
        issues = list(issues)
        preissues = list(preissues)
        by_goal = {t.goal_id: t for t in trajectories}
        return cls(
            company=dict(company or {}),
            goals=goals,
            deals=list(deals),
            rounds=list(rounds),
            issues={i.issue_id: i for i in issues},
            preissues={p.preissue_id: p for p in preissues},
            trajectories=by_goal,
            ripple_score=float(ripple_score),
            originals=dict(originals or {}),
            goal_damage=compute_goal_damage([*issues, *preissues], goals, by_goal),
        )

    @property
    def stage(self) -> str:
        return str(self.company.get("stage") or "")

    def goal(self, goal_id: str | None) -> Mapping[str, Any] | None:
        if not goal_id:
            return None
        return next((g for g in self.goals if str(g.get("id")) == str(goal_id)), None)

    def by_id(self, records: list[Mapping[str, Any]], record_id: str | None) -> Mapping[str, Any] | None:
        if not record_id:
            return None
        return next((r for r in records if str(r.get("id")) == str(record_id)), None)


def _clip(value: float, low: float, high: float) -> float:
    return float(np.clip(value, low, high))


def _num(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def _or(value: Any, default: float) -> float:
    out = _num(value, 0.0)
    return out if out else default


def _goal_gap(goal: Mapping[str, Any]) -> float:
    target = _num(goal.get("target"), 100.0)
    if target <= 0:
        return 0.5
    return max(0.0, target - _num(goal.get("current"))) / target


def _stake_k(stake: float) -> str:
    if stake >= 1_000_000:
        return f"${stake / 1_000_000:.1f}M"
    return f"${round(stake / 1000)}K"


def _goal_stake(goal: Mapping[str, Any], ctx: ImpactContext, fundraise_from_round: bool) -> float:
    gap = max(0.0, _num(goal.get("target")) - _num(goal.get("current")))
    goal_type = goal.get("type")
    if goal_type == "fundraise" and fundraise_from_round:
        rnd = active_round(ctx.rounds)
        return _or(rnd.get("target_amount") if rnd else None, _or(goal.get("target"), 2_000_000.0))
    if goal_type in ("revenue", "fundraise"):
        return gap
    if goal_type == "hiring":
        return gap * 50_000.0
    return _or(ctx.company.get("burn"), 100_000.0) * 3.0


def issue_stake(issue: Issue, ctx: ImpactContext) -> float:
    company = ctx.company
    kind = issue.issue_type
    ref_id = issue.entity_ref.id
    if kind in ("RUNWAY_CRITICAL", "RUNWAY_WARNING"):
        return max(0.0, _num(company.get("cash"))) + _or(company.get("burn"), 100_000.0) * 6.0
    if kind in ("GOAL_BEHIND", "GOAL_STALLED", "GOAL_MISSED"):
        goal = ctx.goal(ref_id) if issue.entity_ref.type == "goal" else None
        if goal is not None:
            return _goal_stake(goal, ctx, fundraise_from_round=False)
        return _or(company.get("arr"), 1_000_000.0) * 0.2
    if kind == "DEAL_STALE":
        deal = ctx.by_id(ctx.deals, ref_id)
        return _or(deal.get("amount") if deal else issue.evidence.get("amount"), 1_000_000.0)
    if kind in ("PIPELINE_GAP", "NO_PIPELINE"):
        rnd = ctx.by_id(ctx.rounds, ref_id)
        return _or(rnd.get("target_amount") if rnd else None, 2_000_000.0)
    if kind in ("NO_GOALS", "DATA_MISSING", "DATA_STALE"):
        return _or(company.get("arr"), 500_000.0) * 0.1
    return _or(company.get("arr"), 1_000_000.0) * 0.15


def preissue_stake(pre: PreIssue, ctx: ImpactContext) -> float:
    if pre.evidence.get("stake") is not None:
        return _num(pre.evidence.get("stake"), 500_000.0)
    kind = pre.preissue_type
    ref_id = pre.entity_ref.id
    if kind in ("RUNWAY_BREACH", "RUNWAY_COMPRESSION"):
        return _or(ctx.company.get("burn"), 100_000.0) * 3.0
    if kind in ("GOAL_MISS", "GOAL_FEASIBILITY"):
        goal = ctx.goal(ref_id)
        if goal is not None:
            return _goal_stake(goal, ctx, fundraise_from_round=True)
        return _or(ctx.company.get("arr"), 500_000.0) * 0.15
    if kind == "DEAL_STALL":
        deal = ctx.by_id(ctx.deals, ref_id)
        return _or(deal.get("amount") if deal else None, 500_000.0)
    if kind in ("ROUND_STALL", "LEAD_VACANCY", "TIMING_WINDOW"):
        rnd = ctx.by_id(ctx.rounds, ref_id)
        return _or(rnd.get("target_amount") if rnd else None, 2_000_000.0)
    return 500_000.0


ISSUE_SIGNAL_TABLE = {3: (0.9, 3.0, 0.8), 2: (0.75, 7.0, 0.6), 1: (0.6, 14.0, 0.4), 0: (0.5, 14.0, 0.4)}


def extract_signals(action: Action, ctx: ImpactContext) -> ImpactSignals:
    src = action.primary_source
    if src is None:
        return ImpactSignals()
    if src.source_type == SourceType.ISSUE:
        issue = ctx.issues.get(src.ref_id or "")
        if issue is None:
            return ImpactSignals()
        severity = issue.severity.tier
        probability, tti, irr = ISSUE_SIGNAL_TABLE[severity]
        return ImpactSignals(issue_stake(issue, ctx), probability, tti, severity, irr)
    if src.source_type == SourceType.PREISSUE:
        pre = ctx.preissues.get(src.ref_id or "")
        if pre is None:
            return ImpactSignals()
        return ImpactSignals(
            preissue_stake(pre, ctx),
            pre.probability or 0.5,
            pre.time_to_breach_days or 30.0,
            pre.severity.tier,
            pre.irreversibility,
        )
    return ImpactSignals()


def goal_weight(goal: Mapping[str, Any], stage: str) -> float:
    if goal.get("priority"):
        return _num(goal.get("priority"), 50.0)
    goal_type = str(goal.get("type") or "")
    base = GOAL_TYPE_WEIGHTS.get(goal_type, 50)
    modifier = STAGE_MODIFIERS.get(stage, {}).get(goal_type)
    if modifier is None:
        modifier = stage_goal_modifier(stage or None, goal_type)
    return float(round(base * modifier))


def affected_goals(action: Action, ctx: ImpactContext) -> list[dict[str, Any]]:
    goal = ctx.goal(action.goal_id)
    if goal is not None:
        return [dict(goal)]
    src = action.primary_source
    if src is None:
        return []
    kind = src.detail.get("issue_type") or src.detail.get("preissue_type")
    types = SOURCE_AFFECTS_GOALS.get(str(kind), ())
    if not types:
        return []
    matched = [
        dict(g)
        for g in ctx.goals
        if g.get("type") in types and str(g.get("status") or "active") not in INACTIVE_GOAL_STATUSES
    ]
    if matched or not ctx.company:
        return matched
    if ctx.stage in EARLY_STAGES and "fundraise" in types:
        return [{"id": "implicit-fundraise", "type": "fundraise", "name": "Fundraise", "implicit": True}]
    if "operational" in types:
        return [{"id": "implicit-operational", "type": "operational", "name": "Operations", "implicit": True}]
    return []


def probability_lift(action: Action, ctx: ImpactContext, signals: ImpactSignals) -> float:
    src_type = action.source_type
    if src_type in PROBLEM_SOURCES:
        normalized = min(0.40, 0.08 * math.log10(1.0 + signals.stake / 50_000.0))
        lift = normalized * (0.3 + signals.probability * 0.7)
        if signals.severity >= 2:
            lift *= 1.15
        if signals.tti_days <= 7:
            lift *= 1.1
        return _clip(lift, 0.05, 0.40)
    if src_type == SourceType.GOAL:
        goal = ctx.goal(action.goal_id)
        resolution = get_resolution(action.resolution_id)
        effectiveness = resolution.effectiveness if resolution else 0.5
        if goal is not None:
            return _clip(_goal_gap(goal) * effectiveness * 0.4, 0.08, 0.35)
        traj = ctx.trajectories.get(action.goal_id or "")
        return (1.0 - (traj.probability_of_hit if traj else 0.5)) * 0.25
    if src_type == SourceType.INTRODUCTION:
        return 0.10
    return 0.05


def goal_impacts(action: Action, ctx: ImpactContext, signals: ImpactSignals) -> list[GoalImpact]:
    lift = probability_lift(action, ctx, signals)
    out = []
    for goal in affected_goals(action, ctx):
        weight = goal_weight(goal, ctx.stage)
        out.append(
            GoalImpact(
                goal_id=str(goal.get("id")),
                goal_type=str(goal.get("type") or ""),
                goal_name=str(goal.get("name") or goal.get("type") or ""),
                weight=weight,
                delta_probability=round(lift, 4),
                contribution=round(weight * lift, 2),
                implicit=bool(goal.get("implicit")),
            )
        )
    out.sort(key=lambda g: (-g.contribution, g.goal_id))
    return out


def _banded(value: float, severity: int, floors: tuple[int, ...], ceilings: tuple[int, ...]) -> float:
    tier = max(0, min(3, int(severity)))
    return float(min(ceilings[tier], max(floors[tier], round(value))))


def goal_damage_upside(action: Action, ctx: ImpactContext) -> float | None:
    """Upside from repairing the goal damage of the action's source problem.

    Sum of goal weight x resolution effectiveness x damage, on a 0-100 scale.
    None when the source problem damages no goal.
    """
    src = action.primary_source
    if src is None or src.source_type not in PROBLEM_SOURCES or not src.ref_id:
        return None
    relevant = [d for d in ctx.goal_damage if d.problem_id == src.ref_id]
    if not relevant:
        return None
    resolution = get_resolution(action.resolution_id)
    effectiveness = resolution.effectiveness if resolution else 0.5
    total = sum(d.goal_weight * effectiveness * d.damage for d in relevant)
    return float(min(100, round(total * 100)))


def derive_upside(action: Action, ctx: ImpactContext, signals: ImpactSignals, impacts: list[GoalImpact]) -> tuple[float, list[str]]:
    src = action.primary_source
    src_type = action.source_type
    if src_type in PROBLEM_SOURCES:
        normalized = min(85.0, 20.0 + 18.0 * math.log10(1.0 + signals.stake / 50_000.0))
        raw_value = normalized * (0.5 + signals.probability * 0.5)
        if src_type == SourceType.ISSUE:
            floors, ceilings = ISSUE_FLOORS, ISSUE_CEILINGS
        else:
            floors, ceilings = PREISSUE_FLOORS, PREISSUE_CEILINGS
        value = _banded(raw_value, signals.severity, floors, ceilings)
        damage_upside = goal_damage_upside(action, ctx)
        if damage_upside:
            value = _banded(value * (1 - DAMAGE_BLEND) + damage_upside * DAMAGE_BLEND, signals.severity, floors, ceilings)
        kind = src.detail.get("issue_type") or src.detail.get("preissue_type") or src_type.value
        explain = [f"{kind} ({_stake_k(signals.stake)} at stake, P={round(signals.probability * 100)}%)"]
        if impacts:
            names = ", ".join(g.goal_name for g in impacts)
            explain.append(f"Affects {len(impacts)} goal{'s' if len(impacts) > 1 else ''}: {names}")
        return value, explain

    if src_type == SourceType.GOAL:
        resolution = get_resolution(action.resolution_id)
        effectiveness = resolution.effectiveness if resolution else 0.5
        goal = ctx.goal(action.goal_id)
        if goal is None:
            return float(round(30 + effectiveness * 20)), ["Goal-driven action"]
        weight = goal_weight(goal, ctx.stage)
        gap = _goal_gap(goal)
        severity = 2 if gap > 0.5 else 1 if gap > 0.2 else 0
        value = _banded(weight * gap * effectiveness, severity, GOAL_FLOORS, GOAL_CEILINGS)
        return value, [
            f'Goal "{goal.get("name") or goal.get("id")}" (gap: {round(gap * 100)}%, weight: {weight:.0f}, '
            f"effectiveness: {round(effectiveness * 100)}%)"
        ]

    if src_type == SourceType.OPPORTUNITY:
        klass = str(src.detail.get("opportunity_class") or "")
        base = OPPORTUNITY_BASE.get(klass, 30.0)
        label = klass.replace("_", " ") or "opportunity"
    elif src_type == SourceType.INTRODUCTION:
        base = INTRODUCTION_BASE
        label = "introduction"
    elif src_type == SourceType.FOLLOWUP:
        original = ctx.originals.get(str(src.detail.get("original_action_id") or ""))
        carried = src.detail.get("original_upside")
        if original is not None and original.impact is not None:
            carried = original.impact.upside_magnitude
        base = FOLLOWUP_CARRY * float(carried) if carried else FOLLOWUP_BASE
        label = "follow-up"
    else:
        return 10.0, ["Unclassified action"]
    multiplier = TIMING_UPSIDE.get(action.timing or Timing.SOON, 1.0)
    value = _clip(round(base * multiplier), 10.0, 100.0)
    timing = (action.timing or Timing.SOON).value
    return value, [f"{label.capitalize()} base {base:.0f} x timing {timing} ({multiplier:.1f})"]


def _effort_days(action: Action) -> float:
    resolution = get_resolution(action.resolution_id)
    if resolution is not None:
        return resolution.effort_days
    return SOURCE_DEFAULT_EFFORT.get(action.source_type, 7.0)


def derive_probability_of_success(action: Action, ctx: ImpactContext, signals: ImpactSignals) -> tuple[float, str | None]:
    resolution = get_resolution(action.resolution_id)
    value = resolution.effectiveness if resolution else 0.6
    explain = None
    src = action.primary_source
    if action.source_type in PROBLEM_SOURCES:
        value = value * (0.7 + 0.3 * signals.probability)
        if signals.tti_days <= 7:
            value += 0.1
        elif signals.tti_days <= 14:
            value += 0.05
        explain = f"Confidence {value * 100:.0f}% (clarity P={round(signals.probability * 100)}%)"
    elif action.source_type == SourceType.INTRODUCTION and src is not None and src.detail.get("probability") is not None:
        value = _num(src.detail.get("probability"), value)
        explain = f"Intro path success {value * 100:.0f}%"
    elif action.source_type == SourceType.FOLLOWUP:
        value = 0.25
    value += STAGE_SUCCESS.get(ctx.stage, 0.0)
    return _clip(round(value, 2), 0.25, 0.90), explain


def derive_execution_probability(action: Action, ctx: ImpactContext) -> float:
    if action.source_type in ABSORBED_EXECUTION:
        return 1.0
    effort = _effort_days(action)
    if effort <= 1:
        value = 0.75
    elif effort <= 3:
        value = 0.65
    elif effort <= 7:
        value = 0.55
    elif effort <= 14:
        value = 0.45
    else:
        value = 0.35
    steps = len(action.steps) or 4
    if steps <= 2:
        value += 0.05
    elif steps >= 5:
        value -= 0.03
    value += STAGE_EXECUTION.get(ctx.stage, 0.0)
    if action.entity_ref.type == "relationship":
        value -= 0.05
    elif action.entity_ref.type == "firm":
        value -= 0.03
    value += TIMING_EXECUTION.get(action.timing, 0.0) if action.timing else 0.0
    return _clip(round(value, 2), 0.1, 0.9)


def derive_downside(action: Action, signals: ImpactSignals) -> float:
    if action.source_type in PROBLEM_SOURCES:
        return _clip(round(5 + signals.irreversibility * 15), 2.0, 40.0)
    value = 5.0
    effort = _effort_days(action)
    if effort >= 21:
        value += 5
    elif effort >= 14:
        value += 3
    if action.entity_ref.type == "company":
        value += 2
    elif action.entity_ref.type == "relationship":
        value -= 2
    return _clip(value, 2.0, 40.0)


def derive_time_to_impact(action: Action, ctx: ImpactContext, signals: ImpactSignals) -> float:
    if action.source_type in PROBLEM_SOURCES:
        value = _clip(round(signals.tti_days * 0.5), 1.0, 60.0)
    else:
        value = _clip(round(_effort_days(action) * 1.5), 1.0, 60.0)
    value = round(value * STAGE_TIME_SCALE.get(ctx.stage, 1.0))
    return _clip(value, 1.0, 60.0)


def derive_effort_cost(action: Action, ctx: ImpactContext, signals: ImpactSignals) -> float:
    effort = _effort_days(action)
    value = round(10 + min(effort, 30.0) * 2)
    steps = len(action.steps) or 4
    if steps <= 2:
        value -= 5
    elif steps == 3:
        value -= 2
    elif steps >= 7:
        value += 8
    elif steps >= 5:
        value += 3
    value += STAGE_OVERHEAD.get(ctx.stage, 0)
    ref_type = action.entity_ref.type
    if ref_type == "round":
        value += 5
    elif ref_type == "deal":
        value += 3
    elif ref_type == "relationship":
        value -= 3
    if action.source_type in PROBLEM_SOURCES:
        if signals.irreversibility >= 0.8:
            value += 5
        if signals.severity >= 3:
            value += 8
        elif signals.severity >= 2:
            value += 3
    return _clip(value, 5.0, 85.0)


def derive_leverage(action: Action, ctx: ImpactContext, signals: ImpactSignals, impacts: list[GoalImpact]) -> tuple[float, str]:
    value = 10.0
    explain = "Limited second-order effects"
    src = action.primary_source
    if action.source_type in PROBLEM_SOURCES:
        value = float(round(min(65.0, 15.0 + 15.0 * math.log10(1.0 + signals.stake / 50_000.0))))
        explain = f"{_stake_k(signals.stake)} at risk"
        if ctx.ripple_score > 0:
            ripple_value = float(round(10 + ctx.ripple_score * 70))
            if ripple_value > value:
                value = ripple_value
                explain = f"Ripple score {ctx.ripple_score:.2f} - downstream effects"
        kind = src.detail.get("issue_type") or src.detail.get("preissue_type")
        if kind in ("RUNWAY_CRITICAL", "RUNWAY_WARNING"):
            value = max(value, 60.0)
            explain = "Runway underpins all operations"
        elif kind in ("NO_PIPELINE", "PIPELINE_GAP"):
            value = max(value, 45.0)
            explain = "Pipeline feeds fundraise goal"
    if len(impacts) > 1:
        fan_out = 25.0 + len(impacts) * 8
        if fan_out > value:
            value = fan_out
            explain = f"Affects {len(impacts)} goals simultaneously"
    return _clip(value, 5.0, 80.0), explain


def proactivity_bonus(action: Action, signals: ImpactSignals) -> float:
    if action.source_type not in PROBLEM_SOURCES:
        return 0.0
    return round(signals.probability * min(15.0, 5.0 * math.log2(1.0 + signals.tti_days / 7.0)), 4)


def build_impact(action: Action, ctx: ImpactContext) -> ImpactModel:
    signals = extract_signals(action, ctx)
    impacts = goal_impacts(action, ctx, signals)
    upside, upside_explain = derive_upside(action, ctx, signals, impacts)
    p_success, p_explain = derive_probability_of_success(action, ctx, signals)
    leverage, leverage_explain = derive_leverage(action, ctx, signals, impacts)
    bonus = proactivity_bonus(action, signals)

    explain = list(upside_explain)
    if p_explain:
        explain.append(p_explain)
    if leverage > 25:
        explain.append(leverage_explain)
    if bonus > 3:
        explain.append(f"Proactivity bonus +{bonus:.1f}")

    return ImpactModel(
        upside_magnitude=upside,
        probability_of_success=p_success,
        execution_probability=derive_execution_probability(action, ctx),
        downside_magnitude=derive_downside(action, signals),
        time_to_impact_days=derive_time_to_impact(action, ctx, signals),
        effort_cost=derive_effort_cost(action, ctx, signals),
        second_order_leverage=leverage,
        proactivity_bonus=bonus,
        explain=explain[:4],
        goal_impacts=impacts,
    )


def attach_impacts(actions: Iterable[Action], ctx: ImpactContext) -> list[Action]:
    out = []
    for action in actions:
        action.impact = build_impact(action, ctx)
        out.append(action)
    return out


def validate_impact(impact: ImpactModel) -> list[str]:
    problems: list[str] = []
    bounds = {
        "upside_magnitude": (10.0, 100.0),
        "probability_of_success": (0.25, 0.90),
        "execution_probability": (0.1, 1.0),
        "downside_magnitude": (2.0, 40.0),
        "time_to_impact_days": (1.0, 60.0),
        "effort_cost": (5.0, 85.0),
        "second_order_leverage": (5.0, 80.0),
    }
    for name, (low, high) in bounds.items():
        value = getattr(impact, name)
        if not math.isfinite(value) or value < low or value > high:
            problems.append(f"{name}={value} outside [{low}, {high}]")
    if len(impact.explain) > 4:
        problems.append("explain has more than 4 entries")
    return problems
