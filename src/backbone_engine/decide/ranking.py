from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
import math
from typing import Any

from backbone_engine.decide.weights import RankingWeights
from backbone_engine.derive.pattern_lift import PatternLiftConfig, compute_all_pattern_lifts
from backbone_engine.models import Action, ImpactModel, RankComponents, RankedAction


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RankingContext:
    trust_risk_by_action: dict[str, float] = field(default_factory=dict)
    deadline_by_action: dict[str, float] = field(default_factory=dict)
    events: list[Mapping[str, Any]] = field(default_factory=list)
    now: Any = None
    weights: RankingWeights = field(default_factory=RankingWeights)
    lift: PatternLiftConfig = field(default_factory=PatternLiftConfig)

    @classmethod
    def coerce(cls, context: "RankingContext | Mapping[str, Any] | None") -> "RankingContext":
        if isinstance(context, RankingContext):
            return context
        raw = dict(context or {})
        return cls(
            trust_risk_by_action=dict(raw.get("trust_risk_by_action") or {}),
            deadline_by_action=dict(raw.get("deadline_by_action") or {}),
            events=list(raw.get("events") or []),
            now=raw.get("now"),
            weights=raw.get("weights") or RankingWeights(),
            lift=raw.get("lift") or PatternLiftConfig(),
        )

    def without_events(self) -> "RankingContext":
        return RankingContext(
            trust_risk_by_action=dict(self.trust_risk_by_action),
            deadline_by_action=dict(self.deadline_by_action),
            events=[],
            now=self.now,
            weights=self.weights,
            lift=self.lift,
        )


def compute_expected_net_impact(impact: ImpactModel, weights: RankingWeights | None = None) -> float:
    weights = weights or RankingWeights()
    p = impact.combined_probability
    return (
        impact.upside_magnitude * p
        + impact.second_order_leverage
        - impact.downside_magnitude * (1.0 - p)
        - impact.effort_cost
        - weights.time_penalty(impact.time_to_impact_days)
    )


def compute_rank_score(
    action: Action, context: RankingContext | Mapping[str, Any] | None = None, pattern_lift: float = 0.0
) -> tuple[float, RankComponents]:
    ctx = RankingContext.coerce(context)
    w = ctx.weights
    if action.impact is None:
        raise ValueError(f"action {action.action_id} has no impact model")
    components = RankComponents(
        expected_net_impact=compute_expected_net_impact(action.impact, w),
        trust_penalty=w.trust_penalty(ctx.trust_risk_by_action.get(action.action_id)),
        execution_friction_penalty=w.execution_friction_penalty(action),
        time_criticality_boost=w.time_criticality_boost(ctx.deadline_by_action.get(action.action_id)),
        source_type_boost=w.source_boost(action.source_type),
        pattern_lift=float(pattern_lift),
    )
    return components.total, components


def order_key(item: RankedAction, epsilon: float) -> tuple[int, int, str]:
    """Total sort key: score bucket of width epsilon, descending, then action_id.

    Scores are snapped to a grid so "within epsilon" is an equivalence relation
    and the resulting order does not depend on input order.
    """
    if not math.isfinite(item.rank_score):
        return (1, 0, item.action_id)
    return (0, -round(item.rank_score / epsilon), item.action_id)


def score_actions(actions: Iterable[Action], context: RankingContext | Mapping[str, Any] | None = None) -> list[RankedAction]:
    ctx = RankingContext.coerce(context)
    actions = [a for a in actions if a.impact is not None]
    lifts: dict[str, float] = {}
    if ctx.events:
        lifts = compute_all_pattern_lifts(actions, ctx.events, ctx.now, ctx.lift)
    scored = []
    for action in actions:
        score, components = compute_rank_score(action, ctx, lifts.get(action.action_id, 0.0))
        scored.append(RankedAction(action=action, rank_score=score, components=components))
    eps = ctx.weights.tie_epsilon
    return sorted(scored, key=lambda item: order_key(item, eps))


def rank_actions_with_trace(
    actions: Iterable[Action], context: RankingContext | Mapping[str, Any] | None = None
) -> tuple[list[RankedAction], list[RankedAction]]:
    ctx = RankingContext.coerce(context)
    trace = score_actions(actions, ctx)
    per_bucket: dict[tuple[str, str], int] = defaultdict(int)
    published: list[RankedAction] = []
    for item in trace:
        if not math.isfinite(item.rank_score) or item.rank_score <= 0:
            continue
        src = item.action.source_type
        bucket = (item.action.company_id, src.value if src else "")
        if per_bucket[bucket] >= ctx.weights.per_company_source_cap:
            continue
        per_bucket[bucket] += 1
        item.rank = len(published) + 1
        published.append(item)
    logger.debug("ranked %d actions, published %d", len(trace), len(published))
    return published, trace


def rank_actions(actions: Iterable[Action], context: RankingContext | Mapping[str, Any] | None = None) -> list[RankedAction]:
    return rank_actions_with_trace(actions, context)[0]


def validate_ranking(ranked: list[RankedAction], epsilon: float = 1e-4) -> list[str]:
    problems: list[str] = []
    seen: set[str] = set()
    for i, item in enumerate(ranked):
        if not math.isfinite(item.rank_score):
            problems.append(f"{item.action_id}: non-finite rank_score")
        if item.action_id in seen:
            problems.append(f"{item.action_id}: duplicate action")
        seen.add(item.action_id)
        if item.rank and item.rank != i + 1:
            problems.append(f"{item.action_id}: rank {item.rank} at position {i + 1}")
        if i:
            prev = ranked[i - 1]
            key, prev_key = order_key(item, epsilon), order_key(prev, epsilon)
            if key >= prev_key:
                continue
            if key[:2] != prev_key[:2]:
                problems.append(f"{item.action_id}: scores out of order after {prev.action_id}")
            else:
                problems.append(f"{item.action_id}: tie not broken by action_id after {prev.action_id}")
    return problems


def verify_determinism(
    actions: Iterable[Action], context: RankingContext | Mapping[str, Any] | None = None, epsilon: float = 1e-4
) -> dict[str, Any]:
    actions = list(actions)
    first = rank_actions(actions, context)
    second = rank_actions(list(reversed(actions)), context)
    ids_a = [r.action_id for r in first]
    ids_b = [r.action_id for r in second]
    diffs = [
        a.action_id
        for a, b in zip(first, second)
        if a.action_id != b.action_id or abs(a.rank_score - b.rank_score) > epsilon
    ]
    return {"deterministic": ids_a == ids_b and not diffs, "count": len(ids_a), "diffs": diffs}
