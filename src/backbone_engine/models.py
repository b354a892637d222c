from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class SourceType(str, Enum):
    ISSUE = "ISSUE"
    PREISSUE = "PREISSUE"
    GOAL = "GOAL"
    OPPORTUNITY = "OPPORTUNITY"
    INTRODUCTION = "INTRODUCTION"
    FOLLOWUP = "FOLLOWUP"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def tier(self) -> int:
        return SEVERITY_TIERS[self.value]


SEVERITY_TIERS = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class HealthBand(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class Timing(str, Enum):
    NOW = "NOW"
    SOON = "SOON"
    LATER = "LATER"
    NEVER = "NEVER"


class EventType(str, Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    OUTCOME_RECORDED = "outcome_recorded"
    FOLLOWUP_CREATED = "followup_created"
    NOTE_ADDED = "note_added"


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    ABANDONED = "abandoned"


class OpportunityClass(str, Enum):
    RELATIONSHIP_LEVERAGE = "relationship_leverage"
    TIMING_WINDOW = "timing_window"
    CROSS_ENTITY_SYNERGY = "cross_entity_synergy"
    GOAL_ACCELERATION = "goal_acceleration"
    OPTIONALITY_BUILDER = "optionality_builder"


class TrajectoryStatus(str, Enum):
    ACHIEVED = "achieved"
    ON_TRACK = "on_track"
    BEHIND = "behind"
    STALLED = "stalled"
    MISSED = "missed"
    INSUFFICIENT_HISTORY = "insufficient_history"


@dataclass(slots=True)
class EntityRef:
    type: str
    id: str
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name}


@dataclass(slots=True)
class RunwayEstimate:
    company_id: str
    months: float | None
    confidence: float
    reason: str = "ok"
    low_confidence: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class GoalTrajectory:
    goal_id: str
    company_id: str
    goal_type: str
    goal_name: str
    current: float
    target: float
    due: str | None
    days_left: int | None
    required_slope: float | None
    velocity: float | None
    probability_of_hit: float
    on_track: bool | None
    status: TrajectoryStatus
    projected_date: str | None = None
    confidence: float = 0.5
    history_points: int = 0

    @property
    def gap_ratio(self) -> float:
        if self.target <= 0:
            return 0.5
        return max(0.0, self.target - self.current) / self.target

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["gap_ratio"] = self.gap_ratio
        return data


@dataclass(slots=True)
class MetricSnapshot:
    company_id: str
    latest: dict[str, float] = field(default_factory=dict)
    staleness_days: dict[str, float] = field(default_factory=dict)
    velocity_per_day: dict[str, float] = field(default_factory=dict)
    points: dict[str, int] = field(default_factory=dict)
    core_keys: list[str] = field(default_factory=list)
    missing_core: list[str] = field(default_factory=list)
    stale_core: list[str] = field(default_factory=list)

    @property
    def blindspot_ratio(self) -> float:
        if not self.core_keys:
            return 0.0
        return (len(self.missing_core) + len(self.stale_core)) / len(self.core_keys)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["blindspot_ratio"] = self.blindspot_ratio
        return data


@dataclass(slots=True)
class HealthState:
    company_id: str
    band: HealthBand
    score: float
    confidence: float
    signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["band"] = self.band.value
        return data


@dataclass(slots=True)
class Issue:
    issue_id: str
    issue_type: str
    severity: Severity
    company_id: str
    entity_ref: EntityRef
    title: str
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "issue_type": self.issue_type,
            "severity": self.severity.value,
            "company_id": self.company_id,
            "entity_ref": self.entity_ref.to_dict(),
            "title": self.title,
            "evidence": dict(self.evidence),
        }


@dataclass(slots=True)
class EscalationWindow:
    time_to_breach_days: float
    buffer_days: float
    delta_days: float
    is_imminent: bool
    escalation_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def delay_multiplier(days_until_escalation: float) -> float:
    d = float(days_until_escalation)
    if d > 30:
        return 1.0
    if d > 14:
        return 1.0 + (30.0 - d) / 32.0
    if d > 7:
        return 1.5 + (14.0 - d) / 7.0
    if d > 0:
        return 2.5 + (7.0 - d) / 2.8
    return 5.0 + abs(d) / 2.0


@dataclass(slots=True)
class CostOfDelayCurve:
    preissue_type: str
    type_multiplier: float
    days_until_escalation: float

    def multiplier_at(self, horizon_days: float) -> float:
        remaining = self.days_until_escalation - float(horizon_days)
        return round(delay_multiplier(remaining) * self.type_multiplier, 4)

    @property
    def today(self) -> float:
        return self.multiplier_at(0)

    @property
    def at_escalation(self) -> float:
        return self.multiplier_at(self.days_until_escalation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "preissue_type": self.preissue_type,
            "type_multiplier": self.type_multiplier,
            "days_until_escalation": self.days_until_escalation,
            "today": self.today,
            "in_7_days": self.multiplier_at(7),
            "in_14_days": self.multiplier_at(14),
            "at_escalation": self.at_escalation,
        }


@dataclass(slots=True)
class PreIssue:
    preissue_id: str
    preissue_type: str
    heuristic: str
    company_id: str | None
    entity_ref: EntityRef
    title: str
    probability: float
    time_to_breach_days: float
    severity: Severity
    escalation: EscalationWindow
    cost_of_delay: CostOfDelayCurve
    irreversibility: float
    impact_magnitude: float
    expected_future_cost: float
    evidence: dict[str, Any] = field(default_factory=dict)
    preventative_actions: list[str] = field(default_factory=list)

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (f"{self.entity_ref.type}:{self.entity_ref.id}", self.heuristic)

    def to_dict(self) -> dict[str, Any]:
        return {
            "preissue_id": self.preissue_id,
            "preissue_type": self.preissue_type,
            "heuristic": self.heuristic,
            "company_id": self.company_id,
            "entity_ref": self.entity_ref.to_dict(),
            "title": self.title,
            "probability": self.probability,
            "time_to_breach_days": self.time_to_breach_days,
            "severity": self.severity.value,
            "escalation": self.escalation.to_dict(),
            "cost_of_delay": self.cost_of_delay.to_dict(),
            "irreversibility": self.irreversibility,
            "impact_magnitude": self.impact_magnitude,
            "expected_future_cost": self.expected_future_cost,
            "evidence": dict(self.evidence),
            "preventative_actions": list(self.preventative_actions),
        }


@dataclass(slots=True)
class Source:
    source_type: SourceType
    ref_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"source_type": self.source_type.value, "ref_id": self.ref_id, "detail": dict(self.detail)}


@dataclass(slots=True)
class GoalImpact:
    goal_id: str
    goal_type: str
    goal_name: str
    weight: float
    delta_probability: float
    contribution: float
    implicit: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ImpactModel:
    upside_magnitude: float
    probability_of_success: float
    execution_probability: float
    downside_magnitude: float
    time_to_impact_days: float
    effort_cost: float
    second_order_leverage: float
    proactivity_bonus: float = 0.0
    explain: list[str] = field(default_factory=list)
    goal_impacts: list[GoalImpact] = field(default_factory=list)

    @property
    def combined_probability(self) -> float:
        return self.execution_probability * self.probability_of_success

    def to_dict(self) -> dict[str, Any]:
        return {
            "upside_magnitude": float(self.upside_magnitude),
            "probability_of_success": float(self.probability_of_success),
            "execution_probability": float(self.execution_probability),
            "downside_magnitude": float(self.downside_magnitude),
            "time_to_impact_days": float(self.time_to_impact_days),
            "effort_cost": float(self.effort_cost),
            "second_order_leverage": float(self.second_order_leverage),
            "proactivity_bonus": float(self.proactivity_bonus),
            "explain": list(self.explain),
            "goal_impacts": [g.to_dict() for g in self.goal_impacts],
        }


@dataclass(slots=True)
class Action:
    action_id: str
    title: str
    company_id: str
    entity_ref: EntityRef
    sources: list[Source]
    steps: list[str] = field(default_factory=list)
    resolution_id: str | None = None
    action_type: str | None = None
    goal_id: str | None = None
    timing: Timing | None = None
    complexity: float = 0.0
    future_unlocks: list[dict[str, Any]] = field(default_factory=list)
    act_now_rationale: str | None = None
    followup_for: dict[str, str] | None = None
    impact: ImpactModel | None = None
    created_at: str | None = None

    @property
    def primary_source(self) -> Source | None:
        return self.sources[0] if self.sources else None

    @property
    def source_type(self) -> SourceType | None:
        src = self.primary_source
        return src.source_type if src else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "title": self.title,
            "company_id": self.company_id,
            "entity_ref": self.entity_ref.to_dict(),
            "sources": [s.to_dict() for s in self.sources],
            "steps": list(self.steps),
            "resolution_id": self.resolution_id,
            "action_type": self.action_type,
            "goal_id": self.goal_id,
            "timing": self.timing.value if self.timing else None,
            "complexity": self.complexity,
            "future_unlocks": [dict(x) for x in self.future_unlocks],
            "act_now_rationale": self.act_now_rationale,
            "followup_for": dict(self.followup_for) if self.followup_for else None,
            "impact": self.impact.to_dict() if self.impact else None,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class RankComponents:
    expected_net_impact: float
    trust_penalty: float
    execution_friction_penalty: float
    time_criticality_boost: float
    source_type_boost: float
    pattern_lift: float

    @property
    def total(self) -> float:
        return (
            self.expected_net_impact
            - self.trust_penalty
            - self.execution_friction_penalty
            + self.time_criticality_boost
            + self.source_type_boost
            + self.pattern_lift
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total"] = self.total
        return data


@dataclass(slots=True)
class RankedAction:
    action: Action
    rank_score: float
    components: RankComponents
    rank: int = 0

    @property
    def action_id(self) -> str:
        return self.action.action_id

    def to_dict(self) -> dict[str, Any]:
        data = self.action.to_dict()
        data["rank_score"] = float(self.rank_score)
        data["rank_components"] = self.components.to_dict()
        data["rank"] = int(self.rank)
        return data


@dataclass(slots=True)
class LiftEstimate:
    action_type: str
    lift: float
    observations: int
    average_signal: float
    confidence: float
    cold_start: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class GateCheck:
    name: str
    passed: bool
    diagnostics: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CompanyResult:
    company_id: str
    company_name: str
    runway: RunwayEstimate | None = None
    metrics: MetricSnapshot | None = None
    trajectories: list[GoalTrajectory] = field(default_factory=list)
    health: HealthState | None = None
    issues: list[Issue] = field(default_factory=list)
    preissues: list[PreIssue] = field(default_factory=list)
    ripple: dict[str, Any] = field(default_factory=dict)
    actions: list[Action] = field(default_factory=list)
    ranked: list[RankedAction] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "company_name": self.company_name,
            "runway": self.runway.to_dict() if self.runway else None,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "trajectories": [t.to_dict() for t in self.trajectories],
            "health": self.health.to_dict() if self.health else None,
            "issues": [i.to_dict() for i in self.issues],
            "preissues": [p.to_dict() for p in self.preissues],
            "ripple": dict(self.ripple),
            "actions": [a.to_dict() for a in self.actions],
            "ranked": [r.to_dict() for r in self.ranked],
            "execution_order": list(self.execution_order),
        }


@dataclass(slots=True)
class RunResult:
    per_company: dict[str, CompanyResult]
    ranked_actions: list[RankedAction]
    trace: list[RankedAction]
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "per_company": {k: v.to_dict() for k, v in sorted(self.per_company.items())},
            "ranked_actions": [r.to_dict() for r in self.ranked_actions],
            "trace": [r.to_dict() for r in self.trace],
            "meta": dict(self.meta),
        }
