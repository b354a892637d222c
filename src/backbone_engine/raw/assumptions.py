from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


STAGES = ("Pre-seed", "Seed", "Series A", "Series B", "Series C", "Series D")


def _frozen(table: dict) -> Mapping:
    return MappingProxyType({k: MappingProxyType(dict(v)) if isinstance(v, dict) else v for k, v in table.items()})


GOAL_WEIGHTS_BY_STAGE = _frozen(
    {
        "Pre-seed": {"fundraise": 1.2, "revenue": 0.7, "product": 1.0, "hiring": 0.8, "partnership": 0.6, "operational": 0.9},
        "Seed": {"fundraise": 1.1, "revenue": 0.9, "product": 0.9, "hiring": 0.9, "partnership": 0.7, "operational": 0.9},
        "Series A": {"fundraise": 1.0, "revenue": 1.0, "product": 1.0, "hiring": 1.0, "partnership": 0.9, "operational": 1.0},
        "Series B": {"fundraise": 0.8, "revenue": 1.1, "product": 1.0, "hiring": 1.0, "partnership": 1.0, "operational": 1.0},
        "Series C": {"fundraise": 0.7, "revenue": 1.2, "product": 0.9, "hiring": 1.0, "partnership": 1.1, "operational": 1.0},
        "Series D": {"fundraise": 0.6, "revenue": 1.2, "product": 0.8, "hiring": 0.9, "partnership": 1.1, "operational": 1.0},
    }
)


@dataclass(slots=True, frozen=True)
class RelationshipBands:
    strong: float = 70.0
    moderate: float = 40.0
    cold_threshold_days: float = 180.0
    decay_half_life_days: float = 90.0

    def band(self, strength: float | None) -> str:
        s = 50.0 if strength is None else float(strength)
        if s >= self.strong:
            return "strong"
        if s >= self.moderate:
            return "moderate"
        return "weak"


@dataclass(slots=True, frozen=True)
class TimingUrgency:
    critical: float = 7.0
    high: float = 14.0
    medium: float = 30.0
    low: float = 60.0

    def bucket(self, days_until: float) -> str:
        if days_until <= self.critical:
            return "critical"
        if days_until <= self.high:
            return "high"
        if days_until <= self.medium:
            return "medium"
        return "low"


@dataclass(slots=True, frozen=True)
class OptionalityPolicy:
    monthly_discount_rate: float = 0.1
    max_horizon_months: int = 12
    min_discount: float = 0.3

    def discount(self, months_to_need: float) -> float:
        if months_to_need > self.max_horizon_months:
            return 0.0
        return (1.0 - self.monthly_discount_rate) ** max(0.0, float(months_to_need))


@dataclass(slots=True, frozen=True)
class IntroPolicy:
    one_hop_baseline: float = 0.15
    two_hop_baseline: float = 0.06
    second_order_min_lift: float = 1.2


@dataclass(slots=True, frozen=True)
class Assumptions:
    relationships: RelationshipBands = field(default_factory=RelationshipBands)
    timing: TimingUrgency = field(default_factory=TimingUrgency)
    optionality: OptionalityPolicy = field(default_factory=OptionalityPolicy)
    intros: IntroPolicy = field(default_factory=IntroPolicy)
    version: str = "1.0.0"


ASSUMPTIONS = Assumptions()


def stage_goal_modifier(stage: str | None, goal_type: str) -> float:
    table = GOAL_WEIGHTS_BY_STAGE.get(stage or "", GOAL_WEIGHTS_BY_STAGE["Series A"])
    return float(table.get(goal_type, 1.0))
