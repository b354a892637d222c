from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import math
from typing import Any

from backbone_engine.models import Action, SourceType


@dataclass(slots=True, frozen=True)
class RankingWeights:
    trust_risk_threshold: float = 0.3
    trust_penalty_slope: float = 20.0
    friction_per_step: float = 0.5
    friction_max_steps: int = 10
    complexity_multiplier: float = 5.0
    criticality_horizon_days: float = 28.0
    criticality_peak: float = 15.0
    criticality_decay_days: float = 7.0
    time_penalty_cap: float = 30.0
    time_penalty_divisor: float = 7.0
    per_company_source_cap: int = 5
    tie_epsilon: float = 1e-4
    source_type_boost: dict[str, float] = field(
        default_factory=lambda: {
            "ISSUE": 5.0,
            "PREISSUE": 3.0,
            "GOAL": 1.0,
            "OPPORTUNITY": 0.5,
            "INTRODUCTION": 0.5,
            "FOLLOWUP": 0.5,
        }
    )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "RankingWeights":
        raw = dict(raw or {})
        base = cls()
        boosts = dict(base.source_type_boost)
        boosts.update({str(k): float(v) for k, v in (raw.pop("source_type_boost", None) or {}).items()})
        kwargs: dict[str, Any] = {}
        for name in (
            "trust_risk_threshold",
            "trust_penalty_slope",
            "friction_per_step",
            "complexity_multiplier",
            "criticality_horizon_days",
            "criticality_peak",
            "criticality_decay_days",
            "time_penalty_cap",
            "time_penalty_divisor",
            "tie_epsilon",
        ):
            if name in raw:
                kwargs[name] = float(raw[name])
        for name in ("friction_max_steps", "per_company_source_cap"):
            if name in raw:
                kwargs[name] = int(raw[name])
        return cls(source_type_boost=boosts, **kwargs)

    def time_penalty(self, days: float) -> float:
        return min(self.time_penalty_cap, max(0.0, float(days)) / self.time_penalty_divisor)

    def trust_penalty(self, trust_risk: float | None) -> float:
        if trust_risk is None or trust_risk <= self.trust_risk_threshold:
            return 0.0
        return (float(trust_risk) - self.trust_risk_threshold) * self.trust_penalty_slope

    def execution_friction_penalty(self, action: Action) -> float:
        steps = min(len(action.steps), self.friction_max_steps)
        return steps * self.friction_per_step + float(action.complexity or 0.0) * self.complexity_multiplier

    def time_criticality_boost(self, days_until_deadline: float | None) -> float:
        if days_until_deadline is None:
            return 0.0
        d = float(days_until_deadline)
        if not math.isfinite(d) or d > self.criticality_horizon_days:
            return 0.0
        if d <= 0:
            return self.criticality_peak
        return self.criticality_peak * math.exp(-d / self.criticality_decay_days)

    def source_boost(self, source_type: SourceType | str | None) -> float:
        if source_type is None:
            return 0.0
        key = source_type.value if isinstance(source_type, SourceType) else str(source_type)
        return float(self.source_type_boost.get(key, 0.0))
