from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(slots=True)
class TrustRisk:
    score: float
    band: str
    strength_component: float
    recency_component: float
    frequency_component: float
    path_component: float

    @property
    def normalized(self) -> float:
        return self.score / 100.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["normalized"] = self.normalized
        return data


def _recency(days_since_touch: float | None) -> float:
    if days_since_touch is None:
        return 40.0
    if days_since_touch <= 7:
        return 0.0
    if days_since_touch <= 30:
        return 10.0
    if days_since_touch <= 90:
        return 25.0
    return 40.0


def _frequency(intro_count: int) -> float:
    return {0: 0.0, 1: 5.0, 2: 15.0, 3: 30.0}.get(int(intro_count), 50.0)


def _path(hops: int) -> float:
    return {1: 0.0, 2: 15.0, 3: 35.0}.get(int(hops), 50.0)


def trust_band(score: float) -> str:
    if score <= 30:
        return "low"
    if score <= 60:
        return "medium"
    return "high"


def assess_trust_risk(strength: float | None, days_since_touch: float | None, intro_count: int, hops: int) -> TrustRisk:
    s = 50.0 if strength is None else max(0.0, min(100.0, float(strength)))
    parts = ((100.0 - s) * 0.3, _recency(days_since_touch), _frequency(intro_count), _path(hops))
    score = round(min(100.0, sum(parts)), 2)
    return TrustRisk(score, trust_band(score), *(round(p, 2) for p in parts))
