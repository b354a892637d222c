from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np

from backbone_engine.models import GoalTrajectory, HealthBand, HealthState, MetricSnapshot, RunwayEstimate, TrajectoryStatus


CRITICAL_RUNWAY = 6.0
WARNING_RUNWAY = 12.0
OFF_TRACK = {TrajectoryStatus.BEHIND, TrajectoryStatus.STALLED, TrajectoryStatus.MISSED}


def derive_health(
    company: Mapping[str, Any],
    runway: RunwayEstimate,
    trajectories: Iterable[GoalTrajectory] = (),
    metrics: MetricSnapshot | None = None,
) -> HealthState:
    signals: list[str] = []
    score = 100.0
    confidence = float(runway.confidence)

    if runway.reason == "missing_input":
        band = HealthBand.GREEN
        confidence = 0.3
        signals.append("runway_unknown")
    elif runway.months is None:
        band = HealthBand.GREEN
        signals.append("runway_infinite")
    elif runway.months < CRITICAL_RUNWAY:
        band = HealthBand.RED
        score -= 45.0
        signals.append(f"runway_critical_{round(runway.months)}mo")
    elif runway.months < WARNING_RUNWAY:
        band = HealthBand.YELLOW
        score -= 20.0
        signals.append(f"runway_warning_{round(runway.months)}mo")
    else:
        band = HealthBand.GREEN
        signals.append(f"runway_healthy_{round(runway.months)}mo")

    off_track = sorted(t.goal_id for t in trajectories if t.status in OFF_TRACK)
    if off_track:
        score -= min(24.0, 8.0 * len(off_track))
        signals.append(f"goals_off_track_{len(off_track)}")

    if metrics is not None and metrics.blindspot_ratio > 0:
        score -= 20.0 * metrics.blindspot_ratio
        signals.append(f"blindspot_{int(round(metrics.blindspot_ratio * 100))}pct")
        confidence *= 1.0 - 0.3 * metrics.blindspot_ratio

    if company.get("cash") is not None and company.get("burn") is not None:
        signals.append("financials_present")

    return HealthState(
        company_id=str(company.get("id", "")),
        band=band,
        score=round(float(np.clip(score, 0.0, 100.0)), 2),
        confidence=round(float(np.clip(confidence, 0.0, 1.0)), 4),
        signals=signals,
    )
