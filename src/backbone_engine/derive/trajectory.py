from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np
import pandas as pd

from backbone_engine.models import GoalTrajectory, TrajectoryStatus
from backbone_engine.raw.dates import add_days, days_between, parse_ts


def history_frame(history: Any) -> pd.DataFrame:
    rows = []
    for point in history or []:
        if not isinstance(point, Mapping):
            continue
        ts = parse_ts(point.get("date") or point.get("as_of"))
        value = point.get("value")
        if ts is None or value is None:
            continue
        rows.append({"ts": ts, "value": float(value)})
    if not rows:
        return pd.DataFrame(columns=["ts", "value"])
    return pd.DataFrame(rows).sort_values("ts", kind="mergesort").reset_index(drop=True)


def observed_velocity(history: Any) -> tuple[float, int, float]:
    frame = history_frame(history)
    points = int(len(frame))
    if points < 2:
        return 0.0, points, 0.0
    first = frame.iloc[0]
    last = frame.iloc[-1]
    span = (last["ts"] - first["ts"]).total_seconds() / 86400.0
    if span <= 0:
        return 0.0, points, 0.0
    return float((last["value"] - first["value"]) / span), points, float(span)


def trajectory_confidence(points: int, span_days: float, days_left: float) -> float:
    conf = 0.5 + min(points / 10.0, 1.0) * 0.2
    if days_left > 0 and span_days > 0:
        conf += min(span_days / days_left, 1.0) * 0.2
    conf += 0.1
    return float(np.clip(conf, 0.0, 1.0))


def probability_of_hit(
    progress: float,
    days_left: float | None,
    on_track: bool | None,
    confidence: float,
    velocity: float,
    required_velocity: float | None,
) -> float:
    if progress >= 1.0:
        return 1.0
    if days_left is not None and days_left < 0:
        return 0.0
    prob = progress * 0.3
    if on_track is True:
        prob += 0.4 * confidence
    elif on_track is False:
        if velocity > 0 and required_velocity and required_velocity > 0:
            prob += 0.2 * min(1.0, velocity / required_velocity) * confidence
    elif days_left is not None and days_left > 0:
        prob += 0.2 * min(1.0, days_left / 30.0)

    if days_left is not None:
        if days_left > 60:
            prob += 0.2
        elif days_left > 30:
            prob += 0.15
        elif days_left > 14:
            prob += 0.1
        elif days_left > 7:
            prob += 0.05
    return round(float(np.clip(prob, 0.0, 1.0)), 4)


def derive_trajectory(goal: Mapping[str, Any], now: Any) -> GoalTrajectory:
    goal_id = str(goal.get("id", ""))
    company_id = str(goal.get("company_id", ""))
    goal_type = str(goal.get("type") or "custom")
    goal_name = str(goal.get("name") or goal_id)
    current = goal.get("current")
    target = goal.get("target")
    due = goal.get("due")

    base = dict(goal_id=goal_id, company_id=company_id, goal_type=goal_type, goal_name=goal_name)
    if current is None or target is None or parse_ts(due) is None:
        return GoalTrajectory(
            **base,
            current=float(current or 0.0),
            target=float(target or 0.0),
            due=due,
            days_left=None,
            required_slope=None,
            velocity=None,
            probability_of_hit=0.0,
            on_track=None,
            status=TrajectoryStatus.INSUFFICIENT_HISTORY,
            confidence=0.0,
        )

    current_f = float(current)
    target_f = float(target)
    raw_days = days_between(now, due) or 0.0
    days_left = int(np.ceil(raw_days))
    gap = target_f - current_f
    required = gap / days_left if days_left > 0 else None
    velocity, points, span = observed_velocity(goal.get("history"))
    progress = min(1.0, current_f / target_f) if target_f > 0 else 0.0

    if current_f >= target_f:
        status, on_track, confidence, projected = TrajectoryStatus.ACHIEVED, True, 1.0, add_days(now, 0)
    elif raw_days < 0:
        status, on_track, confidence, projected = TrajectoryStatus.MISSED, False, 1.0, None
    elif points < 2:
        status, on_track, confidence, projected = TrajectoryStatus.INSUFFICIENT_HISTORY, None, 0.2, None
    else:
        confidence = trajectory_confidence(points, span, raw_days)
        if velocity <= 0:
            status, on_track, projected = TrajectoryStatus.STALLED, False, None
        else:
            days_to_done = gap / velocity
            projected = add_days(now, days_to_done)
            on_track = days_to_done <= raw_days
            status = TrajectoryStatus.ON_TRACK if on_track else TrajectoryStatus.BEHIND

    p_hit = probability_of_hit(progress, raw_days, on_track, confidence, velocity, required)
    return GoalTrajectory(
        **base,
        current=current_f,
        target=target_f,
        due=str(due),
        days_left=days_left,
        required_slope=round(required, 6) if required is not None else None,
        velocity=round(velocity, 6) if points >= 2 else None,
        probability_of_hit=p_hit,
        on_track=on_track,
        status=status,
        projected_date=projected,
        confidence=round(confidence, 4),
        history_points=points,
    )
