from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
from typing import Any

import numpy as np
import pandas as pd

from backbone_engine.errors import ColdStartNullResult
from backbone_engine.models import Action, EventType, LiftEstimate
from backbone_engine.raw.dates import parse_ts


logger = logging.getLogger(__name__)

UNKNOWN_BUCKET = "UNKNOWN"


@dataclass(slots=True, frozen=True)
class PatternLiftConfig:
    lift_max: float = 0.5
    min_observations: int = 3
    half_life_days: float = 30.0
    confidence_saturation: float = 20.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "PatternLiftConfig":
        raw = raw or {}
        base = cls()
        return cls(
            lift_max=float(raw.get("lift_max", base.lift_max)),
            min_observations=int(raw.get("min_observations", base.min_observations)),
            half_life_days=float(raw.get("half_life_days", base.half_life_days)),
            confidence_saturation=float(raw.get("confidence_saturation", base.confidence_saturation)),
        )


def action_bucket(action: Action) -> str:
    return action.action_type or action.resolution_id or UNKNOWN_BUCKET


def _event_bucket(event: Mapping[str, Any]) -> str:
    payload = event.get("payload") if isinstance(event.get("payload"), Mapping) else {}
    return str(payload.get("action_type") or event.get("action_type") or UNKNOWN_BUCKET)


def outcome_frame(events: Iterable[Mapping[str, Any]], now: Any, cfg: PatternLiftConfig) -> pd.DataFrame:
    """Outcome events as (bucket, signal, decay) rows.

    Without ``now`` ages are measured from the latest outcome, so the result
    still depends only on the events themselves.
    """
    outcomes = []
    for event in events or []:
        if not isinstance(event, Mapping) or event.get("event_type") != EventType.OUTCOME_RECORDED.value:
            continue
        ts = parse_ts(event.get("timestamp"))
        if ts is None:
            continue
        outcomes.append((event, ts))
    if now is None:
        now_ts = max((ts for _, ts in outcomes), default=None)
    else:
        now_ts = parse_ts(now)
        if now_ts is None:
            raise ValueError(f"invalid now for pattern lift: {now!r}")
    rows = []
    for event, ts in outcomes:
        age = max(0.0, (now_ts - ts).total_seconds() / 86400.0)
        payload = event.get("payload") if isinstance(event.get("payload"), Mapping) else {}
        rows.append(
            {
                "bucket": _event_bucket(event),
                "signal": 1.0 if payload.get("notes") else 0.5,
                "decay": 0.5 ** (age / cfg.half_life_days),
            }
        )
    if not rows:
        return pd.DataFrame(columns=["bucket", "signal", "decay"])
    return pd.DataFrame(rows)


def _lift_from(n: int, weighted_sum: float, cfg: PatternLiftConfig) -> tuple[float, float, float]:
    avg = weighted_sum / n
    normalized = (avg - 0.5) * 2.0
    conf = min(1.0, float(np.log(n) / np.log(cfg.confidence_saturation)))
    lift = float(np.clip(normalized * conf * cfg.lift_max, -cfg.lift_max, cfg.lift_max))
    return lift, avg, conf


def compute_pattern_stats(
    events: Iterable[Mapping[str, Any]], now: Any, cfg: PatternLiftConfig | None = None
) -> dict[str, LiftEstimate]:
    cfg = cfg or PatternLiftConfig()
    frame = outcome_frame(events, now, cfg)
    if frame.empty:
        return {}
    frame["weighted"] = frame["signal"] * frame["decay"]
    grouped = frame.groupby("bucket", sort=True).agg(n=("weighted", "size"), weighted_sum=("weighted", "sum"))
    out: dict[str, LiftEstimate] = {}
    for bucket, row in grouped.iterrows():
        n = int(row["n"])
        if n < cfg.min_observations:
            out[str(bucket)] = LiftEstimate(str(bucket), 0.0, n, 0.0, 0.0, cold_start=True)
            continue
        lift, avg, conf = _lift_from(n, float(row["weighted_sum"]), cfg)
        out[str(bucket)] = LiftEstimate(str(bucket), round(lift, 6), n, round(avg, 6), round(conf, 6))
    return out


def compute_pattern_lift(
    action: Action, events: Iterable[Mapping[str, Any]], now: Any, cfg: PatternLiftConfig | None = None
) -> float | ColdStartNullResult:
    cfg = cfg or PatternLiftConfig()
    bucket = action_bucket(action)
    est = compute_pattern_stats(events, now, cfg).get(bucket)
    if est is None or est.cold_start:
        return ColdStartNullResult(
            subject=f"pattern_lift:{bucket}",
            observations=est.observations if est else 0,
            required=cfg.min_observations,
        )
    return est.lift


def compute_all_pattern_lifts(
    actions: Iterable[Action], events: Iterable[Mapping[str, Any]], now: Any, cfg: PatternLiftConfig | None = None
) -> dict[str, float]:
    cfg = cfg or PatternLiftConfig()
    stats = compute_pattern_stats(events, now, cfg)
    lifts: dict[str, float] = {}
    for action in actions:
        est = stats.get(action_bucket(action))
        lifts[action.action_id] = 0.0 if est is None or est.cold_start else est.lift
    cold = sum(1 for est in stats.values() if est.cold_start)
    if cold:
        logger.debug("pattern lift: %d bucket(s) below %d observations", cold, cfg.min_observations)
    return lifts


def validate_lift_bounds(lift: Any, cfg: PatternLiftConfig | None = None) -> bool:
    cfg = cfg or PatternLiftConfig()
    if isinstance(lift, ColdStartNullResult):
        return True
    return isinstance(lift, (int, float)) and bool(np.isfinite(lift)) and abs(float(lift)) <= cfg.lift_max
