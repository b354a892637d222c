from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd

from backbone_engine.models import MetricSnapshot
from backbone_engine.raw.dates import parse_ts


CORE_METRICS = ("cash", "burn", "arr")
STALE_DAYS = 45.0


def facts_frame(facts: Iterable[Mapping[str, Any]], company: Mapping[str, Any] | None = None) -> pd.DataFrame:
    rows = []
    for fact in facts or []:
        ts = parse_ts(fact.get("as_of"))
        value = fact.get("value")
        key = fact.get("metric_key")
        if ts is None or value is None or not key:
            continue
        rows.append({"metric_key": str(key), "value": float(value), "ts": ts})
    if company is not None:
        # Headline figures on the company record count as one observation each.
        ts = parse_ts(company.get("as_of"))
        seen = {r["metric_key"] for r in rows}
        for key in CORE_METRICS:
            if key not in seen and company.get(key) is not None and ts is not None:
                rows.append({"metric_key": key, "value": float(company[key]), "ts": ts})
    if not rows:
        return pd.DataFrame(columns=["metric_key", "value", "ts"])
    return pd.DataFrame(rows).sort_values(["metric_key", "ts"], kind="mergesort").reset_index(drop=True)


def derive_metrics(
    company_id: str,
    facts: Iterable[Mapping[str, Any]],
    now: Any,
    company: Mapping[str, Any] | None = None,
    stale_days: float = STALE_DAYS,
) -> MetricSnapshot:
    frame = facts_frame(facts, company)
    snap = MetricSnapshot(company_id=company_id, core_keys=list(CORE_METRICS))
    now_ts = parse_ts(now)

    if not frame.empty:
        for key, grp in frame.groupby("metric_key", sort=True):
            last = grp.iloc[-1]
            first = grp.iloc[0]
            snap.latest[key] = float(last["value"])
            snap.points[key] = int(len(grp))
            snap.staleness_days[key] = round((now_ts - last["ts"]).total_seconds() / 86400.0, 2)
            span = (last["ts"] - first["ts"]).total_seconds() / 86400.0
            snap.velocity_per_day[key] = round(float(last["value"] - first["value"]) / span, 6) if span > 0 else 0.0

    for key in CORE_METRICS:
        if key not in snap.latest:
            snap.missing_core.append(key)
        elif snap.staleness_days.get(key, 0.0) > stale_days:
            snap.stale_core.append(key)
    return snap
