from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any


SECONDS_PER_DAY = 86400.0


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, date):
        ts = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        txt = value.strip()
        if txt.endswith("Z"):
            txt = txt[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(txt)
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def ensure_now(now: Any) -> datetime:
    ts = parse_ts(now)
    if ts is None:
        raise ValueError(f"invalid 'now' instant: {now!r}")
    return ts


def days_between(start: Any, end: Any) -> float | None:
    a = parse_ts(start)
    b = parse_ts(end)
    if a is None or b is None:
        return None
    return (b - a).total_seconds() / SECONDS_PER_DAY


def add_days(ts: Any, days: float) -> str | None:
    base = parse_ts(ts)
    if base is None:
        return None
    return (base + timedelta(days=float(days))).date().isoformat()
