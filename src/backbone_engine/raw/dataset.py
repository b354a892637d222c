from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from backbone_engine.errors import DatasetStructureError, ValidationError
from backbone_engine.raw.dates import parse_ts


logger = logging.getLogger(__name__)

COLLECTIONS = (
    "companies",
    "goals",
    "deals",
    "rounds",
    "people",
    "relationships",
    "team",
    "investors",
    "firms",
    "external_events",
    "fund_cycles",
    "role_changes",
    "metric_facts",
    "intro_outcomes",
    "action_events",
)
REQUIRED_COLLECTIONS = ("companies",)
COMPANY_SCOPED = ("goals", "deals", "rounds", "metric_facts")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return bool(np.isfinite(float(value)))


def validate_dataset(raw: Any) -> list[str]:
    if not isinstance(raw, Mapping):
        raise DatasetStructureError(["dataset must be a mapping of record collections"])
    problems: list[str] = []
    for key in REQUIRED_COLLECTIONS:
        if key not in raw:
            problems.append(f"missing required collection {key!r}")
    for key in COLLECTIONS:
        if key in raw and raw[key] is not None and not isinstance(raw[key], list):
            problems.append(f"collection {key!r} must be a list, got {type(raw[key]).__name__}")
    for i, company in enumerate(raw.get("companies") or []):
        if not isinstance(company, Mapping):
            problems.append(f"companies[{i}] must be an object")
        elif not company.get("id"):
            problems.append(f"companies[{i}] has no id")
    ids = [c.get("id") for c in (raw.get("companies") or []) if isinstance(c, Mapping) and c.get("id")]
    dupes = sorted({x for x in ids if ids.count(x) > 1})
    if dupes:
        problems.append(f"duplicate company ids: {dupes}")
    if problems:
        raise DatasetStructureError(problems)
    return problems


def load_dataset(path: str | Path) -> dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise DatasetStructureError([f"{path}: not valid JSON ({exc.msg} at line {exc.lineno})"]) from exc
    validate_dataset(raw)
    return raw


def validate_company_record(company: Mapping[str, Any]) -> None:
    problems: list[str] = []
    company_id = str(company.get("id", "?"))
    for key in ("cash", "burn", "arr"):
        value = company.get(key)
        if value is not None and not _is_number(value):
            problems.append(f"{key} must be a finite number, got {value!r}")
    if company.get("as_of") not in (None, "") and parse_ts(company.get("as_of")) is None:
        problems.append(f"as_of is not a valid timestamp: {company.get('as_of')!r}")
    for key in ("founder_person_ids", "recent_milestones"):
        value = company.get(key)
        if value is not None and not isinstance(value, list):
            problems.append(f"{key} must be a list")
    if problems:
        raise ValidationError("company", company_id, problems)


def validate_goal_record(goal: Mapping[str, Any]) -> None:
    problems: list[str] = []
    goal_id = str(goal.get("id", "?"))
    for key in ("current", "target"):
        value = goal.get(key)
        if value is not None and not _is_number(value):
            problems.append(f"{key} must be a finite number, got {value!r}")
    if goal.get("due") not in (None, "") and parse_ts(goal.get("due")) is None:
        problems.append(f"due is not a valid date: {goal.get('due')!r}")
    history = goal.get("history")
    if history is not None:
        if not isinstance(history, list):
            problems.append("history must be a list")
        else:
            for i, point in enumerate(history):
                if not isinstance(point, Mapping) or not _is_number(point.get("value")):
                    problems.append(f"history[{i}] needs a numeric value")
    if problems:
        raise ValidationError("goal", goal_id, problems)


def group_by_company(raw: Mapping[str, Any]) -> dict[str, dict[str, list[dict[str, Any]]]]:
    grouped: dict[str, dict[str, list[dict[str, Any]]]] = {}
    for company in raw.get("companies") or []:
        grouped[str(company["id"])] = {key: [] for key in COMPANY_SCOPED}
    orphans = 0
    for key in COMPANY_SCOPED:
        for record in raw.get(key) or []:
            if not isinstance(record, Mapping):
                continue
            bucket = grouped.get(str(record.get("company_id")))
            if bucket is None:
                orphans += 1
                continue
            bucket[key].append(dict(record))
    if orphans:
        logger.debug("ignored %d records without a known company_id", orphans)
    return grouped


def index_by_id(records: Any) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for record in records or []:
        if isinstance(record, Mapping) and record.get("id") is not None:
            out[str(record["id"])] = dict(record)
    return out
