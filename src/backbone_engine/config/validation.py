from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any
from zoneinfo import ZoneInfo

from backbone_engine.config.settings import SystemSettings


LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
SOURCE_TYPES = ("ISSUE", "PREISSUE", "GOAL", "OPPORTUNITY", "INTRODUCTION", "FOLLOWUP")


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    level: str  # error | warning
    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"level": self.level, "path": self.path, "message": self.message}


def _as_float(v: Any, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def validate_settings(settings: SystemSettings) -> dict[str, Any]:
    issues: list[ValidationIssue] = []

    tz = str(settings.timezone or "")
    try:
        ZoneInfo(tz)
    except Exception:
        issues.append(ValidationIssue("error", "timezone", f"invalid timezone: {tz!r}"))

    level = str(settings.logging.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        issues.append(ValidationIssue("error", "logging.level", f"must be one of {sorted(LOG_LEVELS)}, got {level!r}"))
    elif not isinstance(logging.getLevelName(level), int):
        issues.append(ValidationIssue("error", "logging.level", f"unknown logging level {level!r}"))

    det = settings.detection
    critical = _as_float(det.get("runway_critical_months", 6.0))
    warning = _as_float(det.get("runway_warning_months", 12.0))
    if not (0.0 < critical < warning):
        issues.append(ValidationIssue("error", "detection.runway_*", "requires 0 < runway_critical_months < runway_warning_months"))
    if _as_float(det.get("deal_stale_days", 14)) <= 0:
        issues.append(ValidationIssue("error", "detection.deal_stale_days", "must be > 0"))
    coverage_min = _as_float(det.get("pipeline_coverage_min", 0.5))
    if not (0.0 < coverage_min <= 1.0):
        issues.append(ValidationIssue("error", "detection.pipeline_coverage_min", "must be in (0, 1]"))

    fc = settings.forecast
    if _as_int(fc.get("imminent_days", 7)) < 0:
        issues.append(ValidationIssue("error", "forecast.imminent_days", "must be >= 0"))
    suppress = _as_float(fc.get("goal_miss_suppress_probability", 0.6))
    if not (0.0 < suppress <= 1.0):
        issues.append(ValidationIssue("error", "forecast.goal_miss_suppress_probability", "must be in (0, 1]"))
    buffers = fc.get("escalation_buffers", {})
    if not isinstance(buffers, dict):
        issues.append(ValidationIssue("error", "forecast.escalation_buffers", "must be a mapping"))
    else:
        for key, val in buffers.items():
            if _as_float(val, -1.0) < 0:
                issues.append(ValidationIssue("error", f"forecast.escalation_buffers.{key}", "must be >= 0"))

    rk = settings.ranking
    thr = _as_float(rk.get("trust_risk_threshold", 0.3))
    if not (0.0 <= thr <= 1.0):
        issues.append(ValidationIssue("error", "ranking.trust_risk_threshold", "must be in [0, 1]"))
    if _as_float(rk.get("trust_penalty_slope", 20.0)) <= 0:
        issues.append(ValidationIssue("error", "ranking.trust_penalty_slope", "must be > 0"))
    if _as_float(rk.get("criticality_horizon_days", 28)) <= 0:
        issues.append(ValidationIssue("error", "ranking.criticality_horizon_days", "must be > 0"))
    if _as_int(rk.get("per_company_source_cap", 5)) < 1:
        issues.append(ValidationIssue("error", "ranking.per_company_source_cap", "must be >= 1"))
    eps = _as_float(rk.get("tie_epsilon", 1e-4))
    if not (0.0 < eps < 1.0):
        issues.append(ValidationIssue("error", "ranking.tie_epsilon", "must be in (0, 1)"))

    boosts = rk.get("source_type_boost", {})
    if not isinstance(boosts, dict):
        issues.append(ValidationIssue("error", "ranking.source_type_boost", "must be a mapping"))
    else:
        unknown = sorted(set(boosts) - set(SOURCE_TYPES))
        if unknown:
            issues.append(ValidationIssue("warning", "ranking.source_type_boost", f"unknown source types ignored: {unknown}"))
        issue_b = _as_float(boosts.get("ISSUE", 5.0))
        pre_b = _as_float(boosts.get("PREISSUE", 3.0))
        others = [_as_float(boosts.get(k, 0.5)) for k in SOURCE_TYPES[2:]]
        if not (issue_b > pre_b > max(others, default=0.0) >= 0.0):
            issues.append(
                ValidationIssue("error", "ranking.source_type_boost", "requires ISSUE > PREISSUE > other source types >= 0")
            )

    pl = settings.pattern_lift
    lift_max = _as_float(pl.get("lift_max", 0.5))
    if not (0.0 < lift_max <= 5.0):
        issues.append(ValidationIssue("error", "pattern_lift.lift_max", "must be in (0, 5]"))
    if _as_int(pl.get("min_observations", 3)) < 1:
        issues.append(ValidationIssue("error", "pattern_lift.min_observations", "must be >= 1"))
    if _as_float(pl.get("half_life_days", 30)) <= 0:
        issues.append(ValidationIssue("error", "pattern_lift.half_life_days", "must be > 0"))
    if _as_float(pl.get("confidence_saturation", 20)) <= 1:
        issues.append(ValidationIssue("error", "pattern_lift.confidence_saturation", "must be > 1"))

    if _as_int(settings.runtime.get("portfolio_preissue_limit", 100)) < 0:
        issues.append(ValidationIssue("error", "runtime.portfolio_preissue_limit", "must be >= 0"))

    gate = settings.gate
    if _as_float(gate.get("reconstruct_epsilon", 0.01)) <= 0:
        issues.append(ValidationIssue("error", "gate.reconstruct_epsilon", "must be > 0"))
    ratio = _as_float(gate.get("tier_ratio_min", 0.8))
    if not (0.0 < ratio <= 1.0):
        issues.append(ValidationIssue("error", "gate.tier_ratio_min", "must be in (0, 1]"))
    if ratio < 0.8:
        issues.append(ValidationIssue("warning", "gate.tier_ratio_min", "looser than the 0.8 tier-ordering floor"))

    output = str(settings.paths.get("output", "")).strip()
    if output == "":
        issues.append(ValidationIssue("error", "paths.output", "must not be empty"))

    errors = [x for x in issues if x.level == "error"]
    warnings = [x for x in issues if x.level == "warning"]
    return {
        "ok": len(errors) == 0,
        "errors": [x.to_dict() for x in errors],
        "warnings": [x.to_dict() for x in warnings],
        "summary": {
            "errors": len(errors),
            "warnings": len(warnings),
        },
    }


def assert_valid_settings(settings: SystemSettings) -> None:
    result = validate_settings(settings)
    if result["ok"]:
        return
    lines = ["config validation failed:"]
    for item in result.get("errors", []):
        lines.append(f"- [{item['path']}] {item['message']}")
    raise ValueError("\n".join(lines))
