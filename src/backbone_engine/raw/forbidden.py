from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


# Anything in this set can be recomputed from raw facts and must never be stored.
FORBIDDEN_DERIVED_FIELDS: frozenset[str] = frozenset(
    {
        # core derivations
        "runway",
        "health",
        "priority_score",
        "priorities",
        # scoring and bands
        "impact",
        "urgency",
        "risk",
        "score",
        "tier",
        "band",
        "label",
        # progress
        "progress_pct",
        "coverage",
        "expected_value",
        "conversion_prob",
        # trajectory outputs
        "on_track",
        "projected_date",
        "velocity",
        "goal_trajectory",
        "probability_of_hit",
        # detector outputs
        "issues",
        "actions",
        "preissues",
        "likelihood",
        "time_to_breach_days",
        # health components
        "health_band",
        "health_signals",
        "runway_months",
        # ripple
        "ripple_score",
        "ripple_effect",
        # impact model
        "expected_net_impact",
        "upside_magnitude",
        "probability_of_success",
        "execution_probability",
        "downside_magnitude",
        "time_to_impact_days",
        "effort_cost",
        "second_order_leverage",
        "impact_model",
        "explain",
        # action artifacts
        "action_candidates",
        "ranked_actions",
        "rank",
        "timing",
        "timing_rationale",
        "timing_confidence",
        "timing_score",
        "escalation",
        "escalation_date",
        "days_until_escalation",
        "is_imminent",
        "cost_of_delay",
        "cost_multiplier",
        "cost_curve",
        "conversion_lift",
        "is_second_order",
        "second_order",
        # ranking surface
        "rank_score",
        "rank_components",
        "trust_penalty",
        "execution_friction_penalty",
        "time_criticality_boost",
        "pattern_lift",
        # calibration
        "calibrated_probability",
        "introducer_prior",
        "path_type_prior",
        "target_type_prior",
        "success_rate",
        # followups
        "followup_for",
        "days_since_sent",
    }
)


def scan_forbidden(obj: Any, deny: Iterable[str] = FORBIDDEN_DERIVED_FIELDS, path: str = "") -> list[str]:
    deny_set = deny if isinstance(deny, (set, frozenset)) else frozenset(deny)
    violations: list[str] = []
    if obj is None:
        return violations
    if isinstance(obj, Mapping):
        for key in obj:
            current = f"{path}.{key}" if path else str(key)
            if key in deny_set:
                violations.append(current)
            violations.extend(scan_forbidden(obj[key], deny_set, current))
    elif isinstance(obj, (list, tuple)):
        for i, item in enumerate(obj):
            violations.extend(scan_forbidden(item, deny_set, f"{path}[{i}]"))
    return violations


def validate_no_forbidden_fields(raw: Any, deny: Iterable[str] = FORBIDDEN_DERIVED_FIELDS) -> dict[str, Any]:
    violations = scan_forbidden(raw, deny)
    if not violations:
        return {"valid": True, "violations": [], "message": "no forbidden derived fields found"}
    lines = ["forbidden derived fields detected:"]
    lines.extend(f"  - {v}" for v in violations)
    return {"valid": False, "violations": violations, "message": "\n".join(lines)}
