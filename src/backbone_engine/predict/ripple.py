from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from backbone_engine.models import Issue


RIPPLE_RULES: dict[str, tuple[float, tuple[str, ...]]] = {
    "RUNWAY_CRITICAL": (
        0.9,
        (
            "High probability of insolvency within 6 months",
            "Unable to make new hires or investments",
            "Fundraise becomes distressed",
        ),
    ),
    "RUNWAY_WARNING": (0.5, ("Fundraise pressure increases", "Strategic optionality reduced")),
    "NO_PIPELINE": (0.8, ("Fundraise timeline at severe risk", "Negotiating leverage diminished")),
    "PIPELINE_GAP": (0.5, ("Fundraise may miss target or timeline",)),
    "GOAL_MISSED": (0.4, ("Investor confidence may decrease",)),
    "GOAL_BEHIND": (0.3, ("May miss key milestones",)),
    "GOAL_STALLED": (0.5, ("Underlying blocker may be systemic",)),
    "DEAL_STALE": (0.3, ("Investor interest may have cooled",)),
    "DEAL_AT_RISK": (0.4, ("May lose this investor entirely",)),
    "DATA_STALE": (0.2, ("Decisions based on outdated information",)),
    "DATA_MISSING": (0.3, ("Cannot assess true state",)),
}
DEFAULT_RIPPLE = (0.1, ("Minor downstream effects possible",))


def issue_ripple(issue: Issue) -> tuple[float, tuple[str, ...]]:
    return RIPPLE_RULES.get(issue.issue_type, DEFAULT_RIPPLE)


def risk_level(score: float) -> str:
    if score >= 0.7:
        return "HIGH"
    if score >= 0.4:
        return "MEDIUM"
    return "LOW"


def aggregate_ripple(issues: Iterable[Issue]) -> dict[str, Any]:
    rows = []
    for issue in issues:
        score, consequences = issue_ripple(issue)
        rows.append({"issue_id": issue.issue_id, "issue_type": issue.issue_type, "score": score, "consequences": list(consequences)})
    if not rows:
        return {"score": 0.0, "risk_level": "LOW", "explain": ["No issues detected"], "by_issue": []}

    # Strongest effect counts in full, each further one half as much as the last.
    rows.sort(key=lambda r: (-r["score"], r["issue_id"]))
    total = 0.0
    explain: list[str] = []
    for i, row in enumerate(rows):
        total += row["score"] * 0.5**i
        if row["score"] >= 0.3:
            for line in row["consequences"]:
                if line not in explain:
                    explain.append(line)
    score = round(min(1.0, total), 2)
    return {"score": score, "risk_level": risk_level(score), "explain": explain[:5], "by_issue": rows}
