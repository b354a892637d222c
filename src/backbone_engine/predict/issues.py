from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
import hashlib
from typing import Any

from backbone_engine.models import EntityRef, GoalTrajectory, Issue, RunwayEstimate, Severity, TrajectoryStatus
from backbone_engine.raw.dates import days_between


OPEN_ROUND_STATUSES = {"active", "open"}
CLOSED_DEAL_STATUSES = {"closed", "dead", "passed", "lost"}


@dataclass(slots=True, frozen=True)
class DetectionThresholds:
    runway_critical_months: float = 6.0
    runway_warning_months: float = 12.0
    deal_stale_days: float = 14.0
    goal_behind_critical_days: float = 7.0
    pipeline_coverage_min: float = 0.5
    data_stale_days: float = 45.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "DetectionThresholds":
        raw = raw or {}
        return cls(**{f.name: float(raw[f.name]) for f in fields(cls) if f.name in raw})


def issue_id(issue_type: str, entity_id: str) -> str:
    digest = hashlib.sha256(f"{issue_type}|{entity_id}".encode("utf-8")).hexdigest()[:6]
    return f"{issue_type}-{entity_id}-{digest}"


def _issue(issue_type: str, severity: Severity, company: Mapping[str, Any], ref: EntityRef, title: str, **evidence: Any) -> Issue:
    return Issue(
        issue_id=issue_id(issue_type, ref.id),
        issue_type=issue_type,
        severity=severity,
        company_id=str(company.get("id")),
        entity_ref=ref,
        title=title,
        evidence=evidence,
    )


def _company_ref(company: Mapping[str, Any]) -> EntityRef:
    return EntityRef("company", str(company.get("id")), str(company.get("name") or ""))


def detect_runway_issues(company: Mapping[str, Any], runway: RunwayEstimate, th: DetectionThresholds) -> list[Issue]:
    ref = _company_ref(company)
    if runway.reason == "missing_input":
        missing = [k for k in ("cash", "burn") if company.get(k) is None]
        return [_issue("DATA_MISSING", Severity.HIGH, company, ref, "Runway inputs missing", missing=missing)]
    if runway.months is None:
        return []
    if runway.months < th.runway_critical_months:
        return [
            _issue(
                "RUNWAY_CRITICAL",
                Severity.CRITICAL,
                company,
                ref,
                f"Runway {runway.months:.1f} months",
                runway_months=runway.months,
                burn=company.get("burn"),
                cash=company.get("cash"),
                threshold=th.runway_critical_months,
            )
        ]
    if runway.months < th.runway_warning_months:
        return [
            _issue(
                "RUNWAY_WARNING",
                Severity.HIGH,
                company,
                ref,
                f"Runway {runway.months:.1f} months",
                runway_months=runway.months,
                burn=company.get("burn"),
                cash=company.get("cash"),
                threshold=th.runway_warning_months,
            )
        ]
    return []


def detect_data_stale(company: Mapping[str, Any], now: Any, th: DetectionThresholds) -> list[Issue]:
    age = days_between(company.get("as_of"), now)
    if age is None or age <= th.data_stale_days:
        return []
    return [
        _issue(
            "DATA_STALE",
            Severity.MEDIUM,
            company,
            _company_ref(company),
            f"Company data {int(age)} days old",
            days_since_update=int(age),
            threshold=th.data_stale_days,
        )
    ]


def detect_goal_issues(
    company: Mapping[str, Any], trajectories: list[GoalTrajectory], th: DetectionThresholds
) -> list[Issue]:
    if not trajectories:
        return [_issue("NO_GOALS", Severity.MEDIUM, company, _company_ref(company), "No goals defined")]
    out: list[Issue] = []
    for traj in trajectories:
        ref = EntityRef("goal", traj.goal_id, traj.goal_name)
        ev = dict(
            goal_id=traj.goal_id,
            goal_type=traj.goal_type,
            current=traj.current,
            target=traj.target,
            days_left=traj.days_left,
            probability_of_hit=traj.probability_of_hit,
        )
        if traj.status == TrajectoryStatus.MISSED:
            out.append(_issue("GOAL_MISSED", Severity.HIGH, company, ref, f'Goal "{traj.goal_name}" missed', **ev))
        elif traj.status == TrajectoryStatus.STALLED:
            out.append(_issue("GOAL_STALLED", Severity.HIGH, company, ref, f'Goal "{traj.goal_name}" stalled', **ev))
        elif traj.status == TrajectoryStatus.BEHIND:
            critical = traj.days_left is not None and traj.days_left < th.goal_behind_critical_days
            sev = Severity.CRITICAL if critical else Severity.HIGH
            out.append(_issue("GOAL_BEHIND", sev, company, ref, f'Goal "{traj.goal_name}" behind pace', **ev))
    return out


def active_round(rounds: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    candidates = [r for r in rounds if str(r.get("status") or "active").lower() in OPEN_ROUND_STATUSES]
    if not candidates:
        return None
    return sorted(candidates, key=lambda r: (str(r.get("opened_at") or ""), str(r.get("id"))))[-1]


def open_deals(deals: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    return [d for d in deals if str(d.get("status") or "").lower() not in CLOSED_DEAL_STATUSES]


def detect_pipeline_issues(
    company: Mapping[str, Any],
    deals: list[Mapping[str, Any]],
    rounds: list[Mapping[str, Any]],
    th: DetectionThresholds,
) -> list[Issue]:
    rnd = active_round(rounds)
    if rnd is None:
        return []
    ref = EntityRef("round", str(rnd.get("id")), str(rnd.get("stage") or ""))
    live = open_deals(deals)
    remaining = max(0.0, float(rnd.get("target_amount") or 0.0) - float(rnd.get("raised_amount") or 0.0))
    if not live:
        return [_issue("NO_PIPELINE", Severity.CRITICAL, company, ref, "Active raise with no open deals", remaining=remaining)]
    weighted = sum(float(d.get("amount") or 0.0) * float(d.get("probability") or 0.0) / 100.0 for d in live)
    if remaining > 0 and weighted < remaining * th.pipeline_coverage_min:
        return [
            _issue(
                "PIPELINE_GAP",
                Severity.HIGH,
                company,
                ref,
                "Weighted pipeline below coverage floor",
                weighted_pipeline=round(weighted, 2),
                remaining=remaining,
                coverage_ratio=round(weighted / remaining, 4),
            )
        ]
    return []


def detect_deal_issues(company: Mapping[str, Any], deals: list[Mapping[str, Any]], now: Any, th: DetectionThresholds) -> list[Issue]:
    out: list[Issue] = []
    for deal in sorted(open_deals(deals), key=lambda d: str(d.get("id"))):
        age = days_between(deal.get("last_activity_at"), now)
        if age is None or age <= th.deal_stale_days:
            continue
        ref = EntityRef("deal", str(deal.get("id")), str(deal.get("investor_name") or ""))
        out.append(
            _issue(
                "DEAL_STALE",
                Severity.MEDIUM,
                company,
                ref,
                f"No activity with {deal.get('investor_name') or 'investor'} in {int(age)} days",
                days_since_activity=int(age),
                amount=deal.get("amount"),
                stake=deal.get("amount"),
                threshold=th.deal_stale_days,
            )
        )
    return out


def detect_issues(
    company: Mapping[str, Any],
    runway: RunwayEstimate,
    trajectories: list[GoalTrajectory],
    deals: list[Mapping[str, Any]],
    rounds: list[Mapping[str, Any]],
    now: Any,
    thresholds: DetectionThresholds | None = None,
) -> list[Issue]:
    th = thresholds or DetectionThresholds()
    issues: list[Issue] = []
    issues.extend(detect_runway_issues(company, runway, th))
    issues.extend(detect_data_stale(company, now, th))
    issues.extend(detect_goal_issues(company, trajectories, th))
    issues.extend(detect_pipeline_issues(company, deals, rounds, th))
    issues.extend(detect_deal_issues(company, deals, now, th))
    return issues
