from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import hashlib
from typing import Any

from backbone_engine.models import Action, EntityRef, GoalTrajectory, Issue, PreIssue, Source, SourceType, TrajectoryStatus


@dataclass(slots=True, frozen=True)
class Resolution:
    resolution_id: str
    title: str
    effort_days: float
    effectiveness: float
    steps: tuple[str, ...]

    @property
    def complexity(self) -> float:
        return round(min(1.0, self.effort_days / 30.0), 2)


def _r(resolution_id: str, title: str, effort: float, effectiveness: float, *steps: str) -> Resolution:
    return Resolution(resolution_id, title, float(effort), float(effectiveness), tuple(steps))


RESOLUTIONS: dict[str, Resolution] = {
    r.resolution_id: r
    for r in (
        _r("REDUCE_BURN", "Reduce burn", 7, 0.7,
           "Review the last three months of spend by category",
           "Identify non-critical costs to pause",
           "Agree a revised burn plan with the founders",
           "Track burn weekly against the new plan"),
        _r("ACCELERATE_FUNDRAISE", "Accelerate fundraise", 14, 0.8,
           "Refresh the investor target list",
           "Tighten the pitch narrative around recent traction",
           "Book first meetings in a two-week window",
           "Run a weekly pipeline review"),
        _r("BRIDGE_ROUND", "Raise a bridge round", 21, 0.9,
           "Size the bridge needed to reach the next milestone",
           "Sound out existing investors on participation",
           "Draft convertible terms",
           "Close commitments and wire funds"),
        _r("ACCELERATE_GOAL", "Accelerate goal", 7, 0.6,
           "Break the goal into weekly milestones",
           "Identify the main blocker",
           "Assign an owner for the blocker",
           "Review progress weekly"),
        _r("REVISE_TARGET", "Revise target", 1, 0.4,
           "Review why the target was missed",
           "Set a realistic revised target and date",
           "Communicate the change to stakeholders"),
        _r("ADD_RESOURCES", "Add resources", 14, 0.7,
           "Scope the extra capacity required",
           "Reallocate or hire for the gap",
           "Onboard the added resource",
           "Re-baseline the plan"),
        _r("FOLLOW_UP_INVESTOR", "Follow up with investor", 0.5, 0.5,
           "Send a short update on progress",
           "Ask about open questions or blockers",
           "Propose a concrete next step"),
        _r("SCHEDULE_CHECK_IN", "Schedule check-in", 0.25, 0.4,
           "Propose a time for a check-in",
           "Prepare two or three discussion points"),
        _r("PREPARE_ALTERNATIVES", "Prepare alternatives", 3, 0.6,
           "List fallback investors or options",
           "Warm up the top alternatives",
           "Keep the alternatives moving in parallel"),
        _r("SCHEDULE_TOUCHPOINT", "Schedule touchpoint", 0.5, 0.4,
           "Find a relevant reason to reach out",
           "Propose a call or coffee",
           "Log the conversation outcome"),
        _r("SEND_UPDATE", "Send update", 1, 0.35,
           "Draft a concise portfolio update",
           "Send to the relevant partners"),
        _r("REQUEST_MEETING", "Request meeting", 2, 0.5,
           "Clarify the purpose of the meeting",
           "Send the meeting request",
           "Prepare materials"),
        _r("ACCELERATE_OUTREACH", "Accelerate investor outreach", 3, 0.65,
           "Prioritise the top twenty investors",
           "Send personalised outreach",
           "Follow up within five days",
           "Track replies daily"),
        _r("EXPAND_INVESTOR_LIST", "Expand investor list", 2, 0.5,
           "Pull investors active at this stage and sector",
           "Filter by fund cycle and cheque size",
           "Add qualified names to the pipeline",
           "Start outreach to the new names"),
        _r("REVISIT_TERMS", "Revisit terms", 3, 0.55,
           "Benchmark the current terms",
           "Identify the sticking points",
           "Propose adjusted terms"),
        _r("PRIORITIZE_LEAD_CANDIDATES", "Prioritise lead candidates", 2, 0.6,
           "Shortlist funds able to lead",
           "Rank by conviction and fit",
           "Focus partner time on the top three",
           "Ask for a term sheet timeline"),
        _r("OFFER_LEAD_TERMS", "Offer lead terms", 3, 0.65,
           "Draft lead-friendly terms",
           "Share with the top candidate",
           "Negotiate to signature"),
        _r("EXPAND_SEARCH", "Expand lead search", 5, 0.5,
           "Widen the stage and geography filters",
           "Add strategic investors to the search",
           "Start outreach to the wider list"),
        _r("SEND_TOUCHPOINT", "Send touchpoint", 0.25, 0.3,
           "Send a short personal note"),
        _r("SCHEDULE_CALL", "Schedule call", 1, 0.45,
           "Propose a catch-up call",
           "Prepare context for the call"),
        _r("FIND_REASON_TO_CONNECT", "Find reason to connect", 1, 0.4,
           "Look for recent news or shared interests",
           "Reach out with the reason"),
        _r("REQUEST_DATA_UPDATE", "Request data update", 1, 0.5,
           "Ask the company for current cash and burn",
           "Record the new figures with their as-of date",
           "Re-run the portfolio review"),
        _r("SET_GOALS", "Set goals", 1, 0.4,
           "Agree the top three goals for the next two quarters",
           "Set a target and due date for each",
           "Record baseline values"),
        _r("REVENUE_PUSH", "Revenue push", 14, 0.7,
           "Review the sales pipeline by stage",
           "Focus the team on the deals closest to closing",
           "Add a short-term incentive",
           "Review weekly"),
        _r("PRODUCT_SPRINT", "Product sprint", 14, 0.6,
           "Cut scope to the core release",
           "Run a focused two-week sprint",
           "Ship and gather feedback",
           "Plan the next iteration"),
        _r("HIRING_PUSH", "Hiring push", 21, 0.5,
           "Confirm the roles and profiles",
           "Activate referrals and recruiters",
           "Run a compressed interview loop",
           "Close offers"),
        _r("PARTNERSHIP_OUTREACH", "Partnership outreach", 14, 0.6,
           "List the top partner candidates",
           "Find warm paths to each",
           "Pitch a pilot",
           "Agree success criteria"),
        _r("FUNDRAISE_CLOSE", "Close the round", 30, 0.9,
           "Confirm the lead and terms",
           "Fill the allocation",
           "Run confirmatory diligence",
           "Sign and close"),
    )
}

ISSUE_RESOLUTION = {
    "RUNWAY_CRITICAL": "BRIDGE_ROUND",
    "RUNWAY_WARNING": "ACCELERATE_FUNDRAISE",
    "DATA_MISSING": "REQUEST_DATA_UPDATE",
    "DATA_STALE": "REQUEST_DATA_UPDATE",
    "NO_GOALS": "SET_GOALS",
    "GOAL_MISSED": "REVISE_TARGET",
    "GOAL_STALLED": "ADD_RESOURCES",
    "GOAL_BEHIND": "ACCELERATE_GOAL",
    "NO_PIPELINE": "EXPAND_INVESTOR_LIST",
    "PIPELINE_GAP": "ACCELERATE_OUTREACH",
    "DEAL_STALE": "FOLLOW_UP_INVESTOR",
}

GOAL_RESOLUTION = {
    "fundraise": "FUNDRAISE_CLOSE",
    "round_completion": "FUNDRAISE_CLOSE",
    "revenue": "REVENUE_PUSH",
    "product": "PRODUCT_SPRINT",
    "hiring": "HIRING_PUSH",
    "partnership": "PARTNERSHIP_OUTREACH",
}

INACTIVE_GOAL_STATUSES = {"completed", "abandoned"}


def get_resolution(resolution_id: str | None) -> Resolution | None:
    return RESOLUTIONS.get(resolution_id or "")


def action_id_for(source_ref: str, resolution_id: str) -> str:
    digest = hashlib.sha256(f"{source_ref}|{resolution_id}".encode("utf-8")).hexdigest()[:16]
    return f"act-{digest}"


def _from_resolution(
    resolution: Resolution,
    source: Source,
    source_ref: str,
    company_id: str,
    entity_ref: EntityRef,
    title: str,
    now_iso: str | None,
    goal_id: str | None = None,
) -> Action:
    return Action(
        action_id=action_id_for(source_ref, resolution.resolution_id),
        title=title,
        company_id=company_id,
        entity_ref=entity_ref,
        sources=[source],
        steps=list(resolution.steps),
        resolution_id=resolution.resolution_id,
        goal_id=goal_id,
        complexity=resolution.complexity,
        created_at=now_iso,
    )


def actions_from_issues(issues: Iterable[Issue], now_iso: str | None = None) -> list[Action]:
    out: list[Action] = []
    for issue in issues:
        resolution = get_resolution(ISSUE_RESOLUTION.get(issue.issue_type, "SCHEDULE_CHECK_IN"))
        if resolution is None:
            continue
        source = Source(SourceType.ISSUE, issue.issue_id, {"issue_type": issue.issue_type, "severity": issue.severity.value})
        goal_id = issue.entity_ref.id if issue.entity_ref.type == "goal" else None
        out.append(
            _from_resolution(
                resolution, source, issue.issue_id, issue.company_id, issue.entity_ref,
                f"{resolution.title}: {issue.title}", now_iso, goal_id,
            )
        )
    return out


def actions_from_preissues(preissues: Iterable[PreIssue], company_id: str, now_iso: str | None = None) -> list[Action]:
    out: list[Action] = []
    for pre in preissues:
        for resolution_id in pre.preventative_actions[:1]:
            resolution = get_resolution(resolution_id)
            if resolution is None:
                continue
            source = Source(
                SourceType.PREISSUE,
                pre.preissue_id,
                {
                    "preissue_type": pre.preissue_type,
                    "severity": pre.severity.value,
                    "is_imminent": pre.escalation.is_imminent,
                },
            )
            goal_id = pre.entity_ref.id if pre.entity_ref.type == "goal" else None
            out.append(
                _from_resolution(
                    resolution, source, pre.preissue_id, pre.company_id or company_id, pre.entity_ref,
                    f"{resolution.title}: {pre.title}", now_iso, goal_id,
                )
            )
    return out


def goal_needs_action(goal: Mapping[str, Any], traj: GoalTrajectory | None) -> bool:
    if str(goal.get("status") or "active").lower() in INACTIVE_GOAL_STATUSES:
        return False
    if traj is None:
        return True
    if traj.status in (TrajectoryStatus.ACHIEVED, TrajectoryStatus.MISSED):
        return False
    if traj.days_left is not None and traj.days_left < 0:
        return False
    if traj.on_track is True and traj.probability_of_hit > 0.8:
        return False
    return True


def actions_from_goals(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    trajectories: Iterable[GoalTrajectory],
    now_iso: str | None = None,
) -> list[Action]:
    by_goal = {t.goal_id: t for t in trajectories}
    out: list[Action] = []
    for goal in goals:
        goal_id = str(goal.get("id"))
        traj = by_goal.get(goal_id)
        if not goal_needs_action(goal, traj):
            continue
        resolution = get_resolution(GOAL_RESOLUTION.get(str(goal.get("type")), "ACCELERATE_GOAL"))
        if resolution is None:
            continue
        name = str(goal.get("name") or goal_id)
        source = Source(
            SourceType.GOAL,
            goal_id,
            {"goal_type": goal.get("type"), "status": traj.status.value if traj else "unknown"},
        )
        out.append(
            _from_resolution(
                resolution, source, f"goal:{goal_id}", str(company.get("id")),
                EntityRef("goal", goal_id, name), f"{resolution.title}: {name}", now_iso, goal_id,
            )
        )
    return out
