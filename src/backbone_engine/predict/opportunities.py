from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import hashlib
import logging
from typing import Any

import numpy as np

from backbone_engine.models import Action, EntityRef, GoalTrajectory, OpportunityClass, Source, SourceType, Timing, TrajectoryStatus
from backbone_engine.raw.assumptions import ASSUMPTIONS, Assumptions
from backbone_engine.raw.dates import days_between, parse_ts


logger = logging.getLogger(__name__)

MAX_HOPS = 2
HOP_DECAY = 0.7
EVENT_WINDOW_DAYS = 60.0
ROLE_CHANGE_WINDOW_DAYS = 90.0
INTRO_GOAL_TYPES = ("fundraise", "partnership", "hiring")

EVENT_GOAL_TYPES = {
    "demo_day": ("fundraise",),
    "conference": ("fundraise",),
    "pitch_event": ("fundraise",),
    "industry_event": ("partnership", "revenue"),
    "job_fair": ("hiring",),
    "recruiting_event": ("hiring",),
}

COMPLEMENTARY_SECTORS = (
    ("fintech", "security"),
    ("healthtech", "ai"),
    ("ecommerce", "logistics"),
    ("saas", "analytics"),
)

URGENCY_TIMING = {"critical": Timing.NOW, "high": Timing.NOW, "medium": Timing.SOON, "low": Timing.LATER}


@dataclass(slots=True)
class IntroPath:
    source_id: str
    nodes: list[str]
    relationships: list[Mapping[str, Any]] = field(default_factory=list)

    @property
    def hops(self) -> int:
        return len(self.relationships)


def _is_active(goal: Mapping[str, Any]) -> bool:
    return str(goal.get("status") or "active").lower() == "active"


def _opportunity_id(opportunity_class: OpportunityClass, company_id: str, key: str) -> str:
    digest = hashlib.sha256(f"{opportunity_class.value}|{company_id}|{key}".encode("utf-8")).hexdigest()[:12]
    return f"opp-{digest}"


def _company_ref(company: Mapping[str, Any]) -> EntityRef:
    return EntityRef("company", str(company.get("id")), str(company.get("name") or ""))


def _opportunity(
    opportunity_class: OpportunityClass,
    company: Mapping[str, Any],
    key: str,
    title: str,
    rationale: str,
    now_iso: str | None,
    *,
    action_type: str | None = None,
    goal_id: str | None = None,
    timing: Timing = Timing.SOON,
    steps: list[str] | None = None,
    future_unlocks: list[dict[str, Any]] | None = None,
    act_now: str | None = None,
    **detail: Any,
) -> Action:
    company_id = str(company.get("id"))
    payload = {"opportunity_class": opportunity_class.value, "rationale": rationale}
    payload.update(detail)
    return Action(
        action_id=_opportunity_id(opportunity_class, company_id, key),
        title=title,
        company_id=company_id,
        entity_ref=_company_ref(company),
        sources=[Source(SourceType.OPPORTUNITY, key, payload)],
        steps=list(steps or []),
        action_type=action_type or opportunity_class.value,
        goal_id=goal_id,
        timing=timing,
        complexity=0.2,
        future_unlocks=list(future_unlocks or []),
        act_now_rationale=act_now,
        created_at=now_iso,
    )


# Introducer graph


def build_relationship_graph(relationships: Iterable[Mapping[str, Any]]) -> dict[str, list[tuple[str, Mapping[str, Any]]]]:
    graph: dict[str, list[tuple[str, Mapping[str, Any]]]] = {}
    for rel in relationships:
        a, b = rel.get("from_person_id"), rel.get("to_person_id")
        if not a or not b:
            continue
        graph.setdefault(str(a), []).append((str(b), rel))
        graph.setdefault(str(b), []).append((str(a), rel))
    for edges in graph.values():
        edges.sort(key=lambda e: (e[0], str(e[1].get("id"))))
    return graph


def find_paths(
    graph: Mapping[str, list[tuple[str, Mapping[str, Any]]]],
    sources: Iterable[str],
    target: str,
    max_hops: int = MAX_HOPS,
) -> list[IntroPath]:
    found: list[IntroPath] = []
    for source in sorted(set(sources)):
        if source == target:
            continue
        queue = deque([IntroPath(source, [source])])
        while queue:
            path = queue.popleft()
            if path.hops >= max_hops:
                continue
            for neighbor, rel in graph.get(path.nodes[-1], []):
                if neighbor in path.nodes:
                    continue
                nxt = IntroPath(source, path.nodes + [neighbor], path.relationships + [rel])
                if neighbor == target:
                    found.append(nxt)
                else:
                    queue.append(nxt)
    return found


def score_path(path: IntroPath) -> float:
    if not path.relationships:
        return 0.0
    strengths = [
        max(1e-6, float(r.get("strength") if r.get("strength") is not None else 50.0) / 100.0) for r in path.relationships
    ]
    geomean = float(np.exp(np.mean(np.log(strengths))))
    return geomean * HOP_DECAY ** (path.hops - 1)


def best_path(paths: list[IntroPath]) -> IntroPath | None:
    best: IntroPath | None = None
    best_score = -1.0
    for path in paths:
        s = score_path(path)
        if s > best_score:
            best, best_score = path, s
    return best


def is_obvious_path(path: IntroPath, now: Any) -> bool:
    if path.hops != 1:
        return False
    rel = path.relationships[0]
    touched = days_between(rel.get("last_touch_at"), now)
    if touched is not None and touched < 30:
        return True
    return float(rel.get("strength") or 0.0) >= 80.0


def _focus_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value or "")


def matches_investor(investor: Mapping[str, Any], company: Mapping[str, Any]) -> bool:
    stage_focus = _focus_text(investor.get("stage_focus")).lower()
    if stage_focus and str(company.get("stage") or "").lower() not in stage_focus:
        return False
    sector_focus = _focus_text(investor.get("sector_focus")).lower()
    sector = str(company.get("sector") or "").lower()
    if sector_focus and sector:
        wanted = [s.strip() for s in sector_focus.replace(";", ",").split(",") if s.strip()]
        if wanted and not any(s in sector for s in wanted):
            return False
    return True


def targets_for_goal(
    goal: Mapping[str, Any],
    company: Mapping[str, Any],
    people_by_id: Mapping[str, Mapping[str, Any]],
    investors: Iterable[Mapping[str, Any]],
) -> list[tuple[Mapping[str, Any], str]]:
    goal_type = str(goal.get("type"))
    out: list[tuple[Mapping[str, Any], str]] = []
    if goal_type == "fundraise":
        for inv in investors:
            person = people_by_id.get(str(inv.get("person_id")))
            if person is not None and matches_investor(inv, company):
                out.append((person, "stage/sector match"))
    elif goal_type == "partnership":
        for pid in sorted(people_by_id):
            person = people_by_id[pid]
            if person.get("org_type") == "company" and person.get("org_id") != company.get("id"):
                out.append((person, "potential partner"))
    elif goal_type == "hiring":
        for pid in sorted(people_by_id):
            tags = [str(t).lower() for t in people_by_id[pid].get("tags") or []]
            if any(k in t for t in tags for k in ("hiring", "recruiting", "talent")):
                out.append((people_by_id[pid], "hiring network"))
    return out


def introducer_ids(company: Mapping[str, Any], team: Iterable[Mapping[str, Any]]) -> list[str]:
    ids = {str(t.get("person_id")) for t in team if t.get("person_id")}
    ids.update(str(p) for p in company.get("founder_person_ids") or [])
    return sorted(ids)


def relationship_leverage(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    people: Iterable[Mapping[str, Any]],
    relationships: Iterable[Mapping[str, Any]],
    team: Iterable[Mapping[str, Any]],
    investors: Iterable[Mapping[str, Any]],
    now: Any,
    now_iso: str | None = None,
) -> list[Action]:
    introducers = introducer_ids(company, team)
    if not introducers:
        return []
    people_by_id = {str(p["id"]): p for p in people if p.get("id")}
    graph = build_relationship_graph(relationships)
    investors = list(investors)
    out: list[Action] = []
    for goal in goals:
        if str(goal.get("type")) not in INTRO_GOAL_TYPES or not _is_active(goal):
            continue
        for person, relevance in targets_for_goal(goal, company, people_by_id, investors):
            target_id = str(person.get("id"))
            path = best_path(find_paths(graph, introducers, target_id))
            if path is None or is_obvious_path(path, now):
                continue
            introducer = people_by_id.get(path.source_id, {})
            names = " -> ".join(str(people_by_id.get(n, {}).get("name") or n) for n in path.nodes)
            days_left = days_between(now, goal.get("due"))
            out.append(
                _opportunity(
                    OpportunityClass.RELATIONSHIP_LEVERAGE,
                    company,
                    f"{goal.get('id')}|{target_id}",
                    f"Intro {person.get('name') or target_id} to {company.get('name')} via {introducer.get('name') or 'connection'}",
                    f"{person.get('name') or target_id} could help with {goal.get('name') or goal.get('type')}. "
                    f"Path: {names}. Relevance: {relevance}.",
                    now_iso,
                    goal_id=str(goal.get("id")),
                    timing=Timing.NOW if days_left is not None and days_left <= 90 else Timing.SOON,
                    steps=[
                        f"Confirm {introducer.get('name') or path.source_id} is comfortable making the intro",
                        "Draft a forwardable blurb",
                        "Send the intro request",
                    ],
                    path_length=path.hops,
                    path_score=round(score_path(path), 4),
                    introducer_id=path.source_id,
                    target_person_id=target_id,
                )
            )
    return out


# Timing windows


def _event_matches(event: Mapping[str, Any], goal: Mapping[str, Any]) -> bool:
    return str(goal.get("type") or "").lower() in EVENT_GOAL_TYPES.get(str(event.get("type") or "").lower(), ())


def _role_change_matches(change: Mapping[str, Any], goal: Mapping[str, Any]) -> bool:
    goal_type = str(goal.get("type") or "")
    role = str(change.get("new_role") or "").lower()
    if goal_type == "fundraise":
        return any(k in role for k in ("partner", "investor", "principal"))
    return goal_type in ("partnership", "revenue")


def timing_windows(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    external_events: Iterable[Mapping[str, Any]],
    fund_cycles: Iterable[Mapping[str, Any]],
    role_changes: Iterable[Mapping[str, Any]],
    now: Any,
    now_iso: str | None = None,
    assumptions: Assumptions = ASSUMPTIONS,
) -> list[Action]:
    active = [g for g in goals if _is_active(g)]
    out: list[Action] = []
    name = company.get("name")

    for event in sorted(external_events, key=lambda e: str(e.get("id"))):
        days_until = days_between(now, event.get("date"))
        if days_until is None or days_until < 0 or days_until > EVENT_WINDOW_DAYS:
            continue
        relevant = [g for g in active if _event_matches(event, g)]
        if not relevant:
            continue
        urgency = assumptions.timing.bucket(days_until)
        out.append(
            _opportunity(
                OpportunityClass.TIMING_WINDOW,
                company,
                f"event|{event.get('id')}",
                f"{name}: Apply to {event.get('name')}",
                f"{event.get('name')} on {event.get('date')} aligns with {relevant[0].get('name')}. "
                f"Deadline in {int(days_until)} days.",
                now_iso,
                goal_id=str(relevant[0].get("id")),
                timing=URGENCY_TIMING[urgency],
                steps=["Check the application deadline", "Prepare the submission", "Apply"],
                window_type=str(event.get("type") or "conference"),
                days_until_window=int(days_until),
                urgency=urgency,
            )
        )

    fundraise = [g for g in active if g.get("type") == "fundraise"]
    if fundraise:
        for cycle in sorted(fund_cycles, key=lambda c: str(c.get("id"))):
            if str(cycle.get("status") or "").lower() != "deploying":
                continue
            firm = cycle.get("firm_name") or cycle.get("firm_id")
            fund = f"Fund {cycle['fund_number']}" if cycle.get("fund_number") else "a new fund"
            out.append(
                _opportunity(
                    OpportunityClass.TIMING_WINDOW,
                    company,
                    f"fund_cycle|{cycle.get('id')}",
                    f"{name}: Reach out to {firm} (deploying {fund})",
                    f"{firm} is actively deploying. Window closes ~{cycle.get('estimated_close_date') or 'soon'}.",
                    now_iso,
                    goal_id=str(fundraise[0].get("id")),
                    timing=Timing.NOW,
                    steps=["Find the partner covering this stage", "Request a warm intro", "Send the deck"],
                    window_type="fund_cycle",
                    firm_id=cycle.get("firm_id"),
                )
            )

    for change in sorted(role_changes, key=lambda c: str(c.get("id"))):
        since = days_between(change.get("changed_at"), now)
        if since is None or since > ROLE_CHANGE_WINDOW_DAYS:
            continue
        relevant = [g for g in active if _role_change_matches(change, g)]
        if not relevant:
            continue
        person = change.get("person_name") or change.get("person_id")
        out.append(
            _opportunity(
                OpportunityClass.TIMING_WINDOW,
                company,
                f"role_change|{change.get('id')}",
                f"{name}: Reconnect with {person} (now at {change.get('new_org')})",
                f"{person} moved to {change.get('new_org')} {int(max(0.0, since))} days ago. "
                f"New role: {change.get('new_role')}. Relevant to {relevant[0].get('name')}.",
                now_iso,
                goal_id=str(relevant[0].get("id")),
                timing=Timing.SOON,
                steps=["Send congratulations on the new role", "Suggest a catch-up"],
                window_type="role_change",
                person_id=change.get("person_id"),
                days_since_change=int(max(0.0, since)),
            )
        )
    return out


# Cross-entity synergy


def complementary(sector_a: str, sector_b: str) -> bool:
    a, b = sector_a.lower(), sector_b.lower()
    if not a or not b:
        return False
    return any((s1 in a and s2 in b) or (s2 in a and s1 in b) for s1, s2 in COMPLEMENTARY_SECTORS)


def _synergy_goals(goals_by_company: Mapping[str, list[Mapping[str, Any]]], company: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return [
        g for g in goals_by_company.get(str(company.get("id")), [])
        if _is_active(g) and g.get("type") in ("partnership", "product")
    ]


def cross_entity_synergy(
    companies: Iterable[Mapping[str, Any]],
    goals_by_company: Mapping[str, list[Mapping[str, Any]]],
    now_iso: str | None = None,
) -> list[Action]:
    portfolio = sorted((c for c in companies if c.get("is_portfolio")), key=lambda c: str(c.get("id")))
    seen: set[str] = set()
    out: list[Action] = []
    for i, a in enumerate(portfolio):
        for b in portfolio[i + 1:]:
            if not complementary(str(a.get("sector") or ""), str(b.get("sector") or "")):
                continue
            pair = "::".join(sorted((str(a.get("id")), str(b.get("id")))))
            if pair in seen:
                continue
            # owned by whichever side has a partnership or product goal
            owner, partner, relevant = a, b, _synergy_goals(goals_by_company, a)
            if not relevant:
                owner, partner, relevant = b, a, _synergy_goals(goals_by_company, b)
            if not relevant:
                continue
            seen.add(pair)
            out.append(
                _opportunity(
                    OpportunityClass.CROSS_ENTITY_SYNERGY,
                    owner,
                    f"synergy|{pair}",
                    f"Connect {owner.get('name')} <-> {partner.get('name')}: technology integration",
                    f"Complementary capabilities: {owner.get('sector')} + {partner.get('sector')}",
                    now_iso,
                    goal_id=str(relevant[0].get("id")),
                    timing=Timing.SOON,
                    steps=["Brief both founders", "Make the introduction", "Scope an integration pilot"],
                    synergy_type="tech_integration",
                    other_company_id=str(partner.get("id")),
                    direction="bidirectional",
                )
            )
    return out


# Goal acceleration


def accelerators_for(goal: Mapping[str, Any], company: Mapping[str, Any], market: Mapping[str, Any]) -> list[tuple[str, str, str]]:
    goal_type = goal.get("type")
    out: list[tuple[str, str, str]] = []
    if goal_type == "fundraise":
        milestones = list(company.get("recent_milestones") or [])
        if milestones:
            out.append((
                "narrative_shift",
                "Update fundraise narrative with recent milestones",
                f"Recent milestones ({', '.join(str(m) for m in milestones[:3])}) could strengthen fundraise positioning",
            ))
        out.append(("anchor_strategy", "Identify and prioritise anchor investor candidates",
                    "A credible anchor investor often accelerates round momentum"))
        out.append(("compressed_timeline", "Consider compressed fundraise timeline",
                    "Creating urgency can accelerate investor decisions"))
    elif goal_type == "revenue":
        out.append(("channel_strategy", "Explore channel partnership for faster distribution",
                    "Channel partners can accelerate revenue faster than direct sales alone"))
        out.append(("pricing_experiment", "Test pricing optimisation",
                    "Pricing changes can accelerate revenue without additional sales effort"))
    elif goal_type == "hiring":
        shutdowns = list(market.get("recent_shutdowns") or [])
        if shutdowns:
            out.append(("acqui_hire", "Explore acqui-hire from recent shutdowns",
                        f"Recent shutdowns in sector: {', '.join(str(s) for s in shutdowns[:3])}"))
        out.append(("referral_amplification", "Amplify employee referral program",
                    "Referrals typically close faster and perform better"))
    elif goal_type == "product":
        out.append(("scope_optimization", "Review scope for MVP acceleration",
                    "Cutting scope can dramatically accelerate time-to-ship"))
    return out


def goal_acceleration(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    trajectories: Iterable[GoalTrajectory],
    market: Mapping[str, Any] | None = None,
    now_iso: str | None = None,
) -> list[Action]:
    by_goal = {t.goal_id: t for t in trajectories}
    out: list[Action] = []
    for goal in goals:
        if not _is_active(goal):
            continue
        traj = by_goal.get(str(goal.get("id")))
        if traj is not None and traj.status == TrajectoryStatus.ON_TRACK:
            continue
        urgent = traj is not None and traj.days_left is not None and traj.days_left < 30
        for kind, title, rationale in accelerators_for(goal, company, market or {}):
            out.append(
                _opportunity(
                    OpportunityClass.GOAL_ACCELERATION,
                    company,
                    f"{goal.get('id')}|{kind}",
                    f"{company.get('name')}: {title}",
                    rationale,
                    now_iso,
                    action_type=kind,
                    goal_id=str(goal.get("id")),
                    timing=Timing.NOW if urgent else Timing.SOON,
                    steps=["Discuss with the founders", "Agree an owner", "Review in two weeks"],
                    accelerator_type=kind,
                    trajectory_status=traj.status.value if traj else "unknown",
                )
            )
    return out


# Optionality builders


def months_until(due: Any, now: Any) -> float | None:
    days = days_between(now, due)
    return None if days is None else days / 30.0


def months_to_need(goal_type: str, goals: Iterable[Mapping[str, Any]], now: Any) -> float:
    for goal in goals:
        if goal.get("type") == goal_type and _is_active(goal):
            months = months_until(goal.get("due"), now)
            if months is not None:
                return max(0.0, months - 1.0)
            return 3.0
    return 6.0


def dormant_relationships(
    company: Mapping[str, Any],
    relationships: Iterable[Mapping[str, Any]],
    people_by_id: Mapping[str, Mapping[str, Any]],
    now: Any,
    assumptions: Assumptions = ASSUMPTIONS,
) -> list[dict[str, Any]]:
    founders = {str(p) for p in company.get("founder_person_ids") or []}
    if not founders:
        return []
    threshold = assumptions.relationships.cold_threshold_days / 2.0
    out: list[dict[str, Any]] = []
    for rel in sorted(relationships, key=lambda r: str(r.get("id"))):
        a, b = str(rel.get("from_person_id")), str(rel.get("to_person_id"))
        if a not in founders and b not in founders:
            continue
        dormant = days_between(rel.get("last_touch_at"), now)
        dormant = 999.0 if dormant is None else dormant
        if dormant < threshold:
            continue
        strength = float(rel.get("strength") or 0.0)
        if assumptions.relationships.band(strength) == "weak":
            continue
        external = b if a in founders else a
        person = people_by_id.get(external)
        if person is None:
            continue
        org_type = str(person.get("org_type") or "")
        if org_type in ("investor", "fund"):
            domain = "fundraise"
        elif org_type == "company":
            domain = "partnership"
        else:
            continue
        out.append(
            {
                "relationship_id": rel.get("id"),
                "person_id": external,
                "person_name": person.get("name") or external,
                "days_dormant": int(dormant),
                "goal_domain": domain,
                "strength": strength,
            }
        )
    return out


def optionality_builders(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    relationships: Iterable[Mapping[str, Any]],
    people: Iterable[Mapping[str, Any]],
    now: Any,
    now_iso: str | None = None,
    assumptions: Assumptions = ASSUMPTIONS,
) -> list[Action]:
    goals = list(goals)
    people_by_id = {str(p["id"]): p for p in people if p.get("id")}
    policy = assumptions.optionality
    out: list[Action] = []
    for rel in dormant_relationships(company, relationships, people_by_id, now, assumptions):
        months = months_to_need(rel["goal_domain"], goals, now)
        discount = policy.discount(months)
        if discount < policy.min_discount:
            continue
        if rel["days_dormant"] > assumptions.relationships.cold_threshold_days:
            act_now = "Relationship at risk of going cold; reconnecting now preserves the option"
        else:
            act_now = "Building rapport now means relationship is warm when needed"
        out.append(
            _opportunity(
                OpportunityClass.OPTIONALITY_BUILDER,
                company,
                f"warm|{rel['person_id']}",
                f"{company.get('name')}: Warm relationship with {rel['person_name']}",
                f"{rel['person_name']} could help with future {rel['goal_domain']} goals. "
                f"Relationship dormant for {rel['days_dormant']} days.",
                now_iso,
                timing=Timing.SOON if months < 6 else Timing.LATER,
                steps=["Find a reason to reconnect", "Send a personal note", "Offer something useful"],
                future_unlocks=[
                    {
                        "action_type": f"intro_via_{rel['person_id']}",
                        "goal_domain": rel["goal_domain"],
                        "friction_reduction": "Warm relationship reduces intro friction from cold to warm",
                    }
                ],
                act_now=act_now,
                time_discount=round(discount, 4),
                months_to_need=round(months, 2),
            )
        )

    upcoming = None
    for goal in goals:
        months = months_until(goal.get("due"), now)
        if goal.get("type") == "fundraise" and _is_active(goal) and months is not None and 0 <= months <= 6:
            upcoming = (goal, months)
            break
    if upcoming is not None and not company.get("has_fundraise_deck"):
        goal, months = upcoming
        out.append(
            _opportunity(
                OpportunityClass.OPTIONALITY_BUILDER,
                company,
                f"fundraise_prep|{goal.get('id')}",
                f"{company.get('name')}: Prepare fundraise materials early",
                f"Fundraise goal due in {round(months)} months. Having materials ready enables opportunistic conversations.",
                now_iso,
                action_type="fundraise_prep",
                goal_id=str(goal.get("id")),
                timing=Timing.NOW if months < 3 else Timing.SOON,
                steps=["Draft the deck", "Build the data room", "Review with the partner"],
                future_unlocks=[
                    {
                        "action_type": "opportunistic_investor_meeting",
                        "goal_domain": "fundraise",
                        "friction_reduction": "Ready materials enable same-week follow-up on warm intros",
                    }
                ],
                act_now="Materials take 2-4 weeks to prepare; starting now ensures readiness",
            )
        )
    return out


def company_opportunities(
    company: Mapping[str, Any],
    goals: list[Mapping[str, Any]],
    trajectories: list[GoalTrajectory],
    raw: Mapping[str, Any],
    now: Any,
    now_iso: str | None = None,
) -> list[Action]:
    people = list(raw.get("people") or [])
    relationships = [r for r in raw.get("relationships") or [] if isinstance(r, Mapping)]
    out: list[Action] = []
    out.extend(
        relationship_leverage(
            company, goals, people, relationships, raw.get("team") or [], raw.get("investors") or [], now, now_iso
        )
    )
    out.extend(
        timing_windows(
            company, goals, raw.get("external_events") or [], raw.get("fund_cycles") or [],
            raw.get("role_changes") or [], now, now_iso,
        )
    )
    out.extend(goal_acceleration(company, goals, trajectories, raw.get("market_data") or {}, now_iso))
    out.extend(optionality_builders(company, goals, relationships, people, now, now_iso))
    logger.debug("company %s: %d opportunity candidates", company.get("id"), len(out))
    return out


def validate_opportunity(action: Action) -> list[str]:
    problems: list[str] = []
    src = action.primary_source
    if src is None or src.source_type != SourceType.OPPORTUNITY:
        problems.append("opportunity must carry an OPPORTUNITY source")
        return problems
    if src.detail.get("opportunity_class") == OpportunityClass.OPTIONALITY_BUILDER.value:
        if not action.future_unlocks:
            problems.append("optionality builder must declare future_unlocks")
        if not action.act_now_rationale:
            problems.append("optionality builder must explain why to act now")
    if parse_ts(action.created_at) is None and action.created_at is not None:
        problems.append("created_at is not a timestamp")
    return problems
