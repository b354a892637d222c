from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
from typing import Any

from backbone_engine.models import Action, EntityRef, GoalTrajectory, Source, SourceType, Timing
from backbone_engine.predict.opportunities import IntroPath, build_relationship_graph, find_paths, introducer_ids, score_path
from backbone_engine.predict.trust import TrustRisk, assess_trust_risk
from backbone_engine.raw.assumptions import ASSUMPTIONS, IntroPolicy
from backbone_engine.raw.dates import days_between, parse_ts


logger = logging.getLogger(__name__)

INTRO_GOAL_TYPES = ("fundraise", "partnership", "hiring")
TARGET_ORG_TYPES = {
    "fundraise": ("investor", "external"),
    "partnership": ("company", "external"),
    "hiring": ("company", "external"),
}
HIRING_TAGS = {"hiring", "recruiting", "talent", "engineering", "sales"}
ACTIVE_DEAL_STATUSES = {"meeting", "dd", "termsheet"}
NEVER_TRUST_SCORE = 80.0


def _progress_pct(goal: Mapping[str, Any]) -> float:
    target = float(goal.get("target") or 0.0)
    if target <= 0:
        return 0.0
    return float(goal.get("current") or 0.0) / target * 100.0


def _days_remaining(goal: Mapping[str, Any], now: Any) -> float:
    days = days_between(now, goal.get("due"))
    return 0.0 if days is None else float(int(days))


def is_goal_blocked(goal: Mapping[str, Any], deals: Iterable[Mapping[str, Any]], now: Any) -> bool:
    if str(goal.get("status") or "active") != "active":
        return False
    days = _days_remaining(goal, now)
    progress = _progress_pct(goal)
    goal_type = goal.get("type")
    if goal_type == "fundraise":
        committed = sum(
            float(d.get("amount") or 0.0) * float(d.get("probability") or 0.0) / 100.0
            for d in deals
            if d.get("status") in ("termsheet", "dd")
        )
        gap = float(goal.get("target") or 0.0) - float(goal.get("current") or 0.0) - committed
        if gap > 0 and days < 60:
            return True
    elif goal_type == "partnership":
        if progress < 50 and days < 45:
            return True
    elif goal_type == "hiring":
        expected = max(0.0, 100.0 - days / 90.0 * 100.0)
        if progress < expected * 0.7:
            return True
    expected_pct = min(100.0, (90.0 - days) / 90.0 * 100.0)
    return progress < expected_pct * 0.6


def potential_targets(
    goal: Mapping[str, Any],
    company: Mapping[str, Any],
    people: Iterable[Mapping[str, Any]],
    investors: list[Mapping[str, Any]],
) -> list[tuple[Mapping[str, Any], float]]:
    goal_type = str(goal.get("type"))
    org_types = TARGET_ORG_TYPES.get(goal_type, ())
    sector = str(company.get("sector") or "").lower()
    stage = str(company.get("stage") or "").lower()
    out: list[tuple[Mapping[str, Any], float]] = []
    for person in sorted(people, key=lambda p: str(p.get("id"))):
        if person.get("org_type") not in org_types or person.get("org_id") == company.get("id"):
            continue
        tags = [str(t).lower() for t in person.get("tags") or []]
        if goal_type == "fundraise" and person.get("org_type") == "investor":
            inv = next(
                (i for i in investors if i.get("person_id") == person.get("id") or i.get("id") == person.get("org_id")),
                None,
            )
            if inv is None:
                continue
            stage_match = bool(stage) and stage in str(inv.get("stage_focus") or "").lower()
            sector_match = bool(sector) and sector in str(inv.get("sector_focus") or "").lower()
            if stage_match or sector_match:
                out.append((person, (50.0 if stage_match else 0.0) + (50.0 if sector_match else 0.0)))
        elif goal_type == "partnership":
            sector_match = any(t and t in sector for t in tags)
            if sector_match or person.get("org_type") == "external":
                out.append((person, 70.0 if sector_match else 30.0))
        elif goal_type == "hiring":
            if any(t in HIRING_TAGS for t in tags):
                out.append((person, 50.0))
    return out


def conversion_lift(path: IntroPath, policy: IntroPolicy = ASSUMPTIONS.intros) -> dict[str, Any]:
    if path.hops <= 1:
        return {
            "conversion_lift": 1.0,
            "expected_conversion": policy.one_hop_baseline,
            "is_second_order": False,
            "include": True,
        }
    strengths = [float(r.get("strength") if r.get("strength") is not None else 50.0) for r in path.relationships]
    chain = 1.0
    for s in strengths:
        chain *= s / 100.0
    avg = sum(strengths) / len(strengths)
    expected = policy.one_hop_baseline * chain * 0.6 ** (path.hops - 1) * (avg / 50.0)
    lift = expected / policy.one_hop_baseline
    return {
        "conversion_lift": round(lift, 2),
        "expected_conversion": round(expected, 3),
        "is_second_order": True,
        "include": lift >= policy.second_order_min_lift,
    }


def filter_second_order(paths: list[IntroPath], policy: IntroPolicy = ASSUMPTIONS.intros) -> list[tuple[IntroPath, dict[str, Any]]]:
    scored = [(p, conversion_lift(p, policy)) for p in paths]
    kept = [(p, c) for p, c in scored if c["include"]]
    second = [c for _, c in scored if c["is_second_order"]]
    if second:
        rate = sum(1 for _, c in kept if c["is_second_order"]) / len(second)
        # Mostly-filtered second-order paths are noise; fall back to direct intros.
        if rate < 0.2:
            return [(p, c) for p, c in kept if not c["is_second_order"]]
    return kept


def intro_probability(path: IntroPath, relevance: float) -> float:
    return round(min(0.8, max(0.1, score_path(path) * relevance / 100.0)), 4)


def optionality_gain(person: Mapping[str, Any]) -> float:
    gain = 0.0
    org_type = person.get("org_type")
    if org_type == "investor":
        gain += 30
        if "founder-friendly" in (person.get("tags") or []):
            gain += 10
    elif org_type == "external":
        gain += 20
        if any(r in str(person.get("role") or "") for r in ("CEO", "CTO", "Partner")):
            gain += 15
    elif org_type == "company":
        gain += 25
    return min(100.0, gain)


def intro_timing(
    goal: Mapping[str, Any],
    deals: list[Mapping[str, Any]],
    trust: TrustRisk,
    probability: float,
    trajectory: GoalTrajectory | None,
    now: Any,
) -> tuple[Timing, list[str], float]:
    reasons: list[str] = []
    score = 0
    confidence = 0.5
    days = _days_remaining(goal, now)
    progress = _progress_pct(goal)
    gap = 100.0 - progress

    if gap > 70:
        score += 2
        confidence += 0.1
        reasons.append(f"Large gap to target ({gap:.0f}% remaining)")
    elif gap > 40:
        score += 1
        reasons.append(f"Moderate gap to target ({gap:.0f}% remaining)")
    else:
        confidence += 0.15
        reasons.append(f"Goal on track ({progress:.0f}% complete)")

    if days < 21:
        score += 3
        confidence += 0.15
        reasons.append(f"Critical: {int(days)} days remaining")
    elif days < 45:
        score += 2
        confidence += 0.1
        reasons.append(f"Approaching deadline: {int(days)} days")
    elif days < 90:
        score += 1
        reasons.append(f"Reasonable runway: {int(days)} days")
    else:
        confidence -= 0.1
        reasons.append(f"Ample time: {int(days)} days")

    if trajectory is not None:
        if trajectory.velocity is not None and trajectory.velocity < 0:
            score += 2
            confidence += 0.1
            reasons.append("Negative velocity - losing ground")
        elif trajectory.probability_of_hit < 0.3:
            score += 2
            confidence += 0.1
            reasons.append(f"Low probability of hit ({trajectory.probability_of_hit * 100:.0f}%)")
        elif trajectory.probability_of_hit > 0.7:
            score -= 1
            confidence += 0.1
            reasons.append(f"Good probability of hit ({trajectory.probability_of_hit * 100:.0f}%)")

    if goal.get("type") == "fundraise":
        ts = parse_ts(now)
        month = ts.month if ts else 0
        if 1 <= month <= 3:
            score += 1
            confidence += 0.05
            reasons.append("Q1 - favourable fundraising season")
        elif 9 <= month <= 11:
            score += 1
            confidence += 0.05
            reasons.append("Q4 - favourable fundraising season")
        elif month in (7, 8):
            score -= 1
            reasons.append("Summer - slower investor activity")
        active = sum(1 for d in deals if d.get("status") in ACTIVE_DEAL_STATUSES)
        if active == 0:
            score += 2
            confidence += 0.1
            reasons.append("No active deals - pipeline needs intros")
        elif active >= 3:
            score -= 1
            reasons.append(f"{active} active deals - pipeline healthy")

    if trust.score > 70:
        score -= 3
        confidence += 0.15
        reasons.append(f"High trust risk ({trust.score:.0f}) - delay recommended")
    elif trust.score > 50:
        score -= 1
        reasons.append(f"Moderate trust risk ({trust.score:.0f})")

    if probability < 0.3:
        score -= 1
        reasons.append(f"Low success probability ({probability * 100:.0f}%)")
    elif probability > 0.6:
        score += 1
        confidence += 0.1
        reasons.append(f"Good success probability ({probability * 100:.0f}%)")

    if trust.score > NEVER_TRUST_SCORE:
        timing = Timing.NEVER
        reasons.insert(0, "Blocked: trust risk too high")
        confidence = 0.9
    elif score >= 6 and confidence > 0.6:
        timing = Timing.NOW
        reasons.insert(0, "Immediate action recommended")
    elif score >= 3 and confidence > 0.5:
        timing = Timing.SOON
        reasons.insert(0, "Action recommended within 2-4 weeks")
    else:
        timing = Timing.LATER
        reasons.insert(0, "Wait for better signal or conditions")
    return timing, reasons, round(min(1.0, max(0.0, confidence)), 2)


def company_introductions(
    company: Mapping[str, Any],
    goals: Iterable[Mapping[str, Any]],
    deals: list[Mapping[str, Any]],
    trajectories: Iterable[GoalTrajectory],
    raw: Mapping[str, Any],
    now: Any,
    now_iso: str | None = None,
) -> list[Action]:
    people = [p for p in raw.get("people") or [] if p.get("id")]
    people_by_id = {str(p["id"]): p for p in people}
    investors = list(raw.get("investors") or [])
    introducers = introducer_ids(company, raw.get("team") or [])
    if not introducers:
        return []
    graph = build_relationship_graph(raw.get("relationships") or [])
    by_goal = {t.goal_id: t for t in trajectories}
    out: list[Action] = []
    for goal in goals:
        if goal.get("type") not in INTRO_GOAL_TYPES or not is_goal_blocked(goal, deals, now):
            continue
        goal_id = str(goal.get("id"))
        for person, relevance in potential_targets(goal, company, people, investors):
            target_id = str(person["id"])
            candidates = filter_second_order(find_paths(graph, introducers, target_id))
            if not candidates:
                continue
            path, lift = max(
                candidates,
                key=lambda pc: (score_path(pc[0]) * pc[1]["conversion_lift"], pc[0].source_id, -pc[0].hops),
            )
            first = path.relationships[0]
            trust = assess_trust_risk(
                first.get("strength"),
                days_between(first.get("last_touch_at"), now),
                int(first.get("intro_count") or 0),
                path.hops,
            )
            probability = intro_probability(path, relevance)
            timing, reasons, timing_conf = intro_timing(goal, deals, trust, probability, by_goal.get(goal_id), now)
            if timing == Timing.NEVER or trust.band == "high":
                continue
            introducer = people_by_id.get(path.source_id, {})
            name = person.get("name") or target_id
            rationale = [
                f'Goal "{goal.get("name") or goal_id}" needs acceleration.',
                f"{name} ({person.get('role') or 'Contact'}) is relevant with score {relevance:.0f}.",
                f"Path: {introducer.get('name') or path.source_id} can introduce.",
                f"Trust risk: {trust.band} ({trust.score:.0f}/100).",
                f"Timing: {timing.value} - {reasons[0]}",
            ]
            out.append(
                Action(
                    action_id=f"intro-{company.get('id')}-{goal_id}-{target_id}",
                    title=f"Introduce {name} to {company.get('name')}",
                    company_id=str(company.get("id")),
                    entity_ref=EntityRef("company", str(company.get("id")), str(company.get("name") or "")),
                    sources=[
                        Source(
                            SourceType.INTRODUCTION,
                            target_id,
                            {
                                "introducer_id": path.source_id,
                                "target_person_id": target_id,
                                "path": list(path.nodes),
                                "path_length": path.hops,
                                "probability": probability,
                                "relevance_score": relevance,
                                "optionality_gain": optionality_gain(person),
                                "trust_risk": trust.to_dict(),
                                "timing_rationale": reasons,
                                "timing_confidence": timing_conf,
                                "rationale": rationale,
                                **lift,
                            },
                        )
                    ],
                    steps=[
                        f"Ask {introducer.get('name') or path.source_id} for a double opt-in intro",
                        "Send a forwardable blurb",
                        "Log the intro outcome",
                    ],
                    action_type="introduction",
                    goal_id=goal_id,
                    timing=timing,
                    complexity=0.1,
                    created_at=now_iso,
                )
            )
    logger.debug("company %s: %d introductions", company.get("id"), len(out))
    return out


def trust_risk_by_action(actions: Iterable[Action]) -> dict[str, float]:
    out: dict[str, float] = {}
    for action in actions:
        src = action.primary_source
        if src is None or src.source_type != SourceType.INTRODUCTION:
            continue
        risk = src.detail.get("trust_risk") or {}
        if "normalized" in risk:
            out[action.action_id] = float(risk["normalized"])
    return out
