from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

import numpy as np

from backbone_engine.models import (
    CostOfDelayCurve,
    EntityRef,
    EscalationWindow,
    GoalTrajectory,
    MetricSnapshot,
    PreIssue,
    RunwayEstimate,
    Severity,
)
from backbone_engine.predict.issues import active_round, open_deals
from backbone_engine.raw.dates import add_days, days_between


logger = logging.getLogger(__name__)

PORTFOLIO_SCOPE = "_portfolio"

TYPE_MULTIPLIER = {
    "RUNWAY_BREACH": 1.5,
    "GOAL_MISS": 1.0,
    "DEAL_STALL": 1.2,
    "FIRM_RELATIONSHIP_DECAY": 0.7,
    "ROUND_STALL": 1.2,
    "LEAD_VACANCY": 1.3,
    "CONNECTION_DORMANT": 0.6,
}

IMPACT_MAGNITUDE = {
    "RUNWAY_BREACH": 80.0,
    "RUNWAY_COMPRESSION": 80.0,
    "GOAL_MISS": 60.0,
    "GOAL_FEASIBILITY": 60.0,
    "DEPENDENCY_RISK": 50.0,
    "DEAL_STALL": 50.0,
    "ROUND_STALL": 55.0,
    "LEAD_VACANCY": 60.0,
    "TIMING_WINDOW": 70.0,
    "DATA_BLINDSPOT": 40.0,
    "FIRM_RELATIONSHIP_DECAY": 30.0,
    "CONNECTION_DORMANT": 25.0,
}

GOAL_TYPE_PREVENTION = {
    "fundraise": "ACCELERATE_FUNDRAISE",
    "round_completion": "ACCELERATE_FUNDRAISE",
    "hiring": "HIRING_PUSH",
    "product": "PRODUCT_SPRINT",
    "revenue": "REVENUE_PUSH",
    "deal_close": "FOLLOW_UP_INVESTOR",
}

HARD_DEPENDENCIES = ("relationship", "regulatory")


@dataclass(slots=True, frozen=True)
class ForecastConfig:
    imminent_days: float = 7.0
    runway_breach_months: float = 9.0
    runway_breach_high_months: float = 6.0
    required_runway_months: float = 12.0
    goal_miss_suppress_probability: float = 0.6
    deal_stall_days: float = 14.0
    firm_decay_days: float = 60.0
    dormant_connection_days: float = 90.0
    dormant_strength_min: float = 40.0
    dependency_horizon_days: float = 120.0
    dependency_unmet_min: float = 0.4
    lead_vacancy_days: float = 30.0
    blindspot_ratio_min: float = 0.5
    escalation_buffers: dict[str, float] = field(
        default_factory=lambda: {
            "RUNWAY_BREACH": 90.0,
            "RUNWAY_COMPRESSION": 90.0,
            "GOAL_MISS": 14.0,
            "GOAL_FEASIBILITY": 14.0,
            "DEAL_STALL": 7.0,
            "default": 14.0,
        }
    )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "ForecastConfig":
        raw = dict(raw or {})
        base = cls()
        buffers = dict(base.escalation_buffers)
        buffers.update({str(k): float(v) for k, v in (raw.pop("escalation_buffers", None) or {}).items()})
        kwargs: dict[str, Any] = {}
        for name in (
            "imminent_days",
            "runway_breach_months",
            "runway_breach_high_months",
            "required_runway_months",
            "goal_miss_suppress_probability",
            "deal_stall_days",
            "firm_decay_days",
            "dormant_connection_days",
            "dormant_strength_min",
            "lead_vacancy_days",
            "blindspot_ratio_min",
            "dependency_horizon_days",
            "dependency_unmet_min",
        ):
            if name in raw:
                kwargs[name] = float(raw[name])
        return cls(escalation_buffers=buffers, **kwargs)

    def buffer_for(self, preissue_type: str) -> float:
        return float(self.escalation_buffers.get(preissue_type, self.escalation_buffers.get("default", 14.0)))


def _clip(value: float, low: float, high: float) -> float:
    return float(np.clip(value, low, high))


def compute_escalation(preissue_type: str, time_to_breach_days: float, now: Any, cfg: ForecastConfig) -> EscalationWindow:
    buffer = cfg.buffer_for(preissue_type)
    delta = max(0.0, float(time_to_breach_days) - buffer)
    return EscalationWindow(
        time_to_breach_days=float(time_to_breach_days),
        buffer_days=buffer,
        delta_days=delta,
        is_imminent=delta <= cfg.imminent_days,
        escalation_date=add_days(now, delta),
    )


def irreversibility(preissue_type: str, time_to_breach_days: float, evidence: Mapping[str, Any]) -> float:
    if preissue_type == "RUNWAY_COMPRESSION":
        value = 0.8 if float(evidence.get("burn_growth_per_day") or 0.0) > 0 else 0.6
    elif preissue_type == "RUNWAY_BREACH":
        value = 0.8 if float(evidence.get("runway_months") or 0.0) < 6.0 else 0.6
    elif preissue_type == "GOAL_FEASIBILITY":
        value = _clip(1.0 - time_to_breach_days / 365.0, 0.2, 0.9)
    elif preissue_type == "GOAL_MISS":
        value = _clip(1.0 - time_to_breach_days / 365.0, 0.2, 0.8)
    elif preissue_type == "DEPENDENCY_RISK":
        value = 0.7 if evidence.get("dependency_type") in HARD_DEPENDENCIES else 0.5
    elif preissue_type == "TIMING_WINDOW":
        value = 0.9
    elif preissue_type in ("DATA_BLINDSPOT", "ROUND_STALL"):
        value = 0.6
    elif preissue_type == "LEAD_VACANCY":
        value = 0.7
    else:
        value = 0.5
    return round(_clip(value, 0.2, 0.9), 2)


def build_preissue(
    preissue_type: str,
    ref: EntityRef,
    company_id: str | None,
    title: str,
    probability: float,
    time_to_breach_days: float,
    severity: Severity,
    now: Any,
    cfg: ForecastConfig,
    preventative: list[str],
    evidence: dict[str, Any] | None = None,
) -> PreIssue:
    evidence = dict(evidence or {})
    p = round(_clip(probability, 0.0, 1.0), 2)
    escalation = compute_escalation(preissue_type, time_to_breach_days, now, cfg)
    curve = CostOfDelayCurve(preissue_type, TYPE_MULTIPLIER.get(preissue_type, 1.0), escalation.delta_days)
    irr = irreversibility(preissue_type, time_to_breach_days, evidence)
    magnitude = IMPACT_MAGNITUDE.get(preissue_type, 50.0)
    return PreIssue(
        preissue_id=f"preissue-{preissue_type.lower().replace('_', '-')}-{ref.id}",
        preissue_type=preissue_type,
        heuristic=preissue_type,
        company_id=company_id,
        entity_ref=ref,
        title=title,
        probability=p,
        time_to_breach_days=round(float(time_to_breach_days), 2),
        severity=severity,
        escalation=escalation,
        cost_of_delay=curve,
        irreversibility=irr,
        impact_magnitude=magnitude,
        expected_future_cost=round(p * irr * magnitude, 2),
        evidence=evidence,
        preventative_actions=list(preventative),
    )


def detect_runway_breach(company: Mapping[str, Any], runway: RunwayEstimate, now: Any, cfg: ForecastConfig) -> PreIssue | None:
    months = runway.months
    if months is None or months >= cfg.runway_breach_months:
        return None
    high = months < cfg.runway_breach_high_months
    return build_preissue(
        "RUNWAY_BREACH",
        EntityRef("company", str(company["id"]), str(company.get("name") or "")),
        str(company["id"]),
        f"Runway will breach {cfg.runway_breach_high_months:g}mo threshold",
        0.8 if high else 0.5,
        months * 30.0,
        Severity.HIGH if high else Severity.MEDIUM,
        now,
        cfg,
        ["REDUCE_BURN"],
        {"runway_months": months, "burn": company.get("burn"), "cash": company.get("cash")},
    )


def detect_runway_compression(
    company: Mapping[str, Any], runway: RunwayEstimate, metrics: MetricSnapshot | None, now: Any, cfg: ForecastConfig
) -> PreIssue | None:
    months = runway.months
    if months is None:
        return None
    p = _clip(1.0 - months / cfg.required_runway_months, 0.0, 1.0)
    tti = round(months * 30.0)
    if p < 0.25 or tti > 180:
        return None
    growth = metrics.velocity_per_day.get("burn", 0.0) if metrics is not None else 0.0
    return build_preissue(
        "RUNWAY_COMPRESSION",
        EntityRef("company", str(company["id"]), str(company.get("name") or "")),
        str(company["id"]),
        f"Runway compression risk for {company.get('name') or company['id']}",
        p,
        tti,
        Severity.HIGH if p >= 0.6 else Severity.MEDIUM,
        now,
        cfg,
        ["REDUCE_BURN"],
        {"runway_months": months, "required_runway": cfg.required_runway_months, "burn_growth_per_day": growth},
    )


def detect_goal_miss(company: Mapping[str, Any], traj: GoalTrajectory, now: Any, cfg: ForecastConfig) -> PreIssue | None:
    p_hit = traj.probability_of_hit
    if p_hit >= cfg.goal_miss_suppress_probability or p_hit == 0:
        return None
    if traj.on_track is True:
        return None
    if traj.days_left is None or traj.days_left < 0:
        return None
    return build_preissue(
        "GOAL_MISS",
        EntityRef("goal", traj.goal_id, traj.goal_name),
        str(company["id"]),
        f'Goal "{traj.goal_name}" likely to miss target',
        1.0 - p_hit,
        float(traj.days_left),
        Severity.HIGH if p_hit < 0.3 else Severity.MEDIUM,
        now,
        cfg,
        [GOAL_TYPE_PREVENTION.get(traj.goal_type, "ACCELERATE_GOAL")],
        {"goal_id": traj.goal_id, "goal_type": traj.goal_type, "probability_of_hit": p_hit, "days_left": traj.days_left},
    )


def detect_goal_feasibility(company: Mapping[str, Any], traj: GoalTrajectory, now: Any, cfg: ForecastConfig) -> PreIssue | None:
    days_left = traj.days_left
    if not days_left or days_left < 0 or days_left > 270 or traj.on_track is True:
        return None
    gap = traj.target - traj.current
    if gap <= 0:
        return None
    required = gap / days_left
    actual = traj.velocity or 0.0
    p = _clip((required - actual) / max(abs(required), 0.001), 0.0, 1.0)
    if p < 0.3:
        return None
    return build_preissue(
        "GOAL_FEASIBILITY",
        EntityRef("goal", traj.goal_id, traj.goal_name),
        str(company["id"]),
        f'Goal "{traj.goal_name}" feasibility at risk',
        p,
        float(days_left),
        Severity.HIGH if p >= 0.6 else Severity.MEDIUM,
        now,
        cfg,
        ["ACCELERATE_GOAL"],
        {"goal_id": traj.goal_id, "required_slope": round(required, 6), "actual_slope": round(actual, 6), "days_left": days_left},
    )


def detect_dependency_risk(
    company: Mapping[str, Any], traj: GoalTrajectory, goal: Mapping[str, Any] | None, now: Any, cfg: ForecastConfig
) -> PreIssue | None:
    """P = share of the goal's prerequisites still unmet."""
    days_left = traj.days_left
    if not days_left or days_left < 0 or days_left > cfg.dependency_horizon_days:
        return None
    deps = [d for d in (goal or {}).get("dependencies") or [] if isinstance(d, Mapping)]
    if not deps:
        return None
    unmet = [d for d in deps if not d.get("met")]
    p = len(unmet) / len(deps)
    if p < cfg.dependency_unmet_min:
        return None
    evidence: dict[str, Any] = {"goal_id": traj.goal_id, "missing": len(unmet), "total": len(deps), "days_left": days_left}
    if unmet and unmet[0].get("type"):
        evidence["dependency_type"] = str(unmet[0]["type"])
    return build_preissue(
        "DEPENDENCY_RISK",
        EntityRef("goal", traj.goal_id, traj.goal_name),
        str(company["id"]),
        f'Dependency risk for "{traj.goal_name}"',
        p,
        float(days_left),
        Severity.HIGH if p >= 0.7 else Severity.MEDIUM,
        now,
        cfg,
        ["ACCELERATE_GOAL"],
        evidence,
    )


def detect_deal_stalls(company: Mapping[str, Any], deals: Iterable[Mapping[str, Any]], now: Any, cfg: ForecastConfig) -> list[PreIssue]:
    out: list[PreIssue] = []
    for deal in open_deals(deals):
        age = days_between(deal.get("last_activity_at"), now)
        if age is None or age <= cfg.deal_stall_days:
            continue
        amount = float(deal.get("amount") or 0.0)
        out.append(
            build_preissue(
                "DEAL_STALL",
                EntityRef("deal", str(deal["id"]), str(deal.get("investor_name") or "")),
                str(company["id"]),
                f"Deal with {deal.get('investor_name') or 'investor'} may be stalling",
                min(0.9, 0.3 + (age - cfg.deal_stall_days) / 30.0),
                14.0,
                Severity.HIGH if amount > 2_000_000 else Severity.MEDIUM,
                now,
                cfg,
                ["FOLLOW_UP_INVESTOR"],
                {"days_since_activity": int(age), "amount": amount, "status": deal.get("status")},
            )
        )
    return out


def _round_age(rnd: Mapping[str, Any], now: Any) -> float:
    age = days_between(rnd.get("opened_at"), now)
    return 30.0 if age is None else age


def detect_round_stall(company: Mapping[str, Any], rnd: Mapping[str, Any], now: Any, cfg: ForecastConfig) -> PreIssue | None:
    target = float(rnd.get("target_amount") or 0.0)
    coverage = float(rnd.get("raised_amount") or 0.0) / target if target > 0 else 0.0
    expected = min(1.0, _round_age(rnd, now) / 90.0)
    gap = expected - coverage
    if gap < 0.2:
        return None
    to_close = days_between(now, rnd.get("expected_close"))
    return build_preissue(
        "ROUND_STALL",
        EntityRef("round", str(rnd["id"]), str(rnd.get("stage") or "Round")),
        str(company["id"]),
        f"{rnd.get('stage') or 'Round'} for {company.get('name') or company['id']} is behind schedule",
        min(0.9, 0.3 + gap),
        max(7.0, to_close) if to_close is not None else 60.0,
        Severity.HIGH if gap > 0.4 else Severity.MEDIUM,
        now,
        cfg,
        ["EXPAND_INVESTOR_LIST"],
        {"coverage": round(coverage, 4), "expected_coverage": round(expected, 4), "stake": target},
    )


def detect_lead_vacancy(
    company: Mapping[str, Any], rnd: Mapping[str, Any], deals: Iterable[Mapping[str, Any]], now: Any, cfg: ForecastConfig
) -> PreIssue | None:
    if rnd.get("lead_investor_id") or any(d.get("is_lead") for d in deals if d.get("round_id") == rnd.get("id")):
        return None
    age = _round_age(rnd, now)
    if age < cfg.lead_vacancy_days:
        return None
    return build_preissue(
        "LEAD_VACANCY",
        EntityRef("round", str(rnd["id"]), str(rnd.get("stage") or "Round")),
        str(company["id"]),
        f"{rnd.get('stage') or 'Round'} for {company.get('name') or company['id']} needs a lead",
        min(0.85, 0.4 + (age - cfg.lead_vacancy_days) / 90.0),
        45.0,
        Severity.HIGH if age > 60 else Severity.MEDIUM,
        now,
        cfg,
        ["PRIORITIZE_LEAD_CANDIDATES"],
        {"round_age_days": int(age), "stake": float(rnd.get("target_amount") or 0.0)},
    )


def detect_timing_window(company: Mapping[str, Any], rnd: Mapping[str, Any], now: Any, cfg: ForecastConfig) -> PreIssue | None:
    days_left = days_between(now, rnd.get("expected_close"))
    if days_left is None or days_left < 0 or days_left > 150:
        return None
    p = _clip(1.0 - days_left / 150.0, 0.0, 1.0)
    if p < 0.5:
        return None
    return build_preissue(
        "TIMING_WINDOW",
        EntityRef("round", str(rnd["id"]), str(rnd.get("stage") or "Round")),
        str(company["id"]),
        f"Close window narrowing on {rnd.get('stage') or 'round'}",
        p,
        round(days_left),
        Severity.HIGH if p >= 0.75 else Severity.MEDIUM,
        now,
        cfg,
        ["ACCELERATE_OUTREACH"],
        {"days_left": round(days_left), "expected_close": rnd.get("expected_close"), "stake": float(rnd.get("target_amount") or 0.0)},
    )


def detect_data_blindspot(company: Mapping[str, Any], metrics: MetricSnapshot | None, now: Any, cfg: ForecastConfig) -> PreIssue | None:
    if metrics is None:
        return None
    p = metrics.blindspot_ratio
    if p < cfg.blindspot_ratio_min:
        return None
    return build_preissue(
        "DATA_BLINDSPOT",
        EntityRef("company", str(company["id"]), str(company.get("name") or "")),
        str(company["id"]),
        f"Data blindspot for {company.get('name') or company['id']}",
        p,
        90.0,
        Severity.HIGH if p >= 0.75 else Severity.MEDIUM,
        now,
        cfg,
        ["REQUEST_DATA_UPDATE"],
        {"missing": list(metrics.missing_core), "stale": list(metrics.stale_core)},
    )


def dedupe_preissues(preissues: Iterable[PreIssue]) -> list[PreIssue]:
    seen: set[tuple[str, str]] = set()
    out: list[PreIssue] = []
    for item in preissues:
        if item.dedupe_key in seen:
            continue
        seen.add(item.dedupe_key)
        out.append(item)
    return out


def derive_company_preissues(
    company: Mapping[str, Any],
    runway: RunwayEstimate,
    trajectories: Iterable[GoalTrajectory],
    deals: list[Mapping[str, Any]],
    rounds: list[Mapping[str, Any]],
    metrics: MetricSnapshot | None,
    now: Any,
    cfg: ForecastConfig | None = None,
    goals: Iterable[Mapping[str, Any]] = (),
) -> list[PreIssue]:
    cfg = cfg or ForecastConfig()
    goals_by_id = {str(g.get("id")): g for g in goals}
    found: list[PreIssue | None] = [
        detect_runway_breach(company, runway, now, cfg),
        detect_runway_compression(company, runway, metrics, now, cfg),
    ]
    for traj in trajectories:
        found.append(detect_goal_miss(company, traj, now, cfg))
        found.append(detect_goal_feasibility(company, traj, now, cfg))
        found.append(detect_dependency_risk(company, traj, goals_by_id.get(traj.goal_id), now, cfg))
    found.extend(detect_deal_stalls(company, deals, now, cfg))
    rnd = active_round(rounds)
    if rnd is not None:
        found.append(detect_round_stall(company, rnd, now, cfg))
        found.append(detect_lead_vacancy(company, rnd, deals, now, cfg))
        found.append(detect_timing_window(company, rnd, now, cfg))
    found.append(detect_data_blindspot(company, metrics, now, cfg))
    return dedupe_preissues(p for p in found if p is not None)


def _latest(values: Iterable[Any]) -> Any:
    stamps = [v for v in values if v]
    return max(stamps, key=lambda v: days_between("1970-01-01", v) or 0.0) if stamps else None


def detect_firm_decay(firm: Mapping[str, Any], people: list[Mapping[str, Any]], relationships: list[Mapping[str, Any]], now: Any, cfg: ForecastConfig) -> PreIssue | None:
    last = firm.get("last_contact_at")
    if not last:
        partners = {str(p["id"]) for p in people if p.get("org_id") == firm.get("id") and p.get("id")}
        last = _latest(
            r.get("last_touch_at")
            for r in relationships
            if str(r.get("from_person_id")) in partners or str(r.get("to_person_id")) in partners
        )
    age = days_between(last, now)
    if age is None or age < cfg.firm_decay_days:
        return None
    return build_preissue(
        "FIRM_RELATIONSHIP_DECAY",
        EntityRef("firm", str(firm["id"]), str(firm.get("name") or "")),
        None,
        f"Relationship with {firm.get('name') or firm['id']} may be cooling",
        min(0.85, 0.4 + (age - cfg.firm_decay_days) / 120.0),
        30.0,
        Severity.HIGH if age > 90 else Severity.MEDIUM,
        now,
        cfg,
        ["SCHEDULE_TOUCHPOINT"],
        {"days_since_contact": int(age), "stake": 300_000.0},
    )


def detect_dormant_connection(rel: Mapping[str, Any], now: Any, cfg: ForecastConfig) -> PreIssue | None:
    age = days_between(rel.get("last_touch_at"), now)
    if age is None or age < cfg.dormant_connection_days:
        return None
    return build_preissue(
        "CONNECTION_DORMANT",
        EntityRef("relationship", str(rel["id"]), f"{rel.get('from_person_id')}<->{rel.get('to_person_id')}"),
        None,
        "Connection going dormant",
        min(0.8, 0.3 + (age - cfg.dormant_connection_days) / 180.0),
        30.0,
        Severity.HIGH if age > 180 else Severity.MEDIUM,
        now,
        cfg,
        ["SEND_TOUCHPOINT"],
        {"days_since_contact": int(age), "strength": rel.get("strength"), "stake": 75_000.0},
    )


def derive_portfolio_preissues(raw: Mapping[str, Any], now: Any, cfg: ForecastConfig | None = None, limit: int = 100) -> list[PreIssue]:
    cfg = cfg or ForecastConfig()
    people = list(raw.get("people") or [])
    relationships = [r for r in raw.get("relationships") or [] if r.get("id")]
    found: list[PreIssue | None] = []
    for firm in sorted(raw.get("firms") or [], key=lambda f: str(f.get("id"))):
        if firm.get("id"):
            found.append(detect_firm_decay(firm, people, relationships, now, cfg))

    eligible = [
        r
        for r in relationships
        if r.get("last_touch_at") and float(r.get("strength") if r.get("strength") is not None else 50.0) >= cfg.dormant_strength_min
    ]
    eligible.sort(key=lambda r: (-(days_between(r.get("last_touch_at"), now) or 0.0), str(r.get("id"))))
    for rel in eligible[:limit]:
        found.append(detect_dormant_connection(rel, now, cfg))
    out = dedupe_preissues(p for p in found if p is not None)
    logger.debug("portfolio pre-issues: %d", len(out))
    return out


def get_imminent_preissues(preissues: Iterable[PreIssue]) -> list[PreIssue]:
    return [p for p in preissues if p.escalation.is_imminent]


def rank_preissues_by_cost_of_delay(preissues: Iterable[PreIssue]) -> list[PreIssue]:
    """Highest cost-of-delay multiplier today first; ties by id."""
    return sorted(preissues, key=lambda p: (-p.cost_of_delay.today, p.preissue_id))
