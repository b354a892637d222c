from __future__ import annotations

import copy
from typing import Any

from backbone_engine.models import Action, EntityRef, ImpactModel, Source, SourceType, Timing


NOW = "2026-03-01T00:00:00+00:00"


def make_company(company_id: str = "c-alpha", **overrides: Any) -> dict[str, Any]:
    company = {
        "id": company_id,
        "name": "Alpha Payments",
        "stage": "Seed",
        "sector": "fintech",
        "is_portfolio": True,
        "cash": 300_000,
        "burn": 100_000,
        "arr": 480_000,
        "as_of": "2026-02-20",
        "founder_person_ids": ["p-ada"],
        "recent_milestones": ["Launched v2"],
        "has_fundraise_deck": False,
    }
    company.update(overrides)
    return company


def make_goal(goal_id: str = "g-alpha-raise", **overrides: Any) -> dict[str, Any]:
    goal = {
        "id": goal_id,
        "company_id": "c-alpha",
        "name": "Close seed round",
        "type": "fundraise",
        "current": 500_000,
        "target": 2_000_000,
        "due": "2026-05-31",
        "status": "active",
        "history": [
            {"date": "2025-12-01", "value": 200_000},
            {"date": "2026-02-01", "value": 500_000},
        ],
    }
    goal.update(overrides)
    return goal


def outcome_events(action_type: str, n: int = 3, outcome: str = "success", start_day: int = 10) -> list[dict[str, Any]]:
    return [
        {
            "id": f"ev-{action_type.lower()}-{i}",
            "action_id": f"act-history-{i}",
            "event_type": "outcome_recorded",
            "timestamp": f"2026-02-{start_day + i:02d}T12:00:00+00:00",
            "actor": "partner-1",
            "payload": {"outcome": outcome, "notes": "done on time", "action_type": action_type},
        }
        for i in range(n)
    ]


def make_dataset() -> dict[str, Any]:
    """Two portfolio companies and one tracked non-portfolio company."""
    return copy.deepcopy(
        {
            "companies": [
                make_company(),
                make_company(
                    "c-beta",
                    name="Beta Shield",
                    stage="Series A",
                    sector="security",
                    cash=3_000_000,
                    burn=150_000,
                    arr=1_500_000,
                    as_of="2026-02-25",
                    founder_person_ids=["p-ben"],
                    recent_milestones=[],
                    has_fundraise_deck=True,
                ),
                make_company("c-gamma", name="Gamma Labs", sector="ai", is_portfolio=False, founder_person_ids=[]),
            ],
            "goals": [
                make_goal(),
                make_goal(
                    "g-alpha-rev",
                    name="Reach 100k MRR",
                    type="revenue",
                    current=40_000,
                    target=100_000,
                    due="2026-06-30",
                    history=[{"date": "2026-01-01", "value": 40_000}, {"date": "2026-02-15", "value": 40_000}],
                ),
                make_goal(
                    "g-alpha-partner",
                    name="Sign two bank partners",
                    type="partnership",
                    current=0,
                    target=2,
                    due="2026-04-15",
                    history=[],
                ),
                make_goal(
                    "g-beta-rev",
                    company_id="c-beta",
                    name="Grow ARR",
                    type="revenue",
                    current=120_000,
                    target=150_000,
                    due="2026-09-30",
                    history=[{"date": "2025-11-01", "value": 60_000}, {"date": "2026-02-01", "value": 120_000}],
                ),
            ],
            "deals": [
                {
                    "id": "d-alpha-north",
                    "company_id": "c-alpha",
                    "round_id": "r-alpha-seed",
                    "investor_name": "Northwind Ventures",
                    "firm_id": "f-north",
                    "amount": 500_000,
                    "probability": 40,
                    "status": "meeting",
                    "last_activity_at": "2026-01-20",
                }
            ],
            "rounds": [
                {
                    "id": "r-alpha-seed",
                    "company_id": "c-alpha",
                    "stage": "Seed",
                    "status": "active",
                    "target_amount": 2_000_000,
                    "raised_amount": 500_000,
                    "opened_at": "2025-12-01",
                    "expected_close": "2026-05-31",
                }
            ],
            "people": [
                {"id": "p-ada", "name": "Ada Byrne", "role": "CEO", "org_id": "c-alpha", "org_type": "company"},
                {"id": "p-ben", "name": "Ben Okafor", "role": "CEO", "org_id": "c-beta", "org_type": "company"},
                {"id": "p-cal", "name": "Cal Moreno", "role": "Advisor", "org_type": "external", "tags": ["fintech"]},
                {"id": "p-ivy", "name": "Ivy Chen", "role": "Partner", "org_id": "f-north", "org_type": "investor"},
            ],
            "relationships": [
                {
                    "id": "rel-ada-cal",
                    "from_person_id": "p-ada",
                    "to_person_id": "p-cal",
                    "strength": 85,
                    "last_touch_at": "2026-02-20",
                    "intro_count": 1,
                },
                {
                    "id": "rel-cal-ivy",
                    "from_person_id": "p-cal",
                    "to_person_id": "p-ivy",
                    "strength": 75,
                    "last_touch_at": "2026-01-15",
                },
                {
                    "id": "rel-ben-ivy",
                    "from_person_id": "p-ben",
                    "to_person_id": "p-ivy",
                    "strength": 60,
                    "last_touch_at": "2025-10-01",
                },
            ],
            "team": [{"person_id": "p-ada", "company_id": "c-alpha"}],
            "investors": [{"id": "inv-north", "person_id": "p-ivy", "stage_focus": "seed", "sector_focus": "fintech"}],
            "firms": [{"id": "f-north", "name": "Northwind Ventures", "last_contact_at": "2025-12-01"}],
            "external_events": [
                {"id": "ev-demo-day", "name": "Spring Demo Day", "type": "demo_day", "date": "2026-03-20"}
            ],
            "fund_cycles": [],
            "role_changes": [],
            "metric_facts": [
                {"company_id": "c-alpha", "metric_key": "burn", "value": 90_000, "as_of": "2025-12-31"},
                {"company_id": "c-alpha", "metric_key": "burn", "value": 100_000, "as_of": "2026-02-20"},
            ],
            "intro_outcomes": [
                {
                    "id": "out-1",
                    "action_id": "intro-c-alpha-g-alpha-raise-p-ivy",
                    "status": "sent",
                    "status_updated_at": "2026-02-15",
                    "company_id": "c-alpha",
                    "target_person_id": "p-ivy",
                    "introducer_person_id": "p-cal",
                }
            ],
            "action_events": outcome_events("REDUCE_BURN"),
        }
    )


def make_impact(**overrides: Any) -> ImpactModel:
    values = {
        "upside_magnitude": 80.0,
        "probability_of_success": 0.8,
        "execution_probability": 1.0,
        "downside_magnitude": 10.0,
        "time_to_impact_days": 7.0,
        "effort_cost": 10.0,
        "second_order_leverage": 20.0,
    }
    values.update(overrides)
    return ImpactModel(**values)


def make_action(
    action_id: str,
    source_type: SourceType = SourceType.GOAL,
    company_id: str = "c-alpha",
    impact: ImpactModel | None = None,
    steps: int = 2,
    complexity: float = 0.0,
    action_type: str | None = None,
) -> Action:
    return Action(
        action_id=action_id,
        title=f"Action {action_id}",
        company_id=company_id,
        entity_ref=EntityRef("company", company_id),
        sources=[Source(source_type, action_id)],
        steps=[f"step {i + 1}" for i in range(steps)],
        action_type=action_type,
        timing=Timing.SOON,
        complexity=complexity,
        impact=impact if impact is not None else make_impact(),
    )
