from backbone_engine.predict.candidates import (
    RESOLUTIONS,
    Resolution,
    action_id_for,
    actions_from_goals,
    actions_from_issues,
    actions_from_preissues,
    get_resolution,
)
from backbone_engine.predict.followups import duplicate_followups, followup_action_id, generate_followups
from backbone_engine.predict.impact import (
    GoalDamage,
    ImpactContext,
    attach_impacts,
    build_impact,
    compute_goal_damage,
    goal_damage_upside,
    validate_impact,
)
from backbone_engine.predict.introductions import company_introductions, trust_risk_by_action
from backbone_engine.predict.issues import DetectionThresholds, detect_issues
from backbone_engine.predict.opportunities import company_opportunities, cross_entity_synergy, score_path
from backbone_engine.predict.preissues import (
    PORTFOLIO_SCOPE,
    ForecastConfig,
    derive_company_preissues,
    derive_portfolio_preissues,
    get_imminent_preissues,
    rank_preissues_by_cost_of_delay,
)
from backbone_engine.predict.ripple import aggregate_ripple
from backbone_engine.predict.trust import TrustRisk, assess_trust_risk

__all__ = [
    "RESOLUTIONS",
    "Resolution",
    "action_id_for",
    "actions_from_goals",
    "actions_from_issues",
    "actions_from_preissues",
    "get_resolution",
    "duplicate_followups",
    "followup_action_id",
    "generate_followups",
    "GoalDamage",
    "ImpactContext",
    "attach_impacts",
    "build_impact",
    "compute_goal_damage",
    "goal_damage_upside",
    "validate_impact",
    "company_introductions",
    "trust_risk_by_action",
    "DetectionThresholds",
    "detect_issues",
    "company_opportunities",
    "cross_entity_synergy",
    "score_path",
    "PORTFOLIO_SCOPE",
    "ForecastConfig",
    "derive_company_preissues",
    "derive_portfolio_preissues",
    "get_imminent_preissues",
    "rank_preissues_by_cost_of_delay",
    "aggregate_ripple",
    "TrustRisk",
    "assess_trust_risk",
]
