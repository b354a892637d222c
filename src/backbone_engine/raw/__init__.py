from backbone_engine.raw.assumptions import ASSUMPTIONS, GOAL_WEIGHTS_BY_STAGE, stage_goal_modifier
from backbone_engine.raw.dataset import group_by_company, index_by_id, load_dataset, validate_company_record, validate_dataset, validate_goal_record
from backbone_engine.raw.dates import add_days, days_between, ensure_now, parse_ts
from backbone_engine.raw.events import FORBIDDEN_PAYLOAD_KEYS, check_payload_purity, validate_event, validate_events
from backbone_engine.raw.forbidden import FORBIDDEN_DERIVED_FIELDS, scan_forbidden, validate_no_forbidden_fields

__all__ = [
    "ASSUMPTIONS",
    "GOAL_WEIGHTS_BY_STAGE",
    "stage_goal_modifier",
    "group_by_company",
    "index_by_id",
    "load_dataset",
    "validate_company_record",
    "validate_dataset",
    "validate_goal_record",
    "add_days",
    "days_between",
    "ensure_now",
    "parse_ts",
    "FORBIDDEN_PAYLOAD_KEYS",
    "check_payload_purity",
    "validate_event",
    "validate_events",
    "FORBIDDEN_DERIVED_FIELDS",
    "scan_forbidden",
    "validate_no_forbidden_fields",
]
