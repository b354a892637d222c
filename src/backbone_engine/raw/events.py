from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from backbone_engine.models import EventType, Outcome
from backbone_engine.raw.dates import parse_ts
from backbone_engine.raw.forbidden import scan_forbidden


VALID_EVENT_TYPES: frozenset[str] = frozenset(e.value for e in EventType)
VALID_OUTCOMES: frozenset[str] = frozenset(o.value for o in Outcome)
REQUIRED_EVENT_FIELDS = ("id", "action_id", "event_type", "timestamp", "actor", "payload")

_PAYLOAD_DENY_SNAKE = (
    "rank_score",
    "expected_net_impact",
    "impact_score",
    "ripple_score",
    "priority_score",
    "health_score",
    "execution_probability",
    "friction_penalty",
    "calibrated_probability",
    "learned_execution_probability",
    "learned_friction_penalty",
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# Both spellings are rejected; producers outside this package emit camelCase.
FORBIDDEN_PAYLOAD_KEYS: frozenset[str] = frozenset(_PAYLOAD_DENY_SNAKE) | frozenset(_camel(k) for k in _PAYLOAD_DENY_SNAKE)


@dataclass(slots=True, frozen=True)
class EventIssue:
    event_id: str
    rule: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"event_id": self.event_id, "rule": self.rule, "message": self.message}


def check_payload_purity(event: Mapping[str, Any]) -> list[EventIssue]:
    event_id = str(event.get("id", "?"))
    payload = event.get("payload")
    if not isinstance(payload, Mapping):
        return []
    hits = scan_forbidden(payload, FORBIDDEN_PAYLOAD_KEYS, path="payload")
    return [EventIssue(event_id, "payload_purity", f"derived scalar stored at {p}") for p in hits]


def validate_event(event: Any) -> list[EventIssue]:
    if not isinstance(event, Mapping):
        return [EventIssue("?", "schema", "event must be an object")]
    event_id = str(event.get("id") or "?")
    issues: list[EventIssue] = []

    for key in REQUIRED_EVENT_FIELDS:
        if key not in event or event.get(key) in (None, ""):
            issues.append(EventIssue(event_id, "schema", f"missing required field {key!r}"))

    event_type = event.get("event_type")
    if event_type is not None and event_type not in VALID_EVENT_TYPES:
        issues.append(EventIssue(event_id, "schema", f"unknown event_type {event_type!r}"))
    if event.get("timestamp") not in (None, "") and parse_ts(event.get("timestamp")) is None:
        issues.append(EventIssue(event_id, "schema", f"unparseable timestamp {event.get('timestamp')!r}"))

    payload = event.get("payload")
    if payload is not None and not isinstance(payload, Mapping):
        issues.append(EventIssue(event_id, "schema", "payload must be an object"))
    elif isinstance(payload, Mapping) and event_type == EventType.OUTCOME_RECORDED.value:
        outcome = payload.get("outcome")
        if outcome not in VALID_OUTCOMES:
            issues.append(EventIssue(event_id, "schema", f"outcome must be one of {sorted(VALID_OUTCOMES)}, got {outcome!r}"))

    issues.extend(check_payload_purity(event))
    return issues


def validate_events(events: Iterable[Any], known_action_ids: Iterable[str] | None = None) -> dict[str, Any]:
    items = list(events or [])
    issues: list[EventIssue] = []
    seen: set[str] = set()
    known = set(known_action_ids) if known_action_ids is not None else None

    for event in items:
        issues.extend(validate_event(event))
        if not isinstance(event, Mapping):
            continue
        event_id = event.get("id")
        if event_id in seen:
            issues.append(EventIssue(str(event_id), "unique_id", f"duplicate event id {event_id!r}"))
        elif event_id is not None:
            seen.add(event_id)
        if known is not None and event.get("action_id") and event["action_id"] not in known:
            issues.append(
                EventIssue(str(event_id), "referential_integrity", f"unknown action_id {event['action_id']!r}")
            )

    return {
        "valid": len(issues) == 0,
        "events_checked": len(items),
        "issues": [x.to_dict() for x in issues],
        "purity_violations": [x.to_dict() for x in issues if x.rule == "payload_purity"],
    }
