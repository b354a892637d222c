from __future__ import annotations

from collections.abc import Iterable, Mapping
import hashlib
import logging
from typing import Any

from backbone_engine.models import Action, EntityRef, Source, SourceType, Timing
from backbone_engine.raw.dates import days_between


logger = logging.getLogger(__name__)

FOLLOWUP_THRESHOLD_DAYS = 7.0
FOLLOWUP_RESOLUTION = "followup-intro"


def followup_action_id(original_action_id: str, outcome_id: str) -> str:
    digest = hashlib.sha256(f"followup|{original_action_id}|{outcome_id}".encode("utf-8")).hexdigest()[:12]
    return f"followup-{digest}"


def outcomes_needing_followup(outcomes: Iterable[Mapping[str, Any]], now: Any) -> list[Mapping[str, Any]]:
    out = []
    for outcome in outcomes:
        if str(outcome.get("status") or "") != "sent":
            continue
        age = days_between(outcome.get("status_updated_at"), now)
        if age is not None and age > FOLLOWUP_THRESHOLD_DAYS:
            out.append(outcome)
    return sorted(out, key=lambda o: (str(o.get("action_id")), str(o.get("id"))))


def followup_action(outcome: Mapping[str, Any], now: Any, original: Action | None = None, now_iso: str | None = None) -> Action:
    original_id = str(outcome.get("action_id"))
    outcome_id = str(outcome.get("id"))
    target = str(outcome.get("target_person_id") or outcome.get("target_org_id") or "")
    days_since = int(days_between(outcome.get("status_updated_at"), now) or 0)
    if outcome.get("company_id"):
        ref = EntityRef("company", str(outcome["company_id"]))
    else:
        ref = EntityRef("person", target)
    original_upside = None
    if original is not None and original.impact is not None:
        original_upside = original.impact.upside_magnitude
    return Action(
        action_id=followup_action_id(original_id, outcome_id),
        title=f"Follow up on introduction to {target}",
        company_id=str(outcome.get("company_id") or (original.company_id if original else "") or ""),
        entity_ref=ref,
        sources=[
            Source(
                SourceType.FOLLOWUP,
                outcome_id,
                {
                    "original_action_id": original_id,
                    "outcome_id": outcome_id,
                    "days_since_sent": days_since,
                    "original_upside": original_upside,
                },
            )
        ],
        steps=[
            f"Check if {outcome.get('introducer_person_id') or 'the introducer'} has any updates",
            "Send a polite follow-up message",
            "Update outcome status based on response",
        ],
        resolution_id=FOLLOWUP_RESOLUTION,
        action_type=FOLLOWUP_RESOLUTION,
        timing=Timing.NOW,
        complexity=0.1,
        followup_for={
            "action_id": original_id,
            "outcome_id": outcome_id,
            "introducer_person_id": str(outcome.get("introducer_person_id") or ""),
        },
        created_at=now_iso,
    )


def generate_followups(
    outcomes: Iterable[Mapping[str, Any]],
    existing: Iterable[Action],
    now: Any,
    originals: Mapping[str, Action] | None = None,
    now_iso: str | None = None,
) -> list[Action]:
    originals = originals or {}
    seen = {a.action_id for a in existing if a.source_type == SourceType.FOLLOWUP}
    out: list[Action] = []
    for outcome in outcomes_needing_followup(outcomes, now):
        action_id = followup_action_id(str(outcome.get("action_id")), str(outcome.get("id")))
        if action_id in seen:
            continue
        seen.add(action_id)
        out.append(followup_action(outcome, now, originals.get(str(outcome.get("action_id"))), now_iso))
    if out:
        logger.debug("generated %d follow-up actions", len(out))
    return out


def duplicate_followups(actions: Iterable[Action]) -> list[str]:
    seen: set[tuple[str, str]] = set()
    dupes: list[str] = []
    for action in actions:
        if action.source_type != SourceType.FOLLOWUP or not action.followup_for:
            continue
        key = (action.followup_for.get("action_id", ""), action.followup_for.get("outcome_id", ""))
        if key in seen:
            dupes.append(action.action_id)
        seen.add(key)
    return dupes
