from __future__ import annotations

from typing import Any

from backbone_engine.models import RunwayEstimate
from backbone_engine.raw.dates import days_between


MAX_STALE_DAYS = 30.0


def _staleness_penalty(as_of: Any, now: Any) -> float:
    age = days_between(as_of, now)
    if age is None:
        return 0.0
    return min(max(age, 0.0) / MAX_STALE_DAYS, 1.0)


def derive_runway(cash: Any, burn: Any, as_of: Any, now: Any, company_id: str = "") -> RunwayEstimate:
    if cash is None or burn is None:
        return RunwayEstimate(company_id=company_id, months=None, confidence=0.0, reason="missing_input", low_confidence=True)

    cash_f = float(cash)
    burn_f = float(burn)
    penalty = _staleness_penalty(as_of, now)

    # Zero or negative burn is valid data with no finite runway.
    if burn_f <= 0:
        return RunwayEstimate(
            company_id=company_id,
            months=None,
            confidence=0.5,
            reason="non_positive_burn",
            low_confidence=True,
        )

    confidence = round(1.0 - 0.5 * penalty, 4)
    if cash_f < 0:
        return RunwayEstimate(company_id=company_id, months=0.0, confidence=confidence, reason="negative_cash")

    months = round(cash_f / burn_f, 1)
    return RunwayEstimate(
        company_id=company_id,
        months=months,
        confidence=confidence,
        reason="ok" if penalty < 1.0 else "stale_inputs",
        low_confidence=confidence < 0.6,
    )
