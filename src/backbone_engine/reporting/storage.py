from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
import json
from typing import Any

import pandas as pd

from backbone_engine.models import RankedAction


RANKED_COLUMNS = [
    "rank",
    "action_id",
    "company_id",
    "source_type",
    "action_type",
    "title",
    "rank_score",
    "expected_net_impact",
    "trust_penalty",
    "execution_friction_penalty",
    "time_criticality_boost",
    "source_type_boost",
    "pattern_lift",
    "upside_magnitude",
    "probability_of_success",
    "execution_probability",
    "timing",
]


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_json(path: Path, payload: Any) -> None:
    ensure_parent(path)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, default=str)


def write_markdown(path: Path, content: str) -> None:
    ensure_parent(path)
    path.write_text(content, encoding="utf-8")


def write_csv(path: Path, df: pd.DataFrame) -> None:
    ensure_parent(path)
    df.to_csv(path, index=False)


def ranked_frame(ranked: Iterable[RankedAction]) -> pd.DataFrame:
    # Row order is the ranking order; nothing here reorders.
    rows = []
    for item in ranked:
        action = item.action
        impact = action.impact
        rows.append(
            {
                "rank": item.rank,
                "action_id": action.action_id,
                "company_id": action.company_id,
                "source_type": action.source_type.value if action.source_type else None,
                "action_type": action.action_type or action.resolution_id,
                "title": action.title,
                "rank_score": round(item.rank_score, 4),
                **{k: round(v, 4) for k, v in item.components.to_dict().items() if k != "total"},
                "upside_magnitude": impact.upside_magnitude if impact else None,
                "probability_of_success": impact.probability_of_success if impact else None,
                "execution_probability": impact.execution_probability if impact else None,
                "timing": action.timing.value if action.timing else None,
            }
        )
    return pd.DataFrame(rows, columns=RANKED_COLUMNS)
