from __future__ import annotations

from typing import Any

from backbone_engine.models import HealthBand, RunResult


def _band_marker(band: HealthBand | None) -> str:
    if band == HealthBand.RED:
        return "🔴"
    if band == HealthBand.YELLOW:
        return "🟡"
    return "🟢"


def render_action_briefing(as_of: str, result: RunResult, top_n: int = 10) -> str:
    meta: dict[str, Any] = result.meta
    lines: list[str] = []
    lines.append(f"# Portfolio action briefing | {as_of}")
    lines.append("")

    lines.append("## Portfolio health")
    counts = meta.get("health_counts", {})
    lines.append(
        f"- GREEN `{counts.get('GREEN', 0)}` | YELLOW `{counts.get('YELLOW', 0)}` | RED `{counts.get('RED', 0)}`"
    )
    for company_id in sorted(result.per_company):
        company = result.per_company[company_id]
        band = company.health.band if company.health else None
        runway = company.runway.months if company.runway else None
        runway_txt = f"{runway:.1f} mo" if runway is not None else "n/a"
        lines.append(
            f"- {_band_marker(band)} `{company.company_name}` runway `{runway_txt}` | "
            f"issues `{len(company.issues)}` | pre-issues `{len(company.preissues)}`"
        )
    lines.append("")

    lines.append("## Top actions")
    top = result.ranked_actions[:top_n]
    if not top:
        lines.append("- No actions with positive expected value")
    else:
        lines.append("| # | Company | Source | Action | Score | Upside | P(success) |")
        lines.append("|---:|---|---|---|---:|---:|---:|")
        for item in top:
            a = item.action
            impact = a.impact
            lines.append(
                f"| {item.rank} | {a.company_id} | {a.source_type.value if a.source_type else '-'} | {a.title} | "
                f"{item.rank_score:.2f} | {impact.upside_magnitude if impact else 0:.0f} | "
                f"{(impact.probability_of_success if impact else 0):.0%} |"
            )
        lines.append("")
        for item in top[:3]:
            if item.action.impact and item.action.impact.explain:
                lines.append(f"**{item.rank}. {item.action.title}**")
                for line in item.action.impact.explain:
                    lines.append(f"- {line}")
                lines.append("")

    lines.append("## Run notes")
    errors = meta.get("errors", [])
    warnings = meta.get("warnings", [])
    cold = meta.get("cold_start", [])
    lines.append(f"- Errors: `{len(errors)}`")
    for err in errors:
        lines.append(f"  - `{err.get('company_id')}` {err.get('kind')}: {err.get('problems') or err.get('message')}")
    lines.append(f"- Low-confidence values: `{len(warnings)}`")
    lines.append(f"- Cold-start lift buckets: `{len(cold)}`")
    sources = meta.get("action_source_counts", {})
    if sources:
        lines.append("- Candidates by source: " + ", ".join(f"{k}={v}" for k, v in sorted(sources.items())))

    return "\n".join(lines) + "\n"
