from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import logging
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from backbone_engine.config import SystemSettings, assert_valid_settings, load_settings
from backbone_engine.models import RunResult
from backbone_engine.qa import InvariantGate, LayeringAuditor, summarize
from backbone_engine.raw import ensure_now, load_dataset
from backbone_engine.reporting import (
    ranked_frame,
    render_action_briefing,
    write_csv,
    write_json,
    write_markdown,
    write_run_manifest,
)
from backbone_engine.runtime import compute


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineContext:
    settings: SystemSettings
    root: Path
    output_dir: Path


class BackboneEngine:
    def __init__(self, config_path: str | Path | None = None) -> None:
        settings = load_settings(config_path)
        assert_valid_settings(settings)
        root = Path(config_path).resolve().parent if config_path else Path(__file__).resolve().parents[2]
        output_dir = root / settings.paths.get("output", "output")
        self.ctx = EngineContext(settings=settings, root=root, output_dir=output_dir)

    @property
    def settings(self) -> SystemSettings:
        return self.ctx.settings

    def _now(self, now: str | datetime | None) -> datetime:
        if now is None:
            return datetime.now(ZoneInfo(self.settings.timezone))
        return ensure_now(now)

    def load_dataset(self, path: str | Path) -> dict[str, Any]:
        return load_dataset(path)

    def compute(self, dataset_path: str | Path, now: str | datetime | None = None) -> RunResult:
        raw = self.load_dataset(dataset_path)
        return compute(raw, self._now(now), self.settings)

    def rank(self, dataset_path: str | Path, now: str | datetime | None = None, top: int = 20) -> dict[str, Any]:
        result = self.compute(dataset_path, now)
        return {
            "computed_at": result.meta.get("computed_at"),
            "ranked": [r.to_dict() for r in result.ranked_actions[:top]],
            "total_ranked": len(result.ranked_actions),
            "errors": result.meta.get("errors", []),
        }

    def run(self, dataset_path: str | Path, now: str | datetime | None = None) -> dict[str, Any]:
        now_dt = self._now(now)
        dataset_path = Path(dataset_path)
        result = self.compute(dataset_path, now_dt)
        d = now_dt.date().isoformat()
        run_id = now_dt.strftime("%Y%m%dT%H%M%S")
        daily = self.ctx.output_dir / "daily"

        json_path = daily / f"{d}_ranked_actions.json"
        csv_path = daily / f"{d}_ranked_actions.csv"
        md_path = daily / f"{d}_briefing.md"
        write_json(json_path, {"ranked_actions": [r.to_dict() for r in result.ranked_actions], "meta": result.meta})
        write_csv(csv_path, ranked_frame(result.ranked_actions))
        write_markdown(md_path, render_action_briefing(d, result))

        counts = dict(result.meta.get("counts", {}))
        manifest = write_run_manifest(
            output_dir=self.ctx.output_dir,
            run_type="rank",
            run_id=run_id,
            artifacts={"ranked_json": str(json_path), "ranked_csv": str(csv_path), "briefing": str(md_path)},
            dataset_path=dataset_path,
            counts=counts,
            metadata={"errors": len(result.meta.get("errors", [])), "warnings": len(result.meta.get("warnings", []))},
        )
        logger.info("run %s wrote %d ranked actions", run_id, len(result.ranked_actions))
        return {
            "date": d,
            "run_id": run_id,
            "ranked": len(result.ranked_actions),
            "top": [r.action_id for r in result.ranked_actions[:5]],
            "health_counts": result.meta.get("health_counts", {}),
            "errors": result.meta.get("errors", []),
            "paths": {"json": str(json_path), "csv": str(csv_path), "briefing": str(md_path), "manifest": str(manifest)},
        }

    def gate(self, dataset_path: str | Path, now: str | datetime | None = None) -> dict[str, Any]:
        now_dt = self._now(now)
        raw = self.load_dataset(dataset_path)
        gate = InvariantGate(raw, now_dt, self.settings)
        checks = gate.run()
        payload = {"date": now_dt.date().isoformat(), **summarize(checks), "warnings": list(gate.warnings)}
        path = self.ctx.output_dir / "review" / f"{payload['date']}_invariant_gate.json"
        write_json(path, payload)
        payload["paths"] = {"json": str(path)}
        return payload

    def dependency_audit(self, as_of: date | None = None) -> dict[str, Any]:
        auditor = LayeringAuditor(output_dir=self.ctx.output_dir, timezone=self.settings.timezone)
        return auditor.dependency_audit(as_of=as_of)
