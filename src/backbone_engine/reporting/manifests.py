from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from pathlib import Path
from typing import Any

from backbone_engine.reporting.storage import write_json


def file_digest(path: Path | None) -> str | None:
    if path is None or not path.exists():
        return None
    return hashlib.sha256(path.read_bytes()).hexdigest()


def write_run_manifest(
    *,
    output_dir: Path,
    run_type: str,
    run_id: str,
    artifacts: dict[str, str],
    dataset_path: Path | None = None,
    counts: dict[str, Any] | None = None,
    checks: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> Path:
    path = output_dir / "manifests" / f"{run_type}_{run_id}.json"
    payload = {
        "run_type": run_type,
        "run_id": run_id,
        "written_at": datetime.now(timezone.utc).isoformat(),
        "dataset": {
            "path": str(dataset_path) if dataset_path else None,
            "sha256": file_digest(dataset_path),
        },
        "artifacts": artifacts,
        "counts": counts or {},
        "checks": checks or {},
        "metadata": metadata or {},
    }
    write_json(path, payload)
    return path
