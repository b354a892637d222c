from __future__ import annotations

import ast
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from backbone_engine.reporting import write_json, write_markdown


PACKAGE = "backbone_engine"
SOURCE_ROOT = Path(__file__).resolve().parents[2]

_CORE = {"decide", "predict", "derive", "raw", "models", "errors"}

LAYER_WHITELIST: dict[str, set[str]] = {
    "errors": {"errors"},
    "models": {"models"},
    "config": {"config"},
    "raw": {"raw", "models", "errors"},
    "derive": {"derive", "raw", "models", "errors"},
    "predict": {"predict", "derive", "raw", "models", "errors"},
    "decide": set(_CORE),
    "runtime": {"runtime", "config"} | _CORE,
    "reporting": {"reporting", "models"},
    "qa": {"qa", "runtime", "config", "reporting"} | _CORE,
    "engine": {"engine", "runtime", "config", "reporting", "qa"} | _CORE,
    "cli": {"cli", "engine", "config", "models"},
}


def _target_layer(module: str) -> str | None:
    if not module.startswith(PACKAGE + "."):
        return None
    return module.split(".")[1]


@dataclass(slots=True)
class LayeringAuditor:
    source_root: Path = SOURCE_ROOT
    output_dir: Path | None = None
    timezone: str = "UTC"

    def iter_modules(self) -> list[tuple[Path, str]]:
        root = self.source_root / PACKAGE
        out: list[tuple[Path, str]] = []
        for path in sorted(root.rglob("*.py")):
            if "__pycache__" in path.parts:
                continue
            rel = path.relative_to(root)
            layer = rel.stem if len(rel.parts) == 1 else rel.parts[0]
            out.append((rel, layer))
        return out

    def scan(self) -> dict[str, Any]:
        root = self.source_root / PACKAGE
        violations: list[str] = []
        edges: dict[str, set[str]] = {}
        files_checked = 0

        for rel, src_layer in self.iter_modules():
            if src_layer not in LAYER_WHITELIST:
                violations.append(f"{rel}: module outside any known layer")
                continue
            files_checked += 1
            tree = ast.parse((root / rel).read_text(encoding="utf-8"))
            for node in ast.walk(tree):
                targets: list[str] = []
                if isinstance(node, ast.Import):
                    targets = [alias.name for alias in node.names]
                elif isinstance(node, ast.ImportFrom) and node.level == 0:
                    targets = [node.module or ""]
                elif isinstance(node, ast.ImportFrom):
                    violations.append(f"{rel}: relative import not allowed")
                for module in targets:
                    dep_layer = _target_layer(module)
                    if dep_layer is None:
                        continue
                    edges.setdefault(src_layer, set()).add(dep_layer)
                    if dep_layer not in LAYER_WHITELIST[src_layer]:
                        violations.append(f"{rel}: {src_layer} -> {dep_layer}")

        violations = sorted(set(violations))
        return {
            "ok": len(violations) == 0,
            "files_checked": files_checked,
            "edges": {k: sorted(v) for k, v in sorted(edges.items())},
            "violations": violations,
            "whitelist": {k: sorted(v) for k, v in sorted(LAYER_WHITELIST.items())},
        }

    def dependency_audit(self, as_of: date | None = None) -> dict[str, Any]:
        d = (as_of or datetime.now(ZoneInfo(self.timezone)).date()).isoformat()
        scan = self.scan()
        payload = {"date": d, **scan}
        if self.output_dir is None:
            return payload

        json_path = self.output_dir / "review" / f"{d}_dependency_audit.json"
        md_path = self.output_dir / "review" / f"{d}_dependency_audit.md"
        write_json(json_path, payload)

        lines: list[str] = []
        lines.append(f"# Layer dependency audit | {d}")
        lines.append("")
        lines.append(f"- Result: `{'PASS' if scan['ok'] else 'FAIL'}`")
        lines.append(f"- Files checked: `{scan['files_checked']}`")
        lines.append(f"- Violations: `{len(scan['violations'])}`")
        lines.append("")
        lines.append("## Layer edges")
        for layer, deps in scan["edges"].items():
            lines.append(f"- `{layer}` -> `{', '.join(deps) if deps else 'NONE'}`")
        lines.append("")
        if scan["violations"]:
            lines.append("## Violations")
            for item in scan["violations"]:
                lines.append(f"- {item}")
            lines.append("")
        write_markdown(md_path, "\n".join(lines) + "\n")

        payload["paths"] = {"json": str(json_path), "md": str(md_path)}
        return payload
