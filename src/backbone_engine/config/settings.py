from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(slots=True)
class SystemSettings:
    raw: dict[str, Any]

    @property
    def timezone(self) -> str:
        return self.raw.get("timezone", "UTC")

    @property
    def paths(self) -> dict[str, str]:
        return self.raw.get("paths", {})

    @property
    def logging(self) -> dict[str, Any]:
        return self.raw.get("logging", {})

    @property
    def detection(self) -> dict[str, float]:
        return self.raw.get("detection", {})

    @property
    def forecast(self) -> dict[str, Any]:
        return self.raw.get("forecast", {})

    @property
    def ranking(self) -> dict[str, Any]:
        return self.raw.get("ranking", {})

    @property
    def pattern_lift(self) -> dict[str, float]:
        return self.raw.get("pattern_lift", {})

    @property
    def runtime(self) -> dict[str, Any]:
        return self.raw.get("runtime", {})

    @property
    def gate(self) -> dict[str, float]:
        return self.raw.get("gate", {})


DEFAULT_CONFIG = Path(__file__).resolve().parents[3] / "config.yaml"


def load_settings(path: str | Path | None = None) -> SystemSettings:
    config_path = Path(path) if path else DEFAULT_CONFIG
    with config_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return SystemSettings(raw=raw)
