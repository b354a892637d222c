from __future__ import annotations

import argparse
from datetime import datetime, timezone
import logging
import sys

from backbone_engine.config import load_settings
from backbone_engine.errors import DatasetStructureError
from backbone_engine.qa.gate import InvariantGate, gate_passed
from backbone_engine.raw import load_dataset


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m backbone_engine.qa", description="Run the invariant gate")
    parser.add_argument("dataset", help="Path to a raw dataset JSON file")
    parser.add_argument("--now", default=None, help="Evaluation instant (ISO 8601); defaults to the current UTC time")
    parser.add_argument("--config", default=None)
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    logging.basicConfig(level=str(settings.logging.get("level", "INFO")).upper())
    try:
        raw = load_dataset(args.dataset)
    except DatasetStructureError as exc:
        print(f"FAIL dataset_structure: {exc}")
        return 1
    now = args.now or datetime.now(timezone.utc).isoformat()
    gate = InvariantGate(raw, now, settings)
    checks = gate.run()
    for check in checks:
        print(f"{'PASS' if check.passed else 'FAIL'} {check.name}")
        for line in check.diagnostics:
            print(f"    - {line}")
    for line in gate.warnings:
        print(f"WARN {line}")
    return 0 if gate_passed(checks) else 1


if __name__ == "__main__":
    sys.exit(main())
