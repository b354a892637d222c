from __future__ import annotations

import argparse
from datetime import date, datetime
import json
import logging

from backbone_engine.config import load_settings, validate_settings
from backbone_engine.engine import BackboneEngine


def _parse_date(s: str) -> date:
    return datetime.strptime(s, "%Y-%m-%d").date()


def main() -> int:
    parser = argparse.ArgumentParser(prog="backbone", description="Portfolio action ranking engine CLI")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--log-level", default=None, help="Overrides logging.level from config")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Compute the ranking and write artifacts")
    p_run.add_argument("--dataset", required=True)
    p_run.add_argument("--now", default=None, help="Evaluation instant (ISO 8601)")

    p_rank = sub.add_parser("rank", help="Compute the ranking and print the top actions")
    p_rank.add_argument("--dataset", required=True)
    p_rank.add_argument("--now", default=None)
    p_rank.add_argument("--top", default="20")

    p_gate = sub.add_parser("gate", help="Run the invariant gate")
    p_gate.add_argument("--dataset", required=True)
    p_gate.add_argument("--now", default=None)

    sub.add_parser("validate-config", help="Validate config schema and bounds")

    p_da = sub.add_parser("dependency-audit", help="Run dependency layer audit report")
    p_da.add_argument("--date", required=False, default=None)

    args = parser.parse_args()
    settings = load_settings(args.config)
    level = str(args.log_level or settings.logging.get("level", "INFO")).upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    exit_code = 0
    if args.cmd == "validate-config":
        out = validate_settings(settings)
        exit_code = 0 if out["ok"] else 1
    else:
        eng = BackboneEngine(config_path=args.config)
        if args.cmd == "run":
            out = eng.run(args.dataset, now=args.now)
        elif args.cmd == "rank":
            out = eng.rank(args.dataset, now=args.now, top=int(args.top))
        elif args.cmd == "gate":
            out = eng.gate(args.dataset, now=args.now)
            exit_code = 0 if out["passed"] else 1
        elif args.cmd == "dependency-audit":
            out = eng.dependency_audit(as_of=_parse_date(args.date) if args.date else None)
            exit_code = 0 if out["ok"] else 1
        else:
            raise ValueError(f"Unknown command: {args.cmd}")

    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
