"""Argument parsing, configuration loading, and daemon bootstrap."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .config import load_config
from .daemon import Daemon
from .engine import DRY_RUN, Engine, Plan
from .exceptions import ConfigError, ReconcileError, ValidationError
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="statewright",
        description="Desired-state reconciliation engine for cloud resources",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle in the configured mode and exit",
    )
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Compute and print the plan without applying it",
    )
    parser.add_argument(
        "--destroy",
        action="store_true",
        help="Target destruction of every managed resource (applied per the configured mode)",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration and declarations, then exit",
    )
    return parser


def prompt_confirmation(plan: Plan) -> bool:
    """Interactive gate for require-confirmation mode."""
    if not sys.stdin.isatty():
        logger.warning("Confirmation required but stdin is not a terminal; declining")
        return False
    print("Planned changes:", file=sys.stderr)
    for line in plan.change_set.describe():
        print(f"  {line}", file=sys.stderr)
    answer = input("Apply these changes? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    try:
        engine = Engine.from_config(config)
        if args.validate:
            graph = engine.validate()
            logger.info("Configuration is valid (%d resources)", len(graph))
            return 0
    except ValidationError as exc:
        logger.error("Invalid declarations: %s", exc)
        return 1
    except ReconcileError as exc:
        logger.error("Startup failed: %s", exc)
        return 1

    daemon = Daemon(config, engine, confirm=prompt_confirmation)

    try:
        if args.plan:
            report = daemon.run_once(mode=DRY_RUN, destroy=args.destroy)
            print(json.dumps({
                "changes": report.plan.change_set.summary() if report.plan else {},
                "plan": report.plan.change_set.describe() if report.plan else [],
                "drift": [d.address for d in report.drift],
            }, indent=2))
            return 0
        if args.once or args.destroy:
            report = daemon.run_once(destroy=args.destroy)
            if report.outputs:
                print(json.dumps(report.outputs, indent=2, default=str))
            return 0 if report.result is None or report.result.ok else 2
        daemon.run()
    except ReconcileError as exc:
        logger.error("Fatal error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0

    return 0
