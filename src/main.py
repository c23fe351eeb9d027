# src/main.py — v2
"""CLI entry point — plan and agents commands.

Usage:
    callagents plan <call_type>
    callagents agents
"""

from __future__ import annotations

import argparse
import logging
import sys

from callagents.core.models import CALL_TYPES
from callagents.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="callagents",
        description=f"callagents v{__version__} — Call transcript agent pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- plan ---
    p_plan = subparsers.add_parser(
        "plan", help="Show the execution plan for a call type",
    )
    p_plan.add_argument(
        "call_type", choices=CALL_TYPES,
        help="Call type to plan for",
    )
    p_plan.set_defaults(func=_cmd_plan)

    # --- agents ---
    p_agents = subparsers.add_parser(
        "agents", help="List registered steps and their dependencies",
    )
    p_agents.set_defaults(func=_cmd_agents)

    return parser


def _cmd_plan(args: argparse.Namespace) -> int:
    """Print the phases of a call type's plan and any ordering problems."""
    from callagents.pipeline.dag_builder import plan_order_warnings
    from callagents.pipeline.planner import build_plan
    from callagents.pipeline.registry import build_default_registry

    registry = build_default_registry()
    plan = build_plan(args.call_type)

    print(f"\nPlan for {plan.call_type}:")
    for idx, phase in enumerate(plan.phases, start=1):
        mode = "parallel" if phase.parallel else "sequential"
        print(f"  {idx}. {phase.name} ({mode})")
        for entry in phase.steps:
            flags = ", ".join(k for k, v in sorted(entry.override.items()) if v is True)
            print(f"       - {entry.name}" + (f" [{flags}]" if flags else ""))

    warnings = plan_order_warnings(plan, registry.get_dependency_map())
    if warnings:
        print("\nOrdering warnings:")
        for warning in warnings:
            print(f"  ! {warning}")
    return 0


def _cmd_agents(args: argparse.Namespace) -> int:
    """Print registered steps, dependency errors and dependency stages."""
    from callagents.pipeline.dag_builder import DAGError, dependency_stages
    from callagents.pipeline.registry import build_default_registry

    registry = build_default_registry()
    print(f"\nRegistered steps ({len(registry)}):")
    for name in registry.agent_names:
        agent = registry.get_or_raise(name)
        deps = ", ".join(agent.dependencies) or "-"
        print(f"  {name:<24} v{agent.version:<8} deps: {deps}")

    errors = registry.validate_dependencies()
    if errors:
        print("\nDependency errors:")
        for error in errors:
            print(f"  ! {error}")
        return 1

    try:
        stages = dependency_stages(registry.get_dependency_map())
    except DAGError as exc:
        print(f"\nDependency graph invalid: {exc}")
        return 1

    print("\nDependency stages:")
    for idx, stage in enumerate(stages, start=1):
        print(f"  {idx}. {', '.join(stage)}")
    return 0


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from callagents.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "WARNING", log_format="text")


if __name__ == "__main__":
    sys.exit(main())
