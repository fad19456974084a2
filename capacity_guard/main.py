from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .budget import BudgetValidator
from .io_utils import load_config, load_request, load_snapshot
from .models import InvalidInputError, Period, StateSnapshot, ValidationConfig
from .overallocation import get_utilization_summary
from .pipeline import AllocationValidationPipeline, Decision, ValidationReport

EXIT_REJECTED = 1
EXIT_USAGE = 2


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Validate a proposed allocation against resource capacity and cost-center budgets."
    )
    parser.add_argument("--state-dir", required=True, help="Directory holding resources.json, allocations and cost centers")
    parser.add_argument("--request", help="Path to the allocation request JSON file")
    parser.add_argument("--config", help="Path to configuration JSON file (default: <state-dir>/config.json if present)")
    enforcement = parser.add_mutually_exclusive_group()
    enforcement.add_argument(
        "--strict",
        dest="strict_enforcement",
        action="store_true",
        default=None,
        help="Block allocations that push a resource over its threshold",
    )
    enforcement.add_argument(
        "--lenient",
        dest="strict_enforcement",
        action="store_false",
        help="Report capacity breaches as warnings only",
    )
    parser.add_argument(
        "--allow-over-allocation",
        action="store_true",
        default=None,
        help="Downgrade capacity breaches to warnings regardless of --strict",
    )
    parser.add_argument("--period", choices=[p.value for p in Period], help="Budget period to validate against")
    parser.add_argument("--json", action="store_true", help="Print the validation report as JSON")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print utilization and budget summaries for the snapshot",
    )
    return parser.parse_args(argv)


def _resolve_paths(args: argparse.Namespace) -> Tuple[Path, Optional[Path], Optional[Path]]:
    state_dir = Path(args.state_dir).resolve()
    if not state_dir.is_dir():
        raise ValueError(f"state directory not found: {state_dir}")
    request_path = Path(args.request) if args.request else None
    if request_path is not None and not request_path.is_file():
        raise ValueError(f"request file not found at {request_path}")
    if request_path is None and not args.summary:
        raise ValueError("provide --request, --summary, or both")
    if args.config:
        config_path: Optional[Path] = Path(args.config)
        if not config_path.is_file():
            raise ValueError(f"config file not found at {config_path}")
    else:
        candidate = state_dir / "config.json"
        config_path = candidate if candidate.is_file() else None
    return state_dir, request_path, config_path


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_report(report: ValidationReport) -> None:
    if not report.outcomes:
        print("No issues found.")
    for outcome in report.outcomes:
        label = outcome.severity.value.upper()
        print(f"- [{label}] {outcome.check_type.value}: {outcome.message}")
        if outcome.conflicts:
            print(f"  conflicts: {', '.join(outcome.conflicts)}")
    recommendations = report.recommendations()
    if recommendations:
        print("\nRecommendations:")
        for item in recommendations:
            print(f"- {item}")
    print(f"\nDecision: {report.decision.value}")


def _print_summary(snapshot: StateSnapshot, config: ValidationConfig) -> None:
    entries = get_utilization_summary(
        snapshot.allocations,
        snapshot.resources,
        default_threshold=config.default_capacity_threshold,
    )
    print("Resource utilization:")
    if not entries:
        print("- none")
    for entry in entries:
        flag = " (over-allocated)" if entry.is_over_allocated else ""
        print(
            f"- {entry.resource_name}: {entry.utilization_percentage:.1f}% "
            f"[{entry.status.value}] across {entry.active_allocations_count} allocation(s){flag}"
        )
    validator = BudgetValidator(snapshot.cost_centers, snapshot.allocations, currency=config.currency)
    summaries: List[dict] = validator.all_budget_summaries()
    print("\nCost center budgets:")
    if not summaries:
        print("- none")
    for summary in summaries:
        period_status = summary.get(config.budget_period.value) or {}
        print(
            f"- {summary['costCenterName']} ({summary['enforcementMode']}): "
            f"{period_status.get('utilization', 0.0):.1f}% {period_status.get('status', '')}"
        )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        state_dir, request_path, config_path = _resolve_paths(args)
        cfg = load_config(config_path) if config_path else ValidationConfig()
        if args.period:
            cfg = replace(cfg, budget_period=Period.parse(args.period))
        _configure_logging(cfg.logging_level)
        snapshot = load_snapshot(state_dir)
        request = load_request(request_path) if request_path else None
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(EXIT_USAGE)

    if args.summary:
        _print_summary(snapshot, cfg)
        if request is None:
            return
        print()

    pipeline = AllocationValidationPipeline(cfg)
    try:
        report = pipeline.evaluate(
            request,
            snapshot,
            strict_enforcement=args.strict_enforcement,
            allow_over_allocation=args.allow_over_allocation,
        )
    except InvalidInputError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(EXIT_USAGE)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        _print_report(report)
    if report.decision is Decision.REJECT:
        sys.exit(EXIT_REJECTED)


if __name__ == "__main__":
    main()
