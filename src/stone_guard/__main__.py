"""Entry point for `python -m stone_guard` and the `stone-guard` CLI script."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from stone_guard.drive import get_route_stones
from stone_guard.passage import (
    run_judge_mechanism,
    set_stone_as_approved,
    set_stone_as_passed,
    set_stone_as_promised,
)
from stone_guard.policy import APPROVED_MECHANISM, REVIEWED_MECHANISM, ReviewThresholds
from stone_guard.progress import GuardProgressEmitter
from stone_guard.settings import GuardSettings

LOG_LEVEL_CHOICES = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--stone", required=True, help="Stone name or glob pattern, e.g. 1.vision or '1.*'")
    parser.add_argument("--route", type=Path, default=Path("."), help="Route directory holding the stones (default: cwd)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=LOG_LEVEL_CHOICES,
        help="Logging verbosity",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stone-guard", description="Evaluate and cache guard gates for route stones")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pass_parser = subparsers.add_parser("pass", help="Run the stone's guard and record passage when allowed")
    _add_common_arguments(pass_parser)
    pass_parser.add_argument("--refresh", action="store_true", help="Re-run reviews even when cached at this hash")

    approve_parser = subparsers.add_parser("approve", help="Record human approval for the stone")
    _add_common_arguments(approve_parser)

    promise_parser = subparsers.add_parser("promise", help="Promise a self-review at the current artifact hash")
    _add_common_arguments(promise_parser)
    promise_parser.add_argument("--that", required=True, dest="slug", help="Self-review slug being promised")

    judge_parser = subparsers.add_parser("judge", help="Evaluate a built-in judge mechanism")
    _add_common_arguments(judge_parser)
    judge_parser.add_argument("--mechanism", required=True, choices=[APPROVED_MECHANISM, REVIEWED_MECHANISM])
    judge_parser.add_argument("--allow-blockers", type=int, default=0)
    judge_parser.add_argument("--allow-nitpicks", type=int, default=0)

    get_parser = subparsers.add_parser("get", help="List stones by @next-one, @next-all or a name glob")
    _add_common_arguments(get_parser)
    get_parser.add_argument("--say", action="store_true", help="Print the selected stone files")

    return parser


def _run(args: argparse.Namespace, settings: GuardSettings) -> int:
    route = args.route.resolve()

    if args.command == "pass":
        with GuardProgressEmitter(sys.stderr, spin_interval_ms=settings.spin_interval_ms) as emitter:
            result = set_stone_as_passed(
                args.stone,
                route,
                settings=settings,
                on_progress=emitter,
                refresh_reviews=args.refresh,
            )
        print(result.emit)
        return 0 if result.allowed else 1

    if args.command == "get":
        selection = get_route_stones(args.stone, route, settings=settings, say=args.say)
        print(selection.emit if selection.emit is not None else "\n".join(stone.name for stone in selection.stones))
        return 0

    if args.command == "approve":
        approval = set_stone_as_approved(args.stone, route, settings=settings)
        print(f"✅ approved {approval.stone}")
        return 0

    if args.command == "promise":
        promise = set_stone_as_promised(args.stone, route, args.slug, settings=settings)
        print(promise.emit)
        return 0

    decision = run_judge_mechanism(
        args.stone,
        route,
        args.mechanism,
        thresholds=ReviewThresholds(allow_blockers=args.allow_blockers, allow_nitpicks=args.allow_nitpicks),
        settings=settings,
    )
    sys.stdout.write(decision.render())
    return 0 if decision.passed else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = GuardSettings.from_env()
        return _run(args, settings)
    except (OSError, ValueError) as exc:
        logging.error("stone-guard %s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
