from __future__ import annotations

import argparse
import shlex
from dataclasses import dataclass, field
from typing import Iterable

from .models import ApprovalArtifact, GuardInputError, ReviewArtifact

APPROVED_MECHANISM = "approved?"
REVIEWED_MECHANISM = "reviewed?"
JUDGE_MECHANISMS = frozenset({APPROVED_MECHANISM, REVIEWED_MECHANISM})


def format_count(count: int, noun: str) -> str:
    """``1 blocker``, ``0 blockers``, ``2 blockers``."""
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


@dataclass(frozen=True)
class ReviewThresholds:
    allow_blockers: int = 0
    allow_nitpicks: int = 0

    def __post_init__(self) -> None:
        if self.allow_blockers < 0 or self.allow_nitpicks < 0:
            raise GuardInputError("review thresholds must be >= 0")


@dataclass(frozen=True)
class PolicyDecision:
    passed: bool
    reason: str

    def render(self) -> str:
        """Judge output contract: a ``passed:`` line and a ``reason:`` line."""
        return f"passed: {'true' if self.passed else 'false'}\nreason: {self.reason}\n"


def summarize_reviews(reviews: Iterable[ReviewArtifact]) -> tuple[int, int]:
    blockers = 0
    nitpicks = 0
    for review in reviews:
        blockers += review.blockers
        nitpicks += review.nitpicks
    return blockers, nitpicks


def evaluate_policy(
    reviews: list[ReviewArtifact],
    *,
    thresholds: ReviewThresholds | None = None,
    approval: ApprovalArtifact | None = None,
    require_approval: bool = False,
) -> PolicyDecision:
    """Combine review counts, thresholds and approval into one decision.

    The reason names the first failing condition, checked in this order:
    reviews that failed to execute, blockers, nitpicks, approval.
    """
    thresholds = thresholds if thresholds is not None else ReviewThresholds()

    failed = [review for review in reviews if review.failed]
    if failed:
        labels = ", ".join(f"r{review.index}" for review in failed)
        return PolicyDecision(False, f"review failed to execute ({labels})")

    blockers, nitpicks = summarize_reviews(reviews)
    if blockers > thresholds.allow_blockers:
        return PolicyDecision(False, f"blockers exceed threshold ({blockers} > {thresholds.allow_blockers})")
    if nitpicks > thresholds.allow_nitpicks:
        return PolicyDecision(False, f"nitpicks exceed threshold ({nitpicks} > {thresholds.allow_nitpicks})")
    if require_approval and approval is None:
        return PolicyDecision(False, "wait for human approval")

    reason = (
        f"reviews pass (blockers: {blockers}/{thresholds.allow_blockers}, "
        f"nitpicks: {nitpicks}/{thresholds.allow_nitpicks})"
    )
    if require_approval:
        reason += "; human approval found"
    return PolicyDecision(True, reason)


def judge_approved(approval: ApprovalArtifact | None) -> PolicyDecision:
    if approval is None:
        return PolicyDecision(False, "wait for human approval")
    return PolicyDecision(True, "human approval found")


def judge_reviewed(
    reviews: list[ReviewArtifact],
    review_input_hash: str,
    thresholds: ReviewThresholds | None = None,
) -> PolicyDecision:
    if not reviews:
        return PolicyDecision(False, f"no review files found for hash {review_input_hash[:8]}")
    return evaluate_policy(reviews, thresholds=thresholds)


@dataclass(frozen=True)
class JudgeMechanism:
    name: str
    thresholds: ReviewThresholds = field(default_factory=ReviewThresholds)


class _MechanismArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise GuardInputError(f"invalid judge mechanism options: {message}")


def _mechanism_parser() -> argparse.ArgumentParser:
    parser = _MechanismArgumentParser(prog="judge", add_help=False)
    parser.add_argument("--allow-blockers", type=int, default=0)
    parser.add_argument("--allow-nitpicks", type=int, default=0)
    return parser


def parse_judge_mechanism(command: str) -> JudgeMechanism | None:
    """Recognize a built-in judge such as ``reviewed? --allow-nitpicks 3``.

    Returns ``None`` for anything that is not a built-in mechanism so the caller
    runs it as a shell command.

    Raises:
        GuardInputError: If a built-in mechanism carries invalid options.
    """
    try:
        tokens = shlex.split(command)
    except ValueError:
        return None
    if not tokens or tokens[0] not in JUDGE_MECHANISMS:
        return None

    name, options = tokens[0], tokens[1:]
    parsed = _mechanism_parser().parse_args(options)
    if name == APPROVED_MECHANISM and options:
        raise GuardInputError(f"{APPROVED_MECHANISM} takes no options, got: {' '.join(options)}")
    return JudgeMechanism(
        name=name,
        thresholds=ReviewThresholds(allow_blockers=parsed.allow_blockers, allow_nitpicks=parsed.allow_nitpicks),
    )
