from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from .execution import CommandResult, run_command, substitute_placeholders
from .hashing import compute_stone_judge_input_hash
from .ledger import get_one_stone_guard_approval
from .models import (
    Guard,
    GuardInflight,
    GuardOutcome,
    GuardProgressEvent,
    GuardProgressListener,
    GuardStep,
    JudgeArtifact,
    JudgeOutcome,
    ReviewArtifact,
    Stone,
)
from .policy import APPROVED_MECHANISM, JudgeMechanism, PolicyDecision, judge_approved, judge_reviewed, parse_judge_mechanism
from .progress import notify
from .reviews import read_review_artifact
from .settings import GuardSettings
from .state_store import JudgeKey, RouteArtifactStore

logger = logging.getLogger(__name__)

_PASSED_RE = re.compile(r"passed:\s*(true|false)", re.IGNORECASE)
_REASON_RE = re.compile(r"reason:\s*(.+)", re.IGNORECASE)
_STDERR_SECTION_RE = re.compile(r"---stderr---\n(.+)")


def parse_judge_passed(content: str, exit_code: int) -> bool:
    """An explicit ``passed:`` marker wins; otherwise the exit code decides."""
    match = _PASSED_RE.search(content)
    if match:
        return match.group(1).lower() == "true"
    return exit_code == 0


def parse_judge_reason(content: str) -> str | None:
    match = _REASON_RE.search(content)
    if match:
        return match.group(1).strip()
    stderr_match = _STDERR_SECTION_RE.search(content)
    if stderr_match and stderr_match.group(1).strip():
        return f"stderr: {stderr_match.group(1).strip()}"
    return None


def read_judge_artifact(store: RouteArtifactStore, key: JudgeKey) -> JudgeArtifact:
    path = store.judge_path(key)
    content = store.read_text(path)
    # Recorded artifacts always carry a marker; a missing one is treated as a failure.
    passed = parse_judge_passed(content, exit_code=1)
    return JudgeArtifact(
        stone=key.stone,
        review_hash=key.review_hash,
        judge_hash=key.judge_hash,
        review_iteration=key.review_iteration,
        judge_iteration=key.judge_iteration,
        index=key.index,
        path=path,
        passed=passed,
        reason=parse_judge_reason(content),
    )


def latest_reviews_by_index(store: RouteArtifactStore, stone: str, review_input_hash: str) -> list[ReviewArtifact]:
    latest = {key.index: key for key in store.list_reviews(stone, review_input_hash)}
    return [read_review_artifact(store, latest[index]) for index in sorted(latest)]


def _evaluate_mechanism(
    mechanism: JudgeMechanism,
    stone: Stone,
    review_input_hash: str,
    route: Path,
    settings: GuardSettings,
) -> PolicyDecision:
    if mechanism.name == APPROVED_MECHANISM:
        return judge_approved(get_one_stone_guard_approval(stone, route, settings=settings))
    store = RouteArtifactStore(route, settings)
    reviews = latest_reviews_by_index(store, stone.name, review_input_hash)
    return judge_reviewed(reviews, review_input_hash, mechanism.thresholds)


def _execute_judge(
    stone: Stone,
    judge_cmd: str,
    key: JudgeKey,
    route: Path,
    output_path: Path,
    settings: GuardSettings,
) -> CommandResult:
    mechanism = parse_judge_mechanism(judge_cmd)
    if mechanism is None:
        cmd = substitute_placeholders(
            judge_cmd,
            stone=stone.name,
            route=str(route),
            hash=key.judge_hash,
            output=str(output_path),
        )
        return run_command(cmd, cwd=route, timeout=settings.command_timeout_seconds, shell=settings.shell)

    decision = _evaluate_mechanism(mechanism, stone, key.review_hash, route, settings)
    logger.debug("mechanism %s for %s decided passed=%s", mechanism.name, stone.name, decision.passed)
    return CommandResult(
        stdout=decision.render(),
        stderr="",
        exit_code=0 if decision.passed else 1,
        timed_out=False,
        duration=0.0,
    )


def run_one_stone_guard_judge(
    stone: Stone,
    judge_cmd: str,
    key: JudgeKey,
    route: Path,
    *,
    settings: GuardSettings,
) -> JudgeArtifact:
    """Execute one judge and record its artifact under ``key``.

    The recorded content always ends up with an explicit ``passed:`` marker so a
    later read never has to guess from an exit code it no longer knows.
    """
    store = RouteArtifactStore(route, settings)
    store.ensure_structure()
    output_path = store.judge_path(key)

    result = _execute_judge(stone, judge_cmd, key, route, output_path, settings)

    if output_path.is_file():
        content = store.read_text(output_path)
    else:
        content = "\n\n---stderr---\n".join(part for part in (result.stdout, result.stderr) if part)
    if not content:
        content = (
            f"judge command exited {result.exit_code} without output\n\n"
            f"stderr: {result.stderr or '(none)'}\n"
            f"stdout: {result.stdout or '(none)'}\n"
        )

    if result.timed_out:
        # First marker wins, so the timeout verdict goes ahead of any partial output.
        content = (
            f"passed: false\n"
            f"reason: judge {key.index} timed out after {settings.command_timeout_seconds}s\n\n"
            f"---\n{content}"
        )
    elif not _PASSED_RE.search(content):
        passed = result.exit_code == 0
        if not content.endswith("\n"):
            content += "\n"
        content += f"\n---\npassed: {'true' if passed else 'false'}\nexit-code: {result.exit_code}\n"
        if not passed and parse_judge_reason(content) is None:
            content += f"reason: judge {key.index} failed with exit code {result.exit_code}\n"

    store.write_text(output_path, content)
    return read_judge_artifact(store, key)


def run_stone_guard_judges(
    stone: Stone,
    guard: Guard,
    review_input_hash: str,
    review_iteration: int,
    route: Path,
    *,
    settings: GuardSettings | None = None,
    on_progress: GuardProgressListener | None = None,
) -> list[JudgeArtifact]:
    """Produce one judge artifact per configured judge.

    Only a *passed* prior artifact at the same (review hash, judge hash, index)
    is reused; failures are always re-observed. Fresh runs share a judge
    iteration one past the highest recorded for this pair of hashes, independent
    of the review iteration.
    """
    settings = settings if settings is not None else GuardSettings()
    store = RouteArtifactStore(route, settings)
    judge_input_hash = compute_stone_judge_input_hash(stone, review_input_hash, route, settings=settings)

    prior = store.list_judges(stone.name, review_input_hash, judge_input_hash)
    judge_iteration = max((key.judge_iteration for key in prior), default=0) + 1

    passed_by_index: dict[int, JudgeArtifact] = {}
    for key in prior:
        artifact = read_judge_artifact(store, key)
        if artifact.passed:
            passed_by_index[key.index] = artifact

    judges: list[JudgeArtifact] = []
    for index, judge_cmd in enumerate(guard.judges, start=1):
        step = GuardStep(phase="judge", index=index)
        cached = passed_by_index.get(index)
        if cached is not None:
            logger.debug("judge j%d for %s reused from %s", index, stone.name, cached.path.name)
            notify(on_progress, GuardProgressEvent(stone=stone, step=step))
            judges.append(cached)
            continue

        began_at = datetime.now(UTC)
        notify(on_progress, GuardProgressEvent(stone=stone, step=step, inflight=GuardInflight(began_at=began_at)))

        judge = run_one_stone_guard_judge(
            stone,
            judge_cmd,
            JudgeKey(
                stone=stone.name,
                review_hash=review_input_hash,
                judge_hash=judge_input_hash,
                review_iteration=review_iteration,
                judge_iteration=judge_iteration,
                index=index,
            ),
            route,
            settings=settings,
        )
        logger.info("judge j%d for %s finished: passed=%s", index, stone.name, judge.passed)

        notify(
            on_progress,
            GuardProgressEvent(
                stone=stone,
                step=step,
                inflight=GuardInflight(began_at=began_at, ended_at=datetime.now(UTC)),
                outcome=GuardOutcome(
                    path=judge.path,
                    judge=JudgeOutcome(decision="passed" if judge.passed else "failed", reason=judge.reason),
                ),
            ),
        )
        judges.append(judge)

    return judges
