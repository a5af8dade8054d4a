from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .hashing import compute_stone_review_input_hash
from .judges import latest_reviews_by_index, run_stone_guard_judges
from .ledger import (
    get_one_stone_guard_approval,
    get_stone_promises,
    has_invalidated_promise,
    set_stone_as_promised as record_promise,
    set_stone_guard_approval,
)
from .models import (
    ApprovalArtifact,
    GuardInputError,
    GuardProgressEvent,
    GuardProgressListener,
    JudgeArtifact,
    Passage,
    PromiseArtifact,
    ReviewArtifact,
    Stone,
    StoneNotFoundError,
)
from .policy import APPROVED_MECHANISM, REVIEWED_MECHANISM, PolicyDecision, ReviewThresholds, judge_approved, judge_reviewed
from .progress import notify
from .render import GuardStepReport, format_check_yoself, format_guard_tree
from .reviews import run_stone_guard_reviews
from .settings import GuardSettings
from .state_store import RouteArtifactStore
from .stones import find_stone, get_all_stone_artifacts, get_all_stones

logger = logging.getLogger(__name__)


@dataclass
class PassageResult:
    stone: Stone
    passage: Passage
    note: str | None = None
    reason: str | None = None
    review_input_hash: str | None = None
    reviews: list[ReviewArtifact] = field(default_factory=list)
    judges: list[JudgeArtifact] = field(default_factory=list)
    emit: str = ""

    @property
    def allowed(self) -> bool:
        return self.passage == Passage.ALLOWED


@dataclass
class PromiseResult:
    promise: PromiseArtifact
    promised: int
    total: int
    emit: str


class _StepRecorder:
    """Listener that remembers whether each step was cached and how long it ran."""

    def __init__(self, forward: GuardProgressListener | None) -> None:
        self.forward = forward
        self.steps: dict[tuple[str, int], tuple[bool, float | None]] = {}

    def __call__(self, event: GuardProgressEvent) -> None:
        key = (event.step.phase, event.step.index)
        state = event.state
        if state == "cached":
            self.steps[key] = (True, None)
        elif state == "done" and event.inflight is not None and event.inflight.ended_at is not None:
            self.steps[key] = (False, (event.inflight.ended_at - event.inflight.began_at).total_seconds())
        notify(self.forward, event)

    def lookup(self, phase: str, index: int) -> tuple[bool, float | None]:
        return self.steps.get((phase, index), (True, None))


def resolve_stone(pattern: str, route: Path) -> Stone:
    stone = find_stone(get_all_stones(route), pattern)
    if stone is None:
        raise StoneNotFoundError(pattern)
    return stone


def _relative(path: Path, route: Path) -> str:
    try:
        return path.relative_to(route).as_posix()
    except ValueError:
        return str(path)


def _mark_passed(stone: Stone, route: Path, settings: GuardSettings) -> None:
    store = RouteArtifactStore(route, settings)
    store.write_text(store.passage_path(stone.name), f"passed: {datetime.now(UTC).isoformat()}\n")
    logger.info("stone %s passed", stone.name)


def _allow_unreviewed(
    stone: Stone,
    route: Path,
    settings: GuardSettings,
    *,
    note: str,
    review_input_hash: str | None = None,
) -> PassageResult:
    _mark_passed(stone, route, settings)
    return PassageResult(
        stone=stone,
        passage=Passage.ALLOWED,
        note=note,
        review_input_hash=review_input_hash,
        emit=format_guard_tree(stone=stone.name, passage=Passage.ALLOWED, note=note, guarded=False),
    )


def set_stone_as_passed(
    stone_pattern: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
    on_progress: GuardProgressListener | None = None,
    refresh_reviews: bool = False,
) -> PassageResult:
    """Evaluate a stone's guard and record its passage when allowed.

    Raises:
        StoneNotFoundError: If no stone matches ``stone_pattern``.
        GuardInputError: If the stone has no artifacts or its guard declares
            reviews without any judge.
    """
    settings = settings if settings is not None else GuardSettings()
    stone = resolve_stone(stone_pattern, route)

    artifact_files = get_all_stone_artifacts(stone, route, state_dir_name=settings.state_dir_name)
    if not artifact_files:
        raise GuardInputError(f"artifact not found for stone {stone.name}; produce its artifacts first")

    guard = stone.guard
    if guard is None:
        return _allow_unreviewed(stone, route, settings, note="unguarded")

    review_input_hash = compute_stone_review_input_hash(stone, route, settings=settings)

    if guard.self_reviews:
        promised = {p.slug for p in get_stone_promises(stone, review_input_hash, route, settings=settings)}
        pending = [(pos, review) for pos, review in enumerate(guard.self_reviews, start=1) if review.slug not in promised]
        if pending:
            position, next_review = pending[0]
            invalidated = has_invalidated_promise(stone, next_review.slug, review_input_hash, route, settings=settings)
            logger.info("stone %s blocked on self-review %s", stone.name, next_review.slug)
            return PassageResult(
                stone=stone,
                passage=Passage.BLOCKED,
                reason=f"self-review required: {next_review.slug}",
                review_input_hash=review_input_hash,
                emit=format_check_yoself(
                    stone=stone.name,
                    route=route,
                    review_self=next_review,
                    index=position,
                    total=len(guard.self_reviews),
                    invalidated=invalidated,
                ),
            )

    if not guard.reviews and not guard.judges:
        return _allow_unreviewed(stone, route, settings, note="artifacts only", review_input_hash=review_input_hash)
    if not guard.judges:
        raise GuardInputError(f"guard has reviews but no judges: {guard.path}")

    recorder = _StepRecorder(on_progress)
    reviews = run_stone_guard_reviews(
        stone,
        guard,
        route,
        settings=settings,
        on_progress=recorder,
        review_input_hash=review_input_hash,
        refresh=refresh_reviews,
    )
    review_iteration = max((review.iteration for review in reviews), default=1)
    judges = run_stone_guard_judges(
        stone,
        guard,
        review_input_hash,
        review_iteration,
        route,
        settings=settings,
        on_progress=recorder,
    )

    failed = [judge for judge in judges if not judge.passed]
    passage = Passage.BLOCKED if failed else Passage.ALLOWED
    reason = "; ".join(judge.reason or f"judge {judge.index} failed" for judge in failed) or None
    if passage == Passage.ALLOWED:
        _mark_passed(stone, route, settings)
    else:
        logger.info("stone %s blocked: %s", stone.name, reason)

    review_reports = []
    for review, cmd in zip(reviews, guard.reviews):
        cached, duration = recorder.lookup("review", review.index)
        review_reports.append(
            GuardStepReport(
                index=review.index,
                cmd=cmd,
                cached=cached,
                duration_sec=duration,
                path=review.path,
                blockers=review.blockers,
                nitpicks=review.nitpicks,
            )
        )
    judge_reports = []
    for judge, cmd in zip(judges, guard.judges):
        cached, duration = recorder.lookup("judge", judge.index)
        judge_reports.append(
            GuardStepReport(
                index=judge.index,
                cmd=cmd,
                cached=cached,
                duration_sec=duration,
                path=judge.path,
                passed=judge.passed,
                reason=judge.reason,
            )
        )

    return PassageResult(
        stone=stone,
        passage=passage,
        reason=reason,
        review_input_hash=review_input_hash,
        reviews=reviews,
        judges=judges,
        emit=format_guard_tree(
            stone=stone.name,
            passage=passage,
            reason=reason,
            artifact_files=[_relative(path, route) for path in artifact_files],
            reviews=review_reports,
            judges=judge_reports,
        ),
    )


def set_stone_as_approved(
    stone_pattern: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> ApprovalArtifact:
    stone = resolve_stone(stone_pattern, route)
    return set_stone_guard_approval(stone, route, settings=settings)


def set_stone_as_promised(
    stone_pattern: str,
    route: Path,
    slug: str,
    *,
    settings: GuardSettings | None = None,
) -> PromiseResult:
    """Record a self-review promise at the stone's current review-input-hash.

    Raises:
        GuardInputError: If the guard declares self-reviews and ``slug`` is not one of them.
    """
    stone = resolve_stone(stone_pattern, route)
    self_reviews = stone.guard.self_reviews if stone.guard is not None else []
    valid_slugs = [review.slug for review in self_reviews]
    if valid_slugs and slug not in valid_slugs:
        raise GuardInputError(f'invalid self-review slug: "{slug}". valid options: {", ".join(valid_slugs)}')

    hash = compute_stone_review_input_hash(stone, route, settings=settings)
    promise = record_promise(stone, slug, hash, route, settings=settings)

    promised = {p.slug for p in get_stone_promises(stone, hash, route, settings=settings)}
    done = sum(1 for review in self_reviews if review.slug in promised)
    lines = [f"🤝 promised {slug} for {stone.name}", f"   └─ progress = {done}/{len(self_reviews)}"]
    emit = "\n".join(lines)

    remaining = [(pos, review) for pos, review in enumerate(self_reviews, start=1) if review.slug not in promised]
    if remaining:
        position, next_review = remaining[0]
        emit += "\n\n" + format_check_yoself(
            stone=stone.name,
            route=route,
            review_self=next_review,
            index=position,
            total=len(self_reviews),
        )

    return PromiseResult(promise=promise, promised=done, total=len(self_reviews), emit=emit)


def run_judge_mechanism(
    stone_pattern: str,
    route: Path,
    mechanism: str,
    *,
    thresholds: ReviewThresholds | None = None,
    settings: GuardSettings | None = None,
) -> PolicyDecision:
    """Evaluate ``approved?`` or ``reviewed?`` for a stone on demand."""
    if mechanism not in (APPROVED_MECHANISM, REVIEWED_MECHANISM):
        raise GuardInputError(f'unknown judge mechanism "{mechanism}"')
    settings = settings if settings is not None else GuardSettings()
    stone = resolve_stone(stone_pattern, route)

    if mechanism == APPROVED_MECHANISM:
        return judge_approved(get_one_stone_guard_approval(stone, route, settings=settings))

    hash = compute_stone_review_input_hash(stone, route, settings=settings)
    reviews = latest_reviews_by_index(RouteArtifactStore(route, settings), stone.name, hash)
    return judge_reviewed(reviews, hash, thresholds)
