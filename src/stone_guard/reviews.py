from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from .execution import CommandResult, run_command, substitute_placeholders
from .hashing import compute_stone_review_input_hash
from .models import (
    Guard,
    GuardInflight,
    GuardOutcome,
    GuardProgressEvent,
    GuardProgressListener,
    GuardStep,
    ReviewArtifact,
    ReviewOutcome,
    Stone,
)
from .progress import notify
from .settings import GuardSettings
from .state_store import ReviewKey, RouteArtifactStore

logger = logging.getLogger(__name__)

# A "blockers: N" field anywhere in the text wins over prose like "3 blockers".
_BLOCKERS_FIELD_RE = re.compile(r"\bblockers?\s*:\s*(\d+)", re.IGNORECASE)
_NITPICKS_FIELD_RE = re.compile(r"\bnitpicks?\s*:\s*(\d+)", re.IGNORECASE)
_BLOCKERS_PROSE_RE = re.compile(r"(\d+)\s+blockers?\b", re.IGNORECASE)
_NITPICKS_PROSE_RE = re.compile(r"(\d+)\s+nitpicks?\b", re.IGNORECASE)
_FAILED_RE = re.compile(r"^failed:\s*true\s*$", re.IGNORECASE | re.MULTILINE)


def parse_review_counts(content: str) -> tuple[int, int]:
    """Return ``(blockers, nitpicks)`` parsed from review output; missing counts are zero."""
    return (
        _parse_count(content, _BLOCKERS_FIELD_RE, _BLOCKERS_PROSE_RE),
        _parse_count(content, _NITPICKS_FIELD_RE, _NITPICKS_PROSE_RE),
    )


def _parse_count(content: str, field_re: re.Pattern[str], prose_re: re.Pattern[str]) -> int:
    match = field_re.search(content) or prose_re.search(content)
    return int(match.group(1)) if match else 0


def failure_footer(result: CommandResult) -> str:
    """Marker block appended to an artifact whose command did not succeed."""
    lines = ["", "---", "failed: true", f"exit-code: {result.exit_code}"]
    if result.timed_out:
        lines.append("timed-out: true")
    return "\n".join(lines) + "\n"


def read_review_artifact(store: RouteArtifactStore, key: ReviewKey) -> ReviewArtifact:
    path = store.review_path(key)
    content = store.read_text(path)
    blockers, nitpicks = parse_review_counts(content)
    return ReviewArtifact(
        stone=key.stone,
        hash=key.hash,
        iteration=key.iteration,
        index=key.index,
        path=path,
        blockers=blockers,
        nitpicks=nitpicks,
        failed=bool(_FAILED_RE.search(content)),
    )


def run_one_stone_guard_review(
    stone: Stone,
    review_cmd: str,
    key: ReviewKey,
    route: Path,
    *,
    settings: GuardSettings,
) -> ReviewArtifact:
    """Execute one review command and record its artifact under ``key``."""
    store = RouteArtifactStore(route, settings)
    store.ensure_structure()
    output_path = store.review_path(key)

    cmd = substitute_placeholders(
        review_cmd,
        stone=stone.name,
        route=str(route),
        hash=key.hash,
        output=str(output_path),
    )
    result = run_command(cmd, cwd=route, timeout=settings.command_timeout_seconds, shell=settings.shell)

    # Prefer what the command wrote to $output; otherwise keep its stdout.
    if output_path.is_file():
        content = store.read_text(output_path)
    elif result.stdout:
        content = result.stdout
    elif result.ok:
        content = result.stderr or "review produced no output\n"
    else:
        notice = f"review command timed out after {settings.command_timeout_seconds}s" if result.timed_out else "review command failed"
        content = f"{notice}\n\n{result.stderr}" if result.stderr else f"{notice}\n"

    if not result.ok:
        content = content + failure_footer(result)

    if not output_path.is_file() or not result.ok:
        store.write_text(output_path, content)

    return read_review_artifact(store, key)


def run_stone_guard_reviews(
    stone: Stone,
    guard: Guard,
    route: Path,
    *,
    settings: GuardSettings | None = None,
    on_progress: GuardProgressListener | None = None,
    review_input_hash: str | None = None,
    refresh: bool = False,
) -> list[ReviewArtifact]:
    """Produce one review artifact per configured review command.

    A review whose (stone, hash, index) already has an artifact is reused without
    running anything, unless ``refresh`` is set. Fresh runs share one iteration,
    one more than the highest iteration recorded at this hash.
    """
    settings = settings if settings is not None else GuardSettings()
    store = RouteArtifactStore(route, settings)
    hash = review_input_hash or compute_stone_review_input_hash(stone, route, settings=settings)

    prior = store.list_reviews(stone.name, hash)
    latest_by_index: dict[int, ReviewKey] = {}
    for key in prior:
        latest_by_index[key.index] = key
    iteration = max((key.iteration for key in prior), default=0) + 1

    reviews: list[ReviewArtifact] = []
    for index, review_cmd in enumerate(guard.reviews, start=1):
        step = GuardStep(phase="review", index=index)
        cached_key = latest_by_index.get(index)
        if cached_key is not None and not refresh:
            logger.debug("review r%d for %s reused from %s", index, stone.name, cached_key.filename)
            notify(on_progress, GuardProgressEvent(stone=stone, step=step))
            reviews.append(read_review_artifact(store, cached_key))
            continue

        began_at = datetime.now(UTC)
        notify(on_progress, GuardProgressEvent(stone=stone, step=step, inflight=GuardInflight(began_at=began_at)))

        review = run_one_stone_guard_review(
            stone,
            review_cmd,
            ReviewKey(stone=stone.name, hash=hash, iteration=iteration, index=index),
            route,
            settings=settings,
        )
        logger.info(
            "review r%d for %s finished: %d blockers, %d nitpicks",
            index,
            stone.name,
            review.blockers,
            review.nitpicks,
        )

        notify(
            on_progress,
            GuardProgressEvent(
                stone=stone,
                step=step,
                inflight=GuardInflight(began_at=began_at, ended_at=datetime.now(UTC)),
                outcome=GuardOutcome(
                    path=review.path,
                    review=ReviewOutcome(blockers=review.blockers, nitpicks=review.nitpicks),
                ),
            ),
        )
        reviews.append(review)

    return reviews
