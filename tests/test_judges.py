from pathlib import Path

import pytest

from conftest import MakeStone, count_runs, counting
from stone_guard.hashing import compute_stone_review_input_hash
from stone_guard.judges import parse_judge_passed, parse_judge_reason, run_stone_guard_judges
from stone_guard.ledger import set_stone_guard_approval
from stone_guard.models import GuardInputError, GuardProgressEvent, Stone
from stone_guard.reviews import run_stone_guard_reviews
from stone_guard.settings import GuardSettings
from stone_guard.state_store import RouteArtifactStore

CLEAN_REVIEW = "printf '0 blockers\\n0 nitpicks\\n'"


def _run_guard(stone: Stone, route: Path, settings: GuardSettings, events: list[GuardProgressEvent] | None = None):
    listener = events.append if events is not None else None
    reviews = run_stone_guard_reviews(stone, stone.guard, route, settings=settings, on_progress=listener)
    review_hash = reviews[0].hash if reviews else compute_stone_review_input_hash(stone, route, settings=settings)
    iteration = max((review.iteration for review in reviews), default=1)
    return reviews, run_stone_guard_judges(
        stone, stone.guard, review_hash, iteration, route, settings=settings, on_progress=listener
    )


def test_parse_judge_passed_marker_wins_over_exit_code() -> None:
    assert parse_judge_passed("passed: true\n", exit_code=1) is True
    assert parse_judge_passed("PASSED: False\nreason: nope\n", exit_code=0) is False
    assert parse_judge_passed("all good", exit_code=0) is True
    assert parse_judge_passed("all good", exit_code=2) is False


def test_parse_judge_reason_falls_back_to_stderr() -> None:
    assert parse_judge_reason("passed: false\nreason: too vague\n") == "too vague"
    assert parse_judge_reason("out\n\n---stderr---\ntraceback here\nmore") == "stderr: traceback here"
    assert parse_judge_reason("nothing useful") is None


def test_approval_alone_reruns_judges(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(
        guard={"reviews": [counting(CLEAN_REVIEW, "r1.log")], "judges": ["approved?"]},
        artifacts={"1.vision.md": "vision"},
    )
    _, [blocked] = _run_guard(stone, route, settings)
    assert not blocked.passed
    assert blocked.reason == "wait for human approval"

    set_stone_guard_approval(stone, route, settings=settings)
    events: list[GuardProgressEvent] = []
    [review], [approved] = _run_guard(stone, route, settings, events)

    assert count_runs(route, "r1.log") == 1
    assert [event.state for event in events] == ["cached", "active", "done"]
    assert approved.passed
    assert approved.reason == "human approval found"
    assert approved.review_hash == blocked.review_hash
    assert approved.judge_hash != blocked.judge_hash
    assert approved.review_iteration == review.iteration == 1


def test_failed_judges_are_never_reused(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(
        guard={"judges": [counting("printf 'passed: false\\nreason: nope\\n'", "j1.log")]},
        artifacts={"1.vision.md": "vision"},
    )
    _, [first] = _run_guard(stone, route, settings)
    _, [second] = _run_guard(stone, route, settings)

    assert count_runs(route, "j1.log") == 2
    assert first.judge_hash == second.judge_hash
    assert (first.judge_iteration, second.judge_iteration) == (1, 2)
    assert second.reason == "nope"


def test_passed_judges_are_reused(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(
        guard={"judges": [counting("printf 'passed: true\\n'", "j1.log")]},
        artifacts={"1.vision.md": "vision"},
    )
    events: list[GuardProgressEvent] = []
    _, [first] = _run_guard(stone, route, settings)
    _, [second] = _run_guard(stone, route, settings, events)

    assert count_runs(route, "j1.log") == 1
    assert second == first
    assert [event.state for event in events] == ["cached"]


def test_judge_exit_code_decides_without_marker(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(guard={"judges": ["exit 3", "true"]}, artifacts={"1.vision.md": "vision"})
    _, [failed, passed] = _run_guard(stone, route, settings)

    assert not failed.passed
    assert failed.reason == "judge 1 failed with exit code 3"
    assert "exit-code: 3" in failed.path.read_text(encoding="utf-8")
    assert passed.passed


def test_judge_hash_placeholder(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(
        guard={"judges": ["printf 'passed: true\\nreason: $hash\\n'"]},
        artifacts={"1.vision.md": "vision"},
    )
    _, [judge] = _run_guard(stone, route, settings)
    assert judge.reason == judge.judge_hash


def test_timed_out_judge_fails_despite_partial_output(route: Path, make_stone: MakeStone) -> None:
    settings = GuardSettings(command_timeout_seconds=1)
    stone = make_stone(
        guard={"judges": ["printf 'passed: true\\n'; sleep 5"]},
        artifacts={"1.vision.md": "vision"},
    )
    _, [judge] = _run_guard(stone, route, settings)
    assert not judge.passed
    assert judge.reason == "judge 1 timed out after 1s"


def test_reviewed_mechanism_with_thresholds(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(
        guard={
            "reviews": ["printf 'blockers: 2\\nnitpicks: 1\\n'"],
            "judges": ["reviewed? --allow-blockers 2 --allow-nitpicks 1", "reviewed?"],
        },
        artifacts={"1.vision.md": "vision"},
    )
    _, [lenient, strict] = _run_guard(stone, route, settings)

    assert lenient.passed
    assert lenient.reason == "reviews pass (blockers: 2/2, nitpicks: 1/1)"
    assert not strict.passed
    assert strict.reason == "blockers exceed threshold (2 > 0)"
    stored = RouteArtifactStore(route, settings).list_judges(stone.name, lenient.review_hash)
    assert len(stored) == 2


def test_invalid_mechanism_options_raise(route: Path, make_stone: MakeStone, settings: GuardSettings) -> None:
    stone = make_stone(guard={"judges": ["reviewed? --allow-blockers many"]}, artifacts={"1.vision.md": "vision"})
    with pytest.raises(GuardInputError, match="invalid judge mechanism options"):
        _run_guard(stone, route, settings)
