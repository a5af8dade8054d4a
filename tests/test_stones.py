from pathlib import Path

import pytest

from conftest import MakeStone
from stone_guard.models import GuardInputError
from stone_guard.stones import find_stone, get_all_stone_artifacts, get_all_stones, parse_stone_guard


def test_get_all_stones_sorted_with_guards(route: Path, make_stone: MakeStone) -> None:
    make_stone("2.design")
    make_stone("1.vision", guard={"reviews": ["echo review"], "judges": ["reviewed?"]})

    stones = get_all_stones(route)
    assert [stone.name for stone in stones] == ["1.vision", "2.design"]
    assert stones[0].guard is not None
    assert stones[0].guard.reviews == ["echo review"]
    assert stones[0].guard.judges == ["reviewed?"]
    assert stones[1].guard is None


def test_get_all_stones_missing_route_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        get_all_stones(tmp_path / "absent")


def test_parse_stone_guard_structured_reviews(tmp_path: Path) -> None:
    path = tmp_path / "1.vision.guard"
    path.write_text(
        "reviews:\n"
        "  self:\n"
        "    - slug: clarity\n"
        "      say: is every claim grounded?\n"
        "  peer:\n"
        "    - npx review --stone $stone\n"
        "judges:\n"
        "  - reviewed? --allow-nitpicks 2\n",
        encoding="utf-8",
    )
    guard = parse_stone_guard(path)
    assert guard.reviews == ["npx review --stone $stone"]
    assert [review.slug for review in guard.self_reviews] == ["clarity"]
    assert guard.self_reviews[0].say == "is every claim grounded?"
    assert guard.artifacts == []


def test_parse_stone_guard_empty_file_defaults(tmp_path: Path) -> None:
    path = tmp_path / "1.vision.guard"
    path.write_text("", encoding="utf-8")
    guard = parse_stone_guard(path)
    assert guard.reviews == [] and guard.judges == [] and guard.self_reviews == []


@pytest.mark.parametrize("content", ["- just\n- a list\n", "reviews: [unterminated\n", "reviews:\n  self:\n    - slug: bad slug\n"])
def test_parse_stone_guard_invalid_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "1.vision.guard"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        parse_stone_guard(path)


def test_find_stone_glob(route: Path, make_stone: MakeStone) -> None:
    make_stone("1.vision")
    make_stone("2.design")
    stones = get_all_stones(route)
    assert find_stone(stones, "2.*").name == "2.design"
    assert find_stone(stones, "?.vision").name == "1.vision"
    assert find_stone(stones, "3.*") is None


def test_get_all_stone_artifacts_default_glob(route: Path, make_stone: MakeStone) -> None:
    stone = make_stone(artifacts={"1.vision.md": "a", "1.vision.notes.md": "b", "2.design.md": "c"})
    assert [path.name for path in get_all_stone_artifacts(stone, route)] == ["1.vision.md", "1.vision.notes.md"]


def test_get_all_stone_artifacts_skips_state_dir(route: Path, make_stone: MakeStone) -> None:
    stone = make_stone(
        guard={"artifacts": ["**/*.md", "docs/*.md"]},
        artifacts={"docs/vision.md": "a", "top.md": "b", ".route/1.vision.guard.review.i1.ab.r1.md": "c"},
    )
    paths = get_all_stone_artifacts(stone, route)
    assert [path.relative_to(route).as_posix() for path in paths] == ["docs/vision.md", "top.md"]


@pytest.mark.parametrize("pattern", ["/tmp/docs/*.md", ""])
def test_parse_stone_guard_rejects_unusable_artifact_globs(tmp_path: Path, pattern: str) -> None:
    path = tmp_path / "1.vision.guard"
    path.write_text(f"artifacts:\n  - '{pattern}'\n", encoding="utf-8")
    with pytest.raises(GuardInputError, match="artifact glob"):
        parse_stone_guard(path)
