import logging
from pathlib import Path

import pytest

from conftest import MakeStone
from stone_guard.__main__ import main

CLEAN_REVIEW = "printf '0 blockers\\n0 nitpicks\\n'"


def test_cli_pass_allowed(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(guard={"reviews": [CLEAN_REVIEW], "judges": ["reviewed?"]}, artifacts={"1.vision.md": "# vision\n"})

    assert main(["pass", "--stone", "1.vision", "--route", str(route)]) == 0
    captured = capsys.readouterr()
    assert "🗿 stone-guard pass" in captured.out
    assert "passage = allowed" in captured.out
    assert "r1: inflight" in captured.err
    assert "✓ r1: finished" in captured.err


def test_cli_pass_blocked(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(guard={"reviews": ["echo '3 blockers'"], "judges": ["reviewed?"]}, artifacts={"1.vision.md": "# vision\n"})

    assert main(["pass", "--stone", "1.vision", "--route", str(route)]) == 1
    assert "passage = blocked" in capsys.readouterr().out


def test_cli_input_errors_exit_nonzero(
    route: Path,
    make_stone: MakeStone,
    caplog: pytest.LogCaptureFixture,
) -> None:
    make_stone(artifacts={"1.vision.md": "# vision\n"})
    with caplog.at_level(logging.ERROR):
        assert main(["pass", "--stone", "9.missing", "--route", str(route)]) == 1
    assert "stone not found: 9.missing" in caplog.text

    assert main(["pass", "--stone", "1.vision", "--route", str(route / "absent")]) == 1


def test_cli_judge_and_approve(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(guard={"judges": ["approved?"]}, artifacts={"1.vision.md": "# vision\n"})
    args = ["--stone", "1.vision", "--route", str(route)]

    assert main(["judge", "--mechanism", "approved?", *args]) == 1
    assert capsys.readouterr().out == "passed: false\nreason: wait for human approval\n"

    assert main(["approve", *args]) == 0
    assert "approved 1.vision" in capsys.readouterr().out

    assert main(["judge", "--mechanism", "approved?", *args]) == 0
    assert capsys.readouterr().out == "passed: true\nreason: human approval found\n"
    assert main(["pass", *args]) == 0


def test_cli_judge_reviewed_thresholds(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(guard={"reviews": ["echo '1 nitpick'"], "judges": ["reviewed?"]}, artifacts={"1.vision.md": "# vision\n"})
    args = ["--stone", "1.vision", "--route", str(route)]
    main(["pass", *args])
    capsys.readouterr()

    assert main(["judge", "--mechanism", "reviewed?", *args]) == 1
    assert "nitpicks exceed threshold (1 > 0)" in capsys.readouterr().out
    assert main(["judge", "--mechanism", "reviewed?", "--allow-nitpicks", "1", *args]) == 0


def test_cli_promise(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(
        guard={"reviews": {"self": [{"slug": "clarity", "say": "clear?"}]}},
        artifacts={"1.vision.md": "# vision\n"},
    )
    args = ["--stone", "1.vision", "--route", str(route)]

    assert main(["pass", *args]) == 1
    assert "self-review required" in capsys.readouterr().out
    assert main(["promise", "--that", "vibes", *args]) == 1
    assert main(["promise", "--that", "clarity", *args]) == 0
    assert "promised clarity for 1.vision" in capsys.readouterr().out
    assert main(["pass", *args]) == 0


def test_cli_requires_stone() -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["pass"])
    assert exc_info.value.code == 2


def test_cli_absolute_artifact_glob_exits_nonzero(route: Path, caplog: pytest.LogCaptureFixture) -> None:
    (route / "1.vision.stone").write_text("# 1.vision\n", encoding="utf-8")
    (route / "1.vision.guard").write_text(f"artifacts:\n  - '{route}/*.md'\n", encoding="utf-8")
    (route / "1.vision.md").write_text("# vision\n", encoding="utf-8")
    with caplog.at_level(logging.ERROR):
        assert main(["pass", "--stone", "1.vision", "--route", str(route)]) == 1
    assert "artifact glob must be relative to the route" in caplog.text


def test_cli_get_next_stones(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    for name in ("1.vision", "2.1.api", "2.1.ui", "3.ship"):
        make_stone(name, artifacts={f"{name}.md": f"# {name}\n"})

    assert main(["pass", "--stone", "1.vision", "--route", str(route)]) == 0
    capsys.readouterr()

    assert main(["get", "--stone", "@next-one", "--route", str(route)]) == 0
    assert capsys.readouterr().out == "2.1.api\n"
    assert main(["get", "--stone", "@next-all", "--route", str(route)]) == 0
    assert capsys.readouterr().out == "2.1.api\n2.1.ui\n"
    assert main(["get", "--stone", "@next-one", "--say", "--route", str(route)]) == 0
    assert capsys.readouterr().out == "# 2.1.api\n\n# 2.1.api\n\n"


def test_cli_get_reports_all_passed(route: Path, make_stone: MakeStone, capsys: pytest.CaptureFixture[str]) -> None:
    make_stone(artifacts={"1.vision.md": "# vision\n"})
    assert main(["pass", "--stone", "1.vision", "--route", str(route)]) == 0
    capsys.readouterr()

    assert main(["get", "--stone", "@next-all", "--route", str(route)]) == 0
    assert capsys.readouterr().out == "all stones passed\n"
