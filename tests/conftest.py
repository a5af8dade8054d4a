from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from stone_guard.models import Stone
from stone_guard.settings import GuardSettings
from stone_guard.stones import find_stone, get_all_stones

MakeStone = Callable[..., Stone]


def counting(cmd: str, log: str) -> str:
    """Wrap a shell command so each execution appends a line to ``log`` in the route."""
    return f"echo run >> {log}; {cmd}"


def count_runs(route: Path, log: str) -> int:
    path = route / log
    if not path.is_file():
        return 0
    return len(path.read_text(encoding="utf-8").splitlines())


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("STONE_GUARD_COMMAND_TIMEOUT", "STONE_GUARD_SPIN_MS", "STONE_GUARD_STATE_DIR", "STONE_GUARD_SHELL"):
        monkeypatch.delenv(name, raising=False)
    # Keep GuardSettings.from_env away from any .env in the invoking directory.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def route(tmp_path: Path) -> Path:
    path = tmp_path / "route"
    path.mkdir()
    return path


@pytest.fixture
def settings() -> GuardSettings:
    return GuardSettings(command_timeout_seconds=30)


@pytest.fixture
def make_stone(route: Path) -> MakeStone:
    """Create ``<name>.stone``, an optional guard and artifact files, then load the stone."""

    def _make(
        name: str = "1.vision",
        *,
        guard: dict[str, Any] | None = None,
        artifacts: dict[str, str] | None = None,
    ) -> Stone:
        (route / f"{name}.stone").write_text(f"# {name}\n", encoding="utf-8")
        if guard is not None:
            (route / f"{name}.guard").write_text(yaml.safe_dump(guard, sort_keys=False), encoding="utf-8")
        for rel_path, content in (artifacts or {}).items():
            target = route / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        stone = find_stone(get_all_stones(route), name)
        assert stone is not None
        return stone

    return _make
