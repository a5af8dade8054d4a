from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import Guard, GuardInputError, Stone

logger = logging.getLogger(__name__)

# Longer extensions first so "1.vision.src.stone" strips to "1.vision".
STONE_EXTENSIONS = (".src.stone", ".stone", ".src")
GUARD_SUFFIXES = (".guard", ".src.guard", ".stone.guard")


def get_all_stones(route: Path) -> list[Stone]:
    """Enumerate every stone declared in a route directory, sorted by name."""
    if not route.is_dir():
        raise FileNotFoundError(f"Route directory does not exist: {route}")

    stones: dict[str, Stone] = {}
    for path in sorted(route.iterdir()):
        if not path.is_file():
            continue
        name = _stone_name(path.name)
        if name is None or name in stones:
            continue
        guard_path = _find_guard_path(route, name)
        guard = parse_stone_guard(guard_path) if guard_path is not None else None
        stones[name] = Stone(name=name, path=path, guard=guard)

    return [stones[name] for name in sorted(stones)]


def _stone_name(filename: str) -> str | None:
    for ext in STONE_EXTENSIONS:
        if filename.endswith(ext) and len(filename) > len(ext):
            return filename[: -len(ext)]
    return None


def _find_guard_path(route: Path, stone_name: str) -> Path | None:
    for suffix in GUARD_SUFFIXES:
        candidate = route / f"{stone_name}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def parse_stone_guard(path: Path) -> Guard:
    """Parse a YAML guard file into a ``Guard``.

    Raises:
        GuardInputError: If the file is not a YAML mapping or violates the guard schema.
    """
    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise GuardInputError(f"Guard file at {path} is not valid YAML: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise GuardInputError(f"Guard file at {path} must be a mapping, got {type(raw).__name__}")

    try:
        return Guard.model_validate({**raw, "path": path})
    except ValidationError as exc:
        raise GuardInputError(f"Guard file at {path} is invalid: {exc}") from exc


def find_stone(stones: list[Stone], pattern: str) -> Stone | None:
    """Return the first stone whose name matches a ``*``/``?`` glob pattern."""
    for stone in stones:
        if fnmatch.fnmatchcase(stone.name, pattern):
            return stone
    return None


def get_all_stone_artifacts(stone: Stone, route: Path, *, state_dir_name: str = ".route") -> list[Path]:
    """Return the sorted artifact files a stone's guard declares.

    Globs are evaluated relative to the route. A stone without artifact globs
    defaults to ``<name>*.md``. Files inside the state directory never count.
    """
    globs = stone.guard.artifacts if stone.guard is not None and stone.guard.artifacts else [f"{stone.name}*.md"]
    state_dir = (route / state_dir_name).resolve()

    matches: set[Path] = set()
    for pattern in globs:
        for path in route.glob(pattern):
            if not path.is_file():
                continue
            if state_dir in path.resolve().parents:
                continue
            matches.add(path)

    logger.debug("stone %s matched %d artifact files", stone.name, len(matches))
    return sorted(matches)
