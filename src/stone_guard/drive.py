"""Route progression: which stones have passed and which come next."""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .models import GuardInputError, Stone
from .settings import GuardSettings
from .state_store import RouteArtifactStore
from .stones import get_all_stones

logger = logging.getLogger(__name__)

NEXT_ONE = "@next-one"
NEXT_ALL = "@next-all"
NEXT_QUERIES = (NEXT_ONE, NEXT_ALL)
ALL_PASSED = "all stones passed"

_ORDER_PREFIX_RE = re.compile(r"^(\d+(?:\.\d+)*)")


@dataclass
class RouteStonesResult:
    stones: list[Stone]
    emit: str | None = None


def compute_stone_order_prefix(stone: Stone) -> str:
    """Numeric tier of a stone name: ``3.1.research`` -> ``3.1``, ``vision`` -> ``""``."""
    match = _ORDER_PREFIX_RE.match(stone.name)
    return match.group(1) if match else ""


def get_stone_passage(stone: Stone, route: Path, *, settings: GuardSettings | None = None) -> Path | None:
    """Return the stone's passage marker, or None while it has not passed."""
    path = RouteArtifactStore(route, settings).passage_path(stone.name)
    return path if path.is_file() else None


def compute_next_stones(
    stones: list[Stone],
    route: Path,
    query: str,
    *,
    settings: GuardSettings | None = None,
) -> list[Stone]:
    """Pick the next unpassed stone(s) in name order.

    ``@next-one`` yields the first unpassed stone. ``@next-all`` yields every
    unpassed stone sharing that stone's order prefix, so parallel tiers such as
    ``3.1.a`` and ``3.1.b`` come back together. An empty list means every stone
    has passed.

    Raises:
        GuardInputError: If ``query`` is not one of the ``@next`` queries.
    """
    if query not in NEXT_QUERIES:
        raise GuardInputError(f"unknown stone query {query!r}; valid options: {', '.join(NEXT_QUERIES)}")

    pending = sorted(
        (stone for stone in stones if get_stone_passage(stone, route, settings=settings) is None),
        key=lambda stone: stone.name,
    )
    if not pending:
        return []
    if query == NEXT_ONE:
        return pending[:1]

    prefix = compute_stone_order_prefix(pending[0])
    return [stone for stone in pending if compute_stone_order_prefix(stone) == prefix]


def get_route_stones(
    pattern: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
    say: bool = False,
) -> RouteStonesResult:
    """Resolve a ``@next`` query or a name glob to stones.

    With ``say`` the emit holds each stone file's content under a ``# <name>``
    heading. An empty selection always emits ``all stones passed``.
    """
    stones = get_all_stones(route)
    if pattern in NEXT_QUERIES:
        selected = compute_next_stones(stones, route, pattern, settings=settings)
    else:
        selected = [stone for stone in stones if fnmatch.fnmatchcase(stone.name, pattern)]
    logger.debug("stone query %s selected %d stones", pattern, len(selected))

    if not selected:
        return RouteStonesResult(stones=[], emit=ALL_PASSED)
    if not say:
        return RouteStonesResult(stones=selected)

    sections = [f"# {stone.name}\n\n{stone.path.read_text(encoding='utf-8')}" for stone in selected]
    return RouteStonesResult(stones=selected, emit="\n\n---\n\n".join(sections))
