"""Promise and approval ledger.

Promises are scoped to the review-input-hash they were made under, so a content
change makes them invisible without deleting anything. Approvals are not hash
scoped; their presence is folded into the judge-input-hash instead.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from .models import ApprovalArtifact, PromiseArtifact, Stone
from .settings import GuardSettings
from .state_store import PromiseKey, RouteArtifactStore

logger = logging.getLogger(__name__)


def set_stone_as_promised(
    stone: Stone,
    slug: str,
    hash: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> PromiseArtifact:
    store = RouteArtifactStore(route, settings)
    key = PromiseKey(stone=stone.name, slug=slug, hash=hash)
    if PromiseKey.parse(key.filename) != key:
        raise ValueError(f"invalid self-review slug: {slug!r}")
    path = store.promise_path(key)

    # The key alone carries the promise; rewriting an existing one would only churn the timestamp.
    if not path.is_file():
        timestamp = datetime.now(UTC).isoformat()
        store.write_text(
            path,
            f"# promise: {slug}\n\n"
            f"- stone: {stone.name}\n"
            f"- hash: {hash}\n"
            f"- timestamp: {timestamp}\n\n"
            f"---\n\n"
            f'i promise i have completed the self-review for "{slug}".\n',
        )
        logger.info("recorded promise %s for stone %s", slug, stone.name)

    return PromiseArtifact(stone=stone.name, slug=slug, hash=hash, path=path)


def get_stone_promises(
    stone: Stone,
    hash: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> list[PromiseArtifact]:
    store = RouteArtifactStore(route, settings)
    return [
        PromiseArtifact(stone=key.stone, slug=key.slug, hash=key.hash, path=store.promise_path(key))
        for key in store.list_promises(stone.name, hash=hash)
    ]


def has_invalidated_promise(
    stone: Stone,
    slug: str,
    current_hash: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> bool:
    """True when ``slug`` was promised under some hash other than ``current_hash``."""
    store = RouteArtifactStore(route, settings)
    return any(key.hash != current_hash for key in store.list_promises(stone.name, slug=slug))


def set_stone_guard_approval(
    stone: Stone,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> ApprovalArtifact:
    store = RouteArtifactStore(route, settings)
    path = store.approval_path(stone.name)
    if not path.is_file():
        timestamp = datetime.now(UTC).isoformat()
        store.write_text(path, f"# approved: {stone.name}\n\n- timestamp: {timestamp}\n")
        logger.info("recorded approval for stone %s", stone.name)
    return ApprovalArtifact(stone=stone.name, path=path)


def get_one_stone_guard_approval(
    stone: Stone,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> ApprovalArtifact | None:
    path = RouteArtifactStore(route, settings).approval_path(stone.name)
    if not path.is_file():
        return None
    return ApprovalArtifact(stone=stone.name, path=path)
