from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from .canonical import canonical_sha256
from .ledger import get_one_stone_guard_approval, get_stone_promises
from .models import GuardInputError, Stone
from .settings import GuardSettings
from .state_store import RouteArtifactStore
from .stones import get_all_stone_artifacts

logger = logging.getLogger(__name__)


def compute_stone_review_input_hash(stone: Stone, route: Path, *, settings: GuardSettings | None = None) -> str:
    """Hash the content of every artifact file the stone declares.

    Files are visited in sorted route-relative path order, and each contributes
    its relative path and raw bytes, so the hash only depends on which files
    matched and what they contain.

    Raises:
        GuardInputError: If the artifact globs match no files.
    """
    settings = settings if settings is not None else GuardSettings()
    files = get_all_stone_artifacts(stone, route, state_dir_name=settings.state_dir_name)
    if not files:
        raise GuardInputError(f"artifact not found for stone {stone.name}; nothing to hash")

    relative = sorted((path.relative_to(route).as_posix(), path) for path in files)
    digest = hashlib.sha256()
    for position, (rel_path, path) in enumerate(relative):
        if position:
            digest.update(b"\n")
        digest.update(f"--- {rel_path} ---\n".encode("utf-8"))
        digest.update(path.read_bytes())
    return digest.hexdigest()


def compute_stone_judge_input_hash(
    stone: Stone,
    review_input_hash: str,
    route: Path,
    *,
    settings: GuardSettings | None = None,
) -> str:
    """Chain the review-input-hash with everything a judge can observe.

    The payload covers the review artifacts recorded at ``review_input_hash``
    (name and content digest), whether the stone is approved, and the promises
    made at that hash. Granting an approval, recording a promise or re-running a
    review therefore changes the result even while the artifacts stay the same.
    """
    store = RouteArtifactStore(route, settings)
    reviews = []
    for key in store.list_reviews(stone.name, review_input_hash):
        path = store.review_path(key)
        reviews.append({"name": key.filename, "sha256": hashlib.sha256(path.read_bytes()).hexdigest()})

    promises = sorted(p.slug for p in get_stone_promises(stone, review_input_hash, route, settings=settings))
    approved = get_one_stone_guard_approval(stone, route, settings=settings) is not None

    judge_input_hash = canonical_sha256(
        {
            "review_input_hash": review_input_hash,
            "reviews": reviews,
            "approved": approved,
            "promises": promises,
        }
    )
    logger.debug(
        "stone %s judge input hash %s (reviews=%d approved=%s promises=%d)",
        stone.name,
        judge_input_hash[:8],
        len(reviews),
        approved,
        len(promises),
    )
    return judge_input_hash
