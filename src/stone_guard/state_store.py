from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .settings import GuardSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Composite keys
#
# Every artifact is identified by a key; its filename is derived from the key
# and parsed back with an anchored pattern. Stone names may contain dots, so
# patterns anchor on the ".guard.<kind>." segment instead of splitting.
# ---------------------------------------------------------------------------

_HASH = r"[0-9a-f]+"

_REVIEW_RE = re.compile(
    rf"^(?P<stone>.+)\.guard\.review\.i(?P<iteration>\d+)\.(?P<hash>{_HASH})\.r(?P<index>\d+)\.md$"
)
_JUDGE_RE = re.compile(
    rf"^(?P<stone>.+)\.guard\.judge\.i(?P<review_iteration>\d+)p(?P<judge_iteration>\d+)"
    rf"\.(?P<review_hash>{_HASH})\.(?P<judge_hash>{_HASH})\.j(?P<index>\d+)\.md$"
)
_PROMISE_RE = re.compile(rf"^(?P<stone>.+)\.guard\.promise\.(?P<slug>[A-Za-z0-9_-]+)\.(?P<hash>{_HASH})\.md$")


@dataclass(frozen=True)
class ReviewKey:
    stone: str
    hash: str
    iteration: int
    index: int

    @property
    def filename(self) -> str:
        return f"{self.stone}.guard.review.i{self.iteration}.{self.hash}.r{self.index}.md"

    @classmethod
    def parse(cls, filename: str) -> "ReviewKey | None":
        match = _REVIEW_RE.match(filename)
        if match is None:
            return None
        return cls(
            stone=match["stone"],
            hash=match["hash"],
            iteration=int(match["iteration"]),
            index=int(match["index"]),
        )


@dataclass(frozen=True)
class JudgeKey:
    stone: str
    review_hash: str
    judge_hash: str
    review_iteration: int
    judge_iteration: int
    index: int

    @property
    def filename(self) -> str:
        return (
            f"{self.stone}.guard.judge.i{self.review_iteration}p{self.judge_iteration}"
            f".{self.review_hash}.{self.judge_hash}.j{self.index}.md"
        )

    @classmethod
    def parse(cls, filename: str) -> "JudgeKey | None":
        match = _JUDGE_RE.match(filename)
        if match is None:
            return None
        return cls(
            stone=match["stone"],
            review_hash=match["review_hash"],
            judge_hash=match["judge_hash"],
            review_iteration=int(match["review_iteration"]),
            judge_iteration=int(match["judge_iteration"]),
            index=int(match["index"]),
        )


@dataclass(frozen=True)
class PromiseKey:
    stone: str
    slug: str
    hash: str

    @property
    def filename(self) -> str:
        return f"{self.stone}.guard.promise.{self.slug}.{self.hash}.md"

    @classmethod
    def parse(cls, filename: str) -> "PromiseKey | None":
        match = _PROMISE_RE.match(filename)
        if match is None:
            return None
        return cls(stone=match["stone"], slug=match["slug"], hash=match["hash"])


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so a crash mid-write never leaves a
    partially written artifact behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# RouteArtifactStore
# ---------------------------------------------------------------------------


class RouteArtifactStore:
    """Append-only artifact directory for one route.

    Files are never mutated or deleted by the store; a re-run produces a new
    file under a new key. There is no cross-process locking: two concurrent
    writers of the same key resolve as last-writer-wins.
    """

    def __init__(self, route: Path, settings: GuardSettings | None = None) -> None:
        self.route = route
        self.settings = settings if settings is not None else GuardSettings()
        self.root = self.settings.state_dir(route)

    def ensure_structure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _iter_filenames(self) -> Iterator[str]:
        if not self.root.is_dir():
            return
        for entry in sorted(self.root.iterdir()):
            if entry.is_file():
                yield entry.name

    # -- paths ---------------------------------------------------------------

    def review_path(self, key: ReviewKey) -> Path:
        return self.root / key.filename

    def judge_path(self, key: JudgeKey) -> Path:
        return self.root / key.filename

    def promise_path(self, key: PromiseKey) -> Path:
        return self.root / key.filename

    def approval_path(self, stone: str) -> Path:
        return self.root / f"{stone}.guard.approved.md"

    def passage_path(self, stone: str) -> Path:
        return self.root / f"{stone}.passed"

    # -- lookups -------------------------------------------------------------

    def list_reviews(self, stone: str, hash: str) -> list[ReviewKey]:
        """Review keys for a stone at one review-input-hash, ordered by (index, iteration)."""
        keys = [
            key
            for key in (ReviewKey.parse(name) for name in self._iter_filenames())
            if key is not None and key.stone == stone and key.hash == hash
        ]
        return sorted(keys, key=lambda key: (key.index, key.iteration))

    def list_judges(self, stone: str, review_hash: str, judge_hash: str | None = None) -> list[JudgeKey]:
        keys = [
            key
            for key in (JudgeKey.parse(name) for name in self._iter_filenames())
            if key is not None
            and key.stone == stone
            and key.review_hash == review_hash
            and (judge_hash is None or key.judge_hash == judge_hash)
        ]
        return sorted(keys, key=lambda key: (key.index, key.judge_iteration))

    def list_promises(self, stone: str, *, slug: str | None = None, hash: str | None = None) -> list[PromiseKey]:
        keys = [
            key
            for key in (PromiseKey.parse(name) for name in self._iter_filenames())
            if key is not None
            and key.stone == stone
            and (slug is None or key.slug == slug)
            and (hash is None or key.hash == hash)
        ]
        return sorted(keys, key=lambda key: (key.slug, key.hash))

    # -- io ------------------------------------------------------------------

    def write_text(self, path: Path, content: str) -> None:
        _atomic_write_text(path, content)
        logger.debug("wrote artifact %s", path.name)

    @staticmethod
    def read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return path.read_bytes().decode("utf-8", errors="replace")
