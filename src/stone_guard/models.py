from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GuardInputError(ValueError):
    """Raised before any execution when the caller's inputs cannot be evaluated."""


class StoneNotFoundError(GuardInputError):
    def __init__(self, stone: str) -> None:
        super().__init__(f"stone not found: {stone}")
        self.stone = stone


class Passage(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SelfReview(_Frozen):
    """A self-review the driver must promise before peer reviews run."""

    slug: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    say: str = ""


class Guard(_Frozen):
    """Conditions a stone must satisfy before passage.

    ``reviews`` holds the peer review command templates (1-indexed by position).
    The guard file may declare reviews either as a flat list of commands or as a
    mapping with ``self`` and ``peer`` sections; both normalize to this shape.
    """

    path: Path
    artifacts: list[str] = Field(default_factory=list)
    reviews: list[str] = Field(default_factory=list)
    self_reviews: list[SelfReview] = Field(default_factory=list)
    judges: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _split_structured_reviews(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        reviews = data.get("reviews")
        if isinstance(reviews, dict):
            data = dict(data)
            data["reviews"] = list(reviews.get("peer") or [])
            data["self_reviews"] = list(reviews.get("self") or [])
        for key in ("artifacts", "reviews", "judges"):
            if data.get(key) is None:
                data = {**data, key: []}
        return data

    @field_validator("artifacts")
    @classmethod
    def _check_artifact_globs(cls, globs: list[str]) -> list[str]:
        for pattern in globs:
            if not pattern.strip():
                raise ValueError("artifact glob must not be empty")
            if Path(pattern).is_absolute():
                raise ValueError(f"artifact glob must be relative to the route: {pattern}")
        return globs


class Stone(_Frozen):
    """A named milestone on a route, e.g. ``1.vision``."""

    name: str
    path: Path
    guard: Guard | None = None


class ReviewArtifact(_Frozen):
    """One review execution. Identity is (stone, hash, index)."""

    stone: str
    hash: str
    iteration: int
    index: int
    path: Path
    blockers: int = 0
    nitpicks: int = 0
    failed: bool = False


class JudgeArtifact(_Frozen):
    """One judge execution, keyed along both the review and the judge input hash."""

    stone: str
    review_hash: str
    judge_hash: str
    review_iteration: int
    judge_iteration: int
    index: int
    path: Path
    passed: bool
    reason: str | None = None


class PromiseArtifact(_Frozen):
    stone: str
    slug: str
    hash: str
    path: Path


class ApprovalArtifact(_Frozen):
    stone: str
    path: Path


class GuardStep(_Frozen):
    phase: Literal["review", "judge"]
    index: int = Field(ge=1)

    @property
    def label(self) -> str:
        return f"{self.phase[0]}{self.index}"


class GuardInflight(_Frozen):
    began_at: datetime
    ended_at: datetime | None = None


class ReviewOutcome(_Frozen):
    blockers: int
    nitpicks: int


class JudgeOutcome(_Frozen):
    decision: Literal["passed", "failed"]
    reason: str | None = None


class GuardOutcome(_Frozen):
    path: Path
    review: ReviewOutcome | None = None
    judge: JudgeOutcome | None = None


class GuardProgressEvent(_Frozen):
    """Progress of one guard step.

    Lifecycle is encoded by field presence: no inflight and no outcome means the
    step was served from cache; inflight without ``ended_at`` means it is running;
    an outcome means it finished.
    """

    stone: Stone
    step: GuardStep
    inflight: GuardInflight | None = None
    outcome: GuardOutcome | None = None

    @property
    def state(self) -> Literal["cached", "active", "done"]:
        if self.outcome is not None:
            return "done"
        if self.inflight is not None:
            return "active"
        return "cached"


GuardProgressListener = Callable[[GuardProgressEvent], None]
