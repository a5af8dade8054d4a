from importlib.metadata import version

from .canonical import canonical_sha256, to_canonical_json
from .drive import RouteStonesResult, compute_next_stones, compute_stone_order_prefix, get_route_stones, get_stone_passage
from .hashing import compute_stone_judge_input_hash, compute_stone_review_input_hash
from .judges import run_one_stone_guard_judge, run_stone_guard_judges
from .ledger import get_one_stone_guard_approval, get_stone_promises, has_invalidated_promise, set_stone_guard_approval
from .models import (
    ApprovalArtifact,
    Guard,
    GuardInflight,
    GuardInputError,
    GuardOutcome,
    GuardProgressEvent,
    GuardProgressListener,
    GuardStep,
    JudgeArtifact,
    JudgeOutcome,
    Passage,
    PromiseArtifact,
    ReviewArtifact,
    ReviewOutcome,
    SelfReview,
    Stone,
    StoneNotFoundError,
)
from .passage import (
    PassageResult,
    PromiseResult,
    run_judge_mechanism,
    set_stone_as_approved,
    set_stone_as_passed,
    set_stone_as_promised,
)
from .policy import PolicyDecision, ReviewThresholds, evaluate_policy
from .progress import GuardProgressEmitter
from .render import format_guard_tree
from .reviews import run_one_stone_guard_review, run_stone_guard_reviews
from .settings import GuardSettings
from .state_store import JudgeKey, PromiseKey, ReviewKey, RouteArtifactStore
from .stones import find_stone, get_all_stone_artifacts, get_all_stones


def get_version() -> str:
    try:
        return version("stone-guard")
    except Exception:
        return "0.0.0"


__all__ = [
    "ApprovalArtifact",
    "Guard",
    "GuardInflight",
    "GuardInputError",
    "GuardOutcome",
    "GuardProgressEmitter",
    "GuardProgressEvent",
    "GuardProgressListener",
    "GuardSettings",
    "GuardStep",
    "JudgeArtifact",
    "JudgeKey",
    "JudgeOutcome",
    "Passage",
    "PassageResult",
    "PolicyDecision",
    "PromiseArtifact",
    "PromiseKey",
    "PromiseResult",
    "ReviewArtifact",
    "ReviewKey",
    "ReviewOutcome",
    "ReviewThresholds",
    "RouteArtifactStore",
    "RouteStonesResult",
    "SelfReview",
    "Stone",
    "StoneNotFoundError",
    "canonical_sha256",
    "compute_next_stones",
    "compute_stone_judge_input_hash",
    "compute_stone_order_prefix",
    "compute_stone_review_input_hash",
    "evaluate_policy",
    "find_stone",
    "format_guard_tree",
    "get_all_stone_artifacts",
    "get_all_stones",
    "get_one_stone_guard_approval",
    "get_route_stones",
    "get_stone_passage",
    "get_stone_promises",
    "get_version",
    "has_invalidated_promise",
    "run_judge_mechanism",
    "run_one_stone_guard_judge",
    "run_one_stone_guard_review",
    "run_stone_guard_judges",
    "run_stone_guard_reviews",
    "set_stone_as_approved",
    "set_stone_as_passed",
    "set_stone_as_promised",
    "set_stone_guard_approval",
    "to_canonical_json",
]
