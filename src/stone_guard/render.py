from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .models import Passage, SelfReview
from .policy import format_count


@dataclass(frozen=True)
class GuardStepReport:
    """How one review or judge step ended up in a passage attempt."""

    index: int
    cmd: str
    cached: bool
    duration_sec: float | None
    path: Path
    blockers: int = 0
    nitpicks: int = 0
    passed: bool = True
    reason: str | None = None


def _branch(is_last: bool) -> tuple[str, str]:
    return ("└─", "   ") if is_last else ("├─", "│  ")


def _step_details(step: GuardStepReport, phase: str) -> list[str]:
    if step.cached:
        return ["· cached"]
    duration = f"{step.duration_sec:.1f}s" if step.duration_sec is not None else "0.0s"
    if phase == "review":
        details = [f"finished {duration} ✓", f"review: {step.path}"]
        if step.blockers > 0:
            details.append(f"{format_count(step.blockers, 'blocker')} 🔴")
        if step.nitpicks > 0:
            details.append(f"{format_count(step.nitpicks, 'nitpick')} 🟠")
        return details
    details = [f"finished {duration} {'✓' if step.passed else '✗'}", f"judge: {step.path}"]
    if not step.passed and step.reason:
        details.append(f"reason: {step.reason}")
    return details


def format_guard_tree(
    *,
    stone: str,
    passage: Passage,
    note: str | None = None,
    reason: str | None = None,
    artifact_files: list[str] | None = None,
    reviews: list[GuardStepReport] | None = None,
    judges: list[GuardStepReport] | None = None,
    guarded: bool = True,
) -> str:
    """Render a passage attempt as a box-drawn tree."""
    lines = ["🗿 stone-guard pass", f"   ├─ stone = {stone}"]
    passage_label = f"{passage.value} ({note})" if note else passage.value
    show_reason = passage == Passage.BLOCKED and bool(reason)

    if not guarded:
        if show_reason:
            lines.append(f"   ├─ passage = {passage_label}")
            lines.append(f"   └─ reason = {reason}")
        else:
            lines.append(f"   └─ passage = {passage_label}")
        return "\n".join(lines)

    lines.append(f"   ├─ passage = {passage_label}")
    if show_reason:
        lines.append(f"   ├─ reason = {reason}")
    lines.append("   └─ guard")

    sections: list[tuple[str, list[GuardStepReport]]] = []
    if reviews:
        sections.append(("reviews", reviews))
    if judges:
        sections.append(("judges", judges))

    files = artifact_files or []
    prefix, indent = _branch(not sections)
    lines.append(f"      {prefix} artifacts")
    for position, artifact in enumerate(files):
        art_prefix, _ = _branch(position == len(files) - 1)
        lines.append(f"      {indent} {art_prefix} {artifact}")

    for section_pos, (name, steps) in enumerate(sections):
        prefix, indent = _branch(section_pos == len(sections) - 1)
        phase = "review" if name == "reviews" else "judge"
        lines.append(f"      {prefix} {name}")
        for step_pos, step in enumerate(steps):
            step_prefix, step_indent = _branch(step_pos == len(steps) - 1)
            lines.append(f"      {indent} {step_prefix} {phase[0]}{step.index}: {step.cmd}")
            details = _step_details(step, phase)
            for detail_pos, detail in enumerate(details):
                detail_prefix, _ = _branch(detail_pos == len(details) - 1)
                lines.append(f"      {indent} {step_indent} {detail_prefix} {detail}")

    return "\n".join(lines)


def format_check_yoself(
    *,
    stone: str,
    route: Path,
    review_self: SelfReview,
    index: int,
    total: int,
    invalidated: bool = False,
) -> str:
    """Prompt the driver through the next self-review before peer reviews run."""
    promise_cmd = f"stone-guard promise --route {route} --stone {stone} --that {review_self.slug}"
    lines = [
        "🔍 self-review required",
        f"   ├─ review.self {index}/{total}",
        f"   │  ├─ slug = {review_self.slug}",
    ]
    if invalidated:
        lines.append("   │  ├─ status = invalidated (source hash changed)")
    lines.extend(
        [
            "   │  ├─ question all, especially yourself",
            "   │  └─ see the guide below",
            "   │",
            "   ├─ promise its done? if so, run",
            f"   │  └─ {promise_cmd}",
            "   │",
            "   ├─ here's the guide",
            "   │  ├─",
            "   │  │",
        ]
    )
    lines.extend(f"   │  │  {guide_line}" for guide_line in review_self.say.splitlines() or [""])
    lines.extend(
        [
            "   │  │",
            "   │  └─",
            "   │",
            "   └─ promise its done? if so, run",
            f"      └─ {promise_cmd}",
        ]
    )
    return "\n".join(lines)
