"""Terminal rendering of guard progress events.

Interactive streams get one spinner line, redrawn in place on a fixed tick and
sealed with a newline when the step finishes. Non-interactive streams get one
appended line per lifecycle transition.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TextIO

from .models import GuardProgressEvent, GuardProgressListener
from .policy import format_count

FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")


def notify(listener: GuardProgressListener | None, event: GuardProgressEvent) -> None:
    if listener is not None:
        listener(event)


def format_done_lines(event: GuardProgressEvent) -> list[str]:
    """Lines for a finished step: the sealed result line plus detail sub-lines."""
    if event.outcome is None:
        return []
    label = event.step.label
    duration = _duration_seconds(event)
    lines: list[str] = []

    review = event.outcome.review
    if review is not None:
        lines.append(f"  ✓ {label}: finished {duration:.1f}s")
        if review.blockers > 0:
            lines.append(f"    {format_count(review.blockers, 'blocker')} 🔴")
        if review.nitpicks > 0:
            lines.append(f"    {format_count(review.nitpicks, 'nitpick')} 🟠")
        return lines

    judge = event.outcome.judge
    passed = judge is not None and judge.decision == "passed"
    lines.append(f"  {'✓' if passed else '✗'} {label}: finished {duration:.1f}s")
    if not passed:
        reason = judge.reason if judge is not None and judge.reason else "no reason captured (command failed)"
        lines.append(f"    reason: {reason}")
    return lines


def _duration_seconds(event: GuardProgressEvent) -> float:
    if event.inflight is None or event.inflight.ended_at is None:
        return 0.0
    return (event.inflight.ended_at - event.inflight.began_at).total_seconds()


@dataclass
class _ActiveStep:
    label: str
    began_at: datetime


class GuardProgressEmitter:
    """Render ``GuardProgressEvent``s to a text stream.

    Each concurrently active step keeps its own slot; in interactive mode all
    slots share the single redrawn line. Call ``done()`` (or use the emitter as
    a context manager) to stop the redraw timer; nothing is written afterwards.
    """

    def __init__(self, stream: TextIO, *, interactive: bool | None = None, spin_interval_ms: int = 80) -> None:
        self.stream = stream
        if interactive is None:
            isatty = getattr(stream, "isatty", None)
            interactive = bool(isatty()) if callable(isatty) else False
        self.interactive = interactive
        self.spin_interval = spin_interval_ms / 1000.0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._ticker: threading.Thread | None = None
        self._active: dict[tuple[str, str, int], _ActiveStep] = {}
        self._line_len = 0
        self._frame = 0
        self._closed = False

    def __call__(self, event: GuardProgressEvent) -> None:
        self.on_guard_progress(event)

    def __enter__(self) -> "GuardProgressEmitter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.done()

    def on_guard_progress(self, event: GuardProgressEvent) -> None:
        slot = (event.stone.name, event.step.phase, event.step.index)
        with self._lock:
            if self._closed:
                return
            state = event.state
            if state == "cached":
                self._write_permanent([f"  · {event.step.label}: cached"])
            elif state == "active" and event.inflight is not None:
                self._active[slot] = _ActiveStep(label=event.step.label, began_at=event.inflight.began_at)
                if self.interactive:
                    self._redraw()
                    self._ensure_ticker()
                else:
                    self._write(f"  {event.step.label}: inflight\n")
            else:
                self._active.pop(slot, None)
                self._write_permanent(format_done_lines(event))
            self.stream.flush()

    def done(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stop.set()
            if self.interactive and self._line_len:
                self._write("\n")
                self._line_len = 0
            self.stream.flush()
        ticker = self._ticker
        if ticker is not None and ticker is not threading.current_thread():
            ticker.join()

    # -- rendering (callers hold the lock) ------------------------------------

    def _write(self, text: str) -> None:
        self.stream.write(text)

    def _write_permanent(self, lines: list[str]) -> None:
        if not lines:
            return
        if self.interactive:
            # Seal over the spinner line, then let the remaining slots redraw below.
            first, rest = lines[0], lines[1:]
            self._write(f"\r{first.ljust(self._line_len)}\n")
            self._line_len = 0
            for line in rest:
                self._write(f"{line}\n")
            if self._active:
                self._redraw()
            return
        for line in lines:
            self._write(f"{line}\n")

    def _redraw(self) -> None:
        if not self._active:
            return
        now = datetime.now(UTC)
        frame = FRAMES[self._frame % len(FRAMES)]
        self._frame += 1
        parts = [
            f"{frame} {step.label}: inflight {(now - step.began_at).total_seconds():.1f}s"
            for step in self._active.values()
        ]
        text = "  " + " | ".join(parts)
        self._write(f"\r{text.ljust(self._line_len)}")
        self._line_len = len(text)

    def _ensure_ticker(self) -> None:
        if self._ticker is not None:
            return
        self._ticker = threading.Thread(target=self._tick, name="guard-progress-spinner", daemon=True)
        self._ticker.start()

    def _tick(self) -> None:
        while not self._stop.wait(self.spin_interval):
            with self._lock:
                if self._closed:
                    return
                self._redraw()
                self.stream.flush()
