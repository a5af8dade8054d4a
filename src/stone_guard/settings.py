from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class GuardSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    command_timeout_seconds: int = 600
    spin_interval_ms: int = 80
    state_dir_name: str = ".route"
    shell: str = "/bin/sh"

    @classmethod
    def from_env(cls, env_root: Path | None = None) -> "GuardSettings":
        root = env_root if env_root is not None else Path.cwd()
        env_path = root / ".env"
        if env_path.is_file():
            load_dotenv(env_path)

        return cls(
            command_timeout_seconds=_get_env_int("STONE_GUARD_COMMAND_TIMEOUT", default=600, minimum=1, maximum=86_400),
            spin_interval_ms=_get_env_int("STONE_GUARD_SPIN_MS", default=80, minimum=10, maximum=5_000),
            state_dir_name=os.getenv("STONE_GUARD_STATE_DIR", ".route"),
            shell=os.getenv("STONE_GUARD_SHELL", "/bin/sh"),
        ).normalized()

    def normalized(self) -> "GuardSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        state_dir_name = self.state_dir_name.strip()
        if not state_dir_name:
            raise ValueError("STONE_GUARD_STATE_DIR must be non-empty")
        if "/" in state_dir_name or "\\" in state_dir_name or state_dir_name in {".", ".."}:
            raise ValueError(f"STONE_GUARD_STATE_DIR must be a single directory name, got: {state_dir_name!r}")

        shell = self.shell.strip()
        if not shell:
            raise ValueError("STONE_GUARD_SHELL must be non-empty")

        if self.command_timeout_seconds < 1:
            raise ValueError(f"STONE_GUARD_COMMAND_TIMEOUT must be >= 1, got: {self.command_timeout_seconds}")
        if self.spin_interval_ms < 10:
            raise ValueError(f"STONE_GUARD_SPIN_MS must be >= 10, got: {self.spin_interval_ms}")

        return GuardSettings(
            command_timeout_seconds=self.command_timeout_seconds,
            spin_interval_ms=self.spin_interval_ms,
            state_dir_name=state_dir_name,
            shell=shell,
        )

    def state_dir(self, route: Path) -> Path:
        return route / self.state_dir_name


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
