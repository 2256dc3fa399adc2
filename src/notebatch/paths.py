"""Path helpers for the pipeline's on-disk state."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

__all__ = [
    "DEFAULT_STATE_DIR",
    "StatePathConfig",
    "resolve_state_dir",
]

DEFAULT_STATE_DIR = Path(".notebatch")
STATE_DIR_ENV = "NOTEBATCH_STATE_DIR"


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def resolve_state_dir(path: Path | str | None = None, *, create: bool = True) -> Path:
    """Explicit path, then ``$NOTEBATCH_STATE_DIR``, then ``./.notebatch``."""

    candidate = _normalise(path or os.getenv(STATE_DIR_ENV) or DEFAULT_STATE_DIR)
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


@dataclass(slots=True)
class StatePathConfig:
    """Where queue snapshots, the library and generated notes live."""

    state_dir: Path | None = None
    create: bool = True

    @property
    def artifact_dir(self) -> Path:
        return self.resolved().state_dir / "artifacts"  # type: ignore[operator]

    def resolved(self) -> "StatePathConfig":
        return replace(self, state_dir=resolve_state_dir(self.state_dir, create=False))

    def ensure(self) -> "StatePathConfig":
        return replace(self, state_dir=resolve_state_dir(self.state_dir, create=self.create))
