"""Cached supervisor state (.process-state.json beside the node data dir).

This file is a hint for skipping a relaunch, never proof that anything is
running: the supervisor always re-checks its own process handles before
trusting it. The format is internal and may change between versions.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger("nsup.state")


@dataclass
class SupervisorState:
    timestamp: float                      # epoch seconds
    config: dict[str, Any] = field(default_factory=dict)
    initialized: bool = False

    def is_fresh(self, window: float, now: float | None = None) -> bool:
        age = (time.time() if now is None else now) - self.timestamp
        return 0 <= age < window

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "config": self.config, "initialized": self.initialized}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SupervisorState:
        return cls(
            timestamp=float(d["timestamp"]),
            config=dict(d.get("config") or {}),
            initialized=bool(d.get("initialized", False)),
        )


def read_state(path: Path) -> SupervisorState | None:
    """Return the cached state, or None if missing or unreadable."""
    try:
        return SupervisorState.from_dict(json.loads(path.read_text()))
    except FileNotFoundError:
        log.debug("no cached process state at %s", path)
    except (OSError, ValueError, KeyError, TypeError) as exc:
        log.debug("ignoring invalid process state %s: %s", path, exc)
    return None


def write_state(path: Path, state: SupervisorState) -> bool:
    """Best effort: a failed write is logged, never raised."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(state.to_dict(), indent=2))
    except OSError as exc:
        log.warning("failed to cache process state at %s: %s", path, exc)
        return False
    log.debug("process state cached at %s", path)
    return True
