"""Readiness credential: pull the neptune-cli cookie out of `--get-cookie` output.

neptune-core is "ready" once `neptune-cli --port RPC_PORT --get-cookie` prints
a line such as

    Cookie: neptune-cli=3f9a…(64 hex chars)

extract_cookie() is the only place that knows that format. wait_for_cookie()
only knows "got a cookie" or "not yet".
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nsup.errors import SupervisorError

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Iterator

log = logging.getLogger("nsup.cookie")

_COOKIE_RE = re.compile(r"neptune-cli=([a-f0-9]{64})")


class NodeNotReadyError(SupervisorError):
    """neptune-core never handed out a cookie within the retry budget."""


def extract_cookie(output: str | None) -> str | None:
    """Return the 64-hex cookie embedded in output, or None."""
    if not output:
        return None
    m = _COOKIE_RE.search(output)
    return m.group(1) if m else None


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 30
    initial_delay: float = 1.0
    factor: float = 1.1
    max_delay: float = 2.0
    attempt_timeout: float = 0.9

    def __post_init__(self) -> None:
        if self.attempts < 1:
            msg = f"attempts must be >= 1, got {self.attempts}"
            raise ValueError(msg)
        if self.attempt_timeout >= self.initial_delay:
            msg = (
                f"attempt_timeout ({self.attempt_timeout}s) must be shorter than "
                f"initial_delay ({self.initial_delay}s)"
            )
            raise ValueError(msg)
        # every sleep must outlast one attempt: delays never shrink below initial_delay
        if self.factor < 1:
            msg = f"factor must be >= 1, got {self.factor}"
            raise ValueError(msg)
        if self.max_delay < self.initial_delay:
            msg = f"max_delay ({self.max_delay}s) must be >= initial_delay ({self.initial_delay}s)"
            raise ValueError(msg)

    def delays(self) -> Iterator[float]:
        """Sleep before attempt 2, 3, …: initial_delay * factor**n, capped at max_delay."""
        delay = self.initial_delay
        for _ in range(self.attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.factor

    @property
    def budget(self) -> float:
        """Worst-case seconds spent waiting (attempt timeouts + sleeps)."""
        return self.attempts * self.attempt_timeout + sum(self.delays())


def wait_for_cookie(
    fetch: Callable[[float], str | None],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], object] = time.sleep,
    stop: threading.Event | None = None,
) -> str:
    """Call fetch(timeout) until it yields a cookie or the attempt budget runs out.

    fetch returns the raw CLI output (or None); an OSError (timeouts included) from
    it counts as "not ready yet". When `stop` is given, a set event aborts the
    wait between attempts (used when shutdown starts mid-startup).
    """
    delays = policy.delays()
    for attempt in range(1, policy.attempts + 1):
        try:
            cookie = extract_cookie(fetch(policy.attempt_timeout))
        except OSError as exc:
            log.debug("readiness attempt %d: %s", attempt, exc)
            cookie = None
        if cookie:
            log.info("cookie obtained after %d attempt(s)", attempt)
            return cookie
        log.debug("readiness attempt %d/%d: not ready", attempt, policy.attempts)

        delay = next(delays, None)
        if delay is None:
            break
        if stop is not None:
            if stop.wait(delay):
                msg = "readiness wait aborted"
                raise NodeNotReadyError(msg)
        else:
            sleep(delay)

    msg = f"neptune-core not ready after {policy.attempts} attempts"
    raise NodeNotReadyError(msg)
