"""Per-invocation deadline published through a context variable."""

from __future__ import annotations

import contextvars
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class Deadline:
    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + max(seconds, 0.0))

    def remaining(self) -> float:
        return max(self.expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def clamp(self, timeout: float) -> float:
        """Shrink ``timeout`` so a request never outlives the deadline."""
        return min(timeout, self.remaining())


_CURRENT_DEADLINE: contextvars.ContextVar[Optional[Deadline]] = contextvars.ContextVar(
    "linkparse_deadline", default=None
)


def current_deadline() -> Optional[Deadline]:
    return _CURRENT_DEADLINE.get()


def remaining_seconds() -> Optional[float]:
    deadline = _CURRENT_DEADLINE.get()
    if deadline is None:
        return None
    return deadline.remaining()


def clamp_timeout(timeout: float) -> float:
    deadline = _CURRENT_DEADLINE.get()
    if deadline is None:
        return timeout
    return deadline.clamp(timeout)


@contextmanager
def deadline_scope(seconds: Optional[float]) -> Iterator[Optional[Deadline]]:
    """Bind a deadline ``seconds`` from now for the duration of the block.

    ``None`` leaves any enclosing deadline in place. A nested scope never
    extends the outer one.
    """
    if seconds is None:
        yield _CURRENT_DEADLINE.get()
        return
    candidate = Deadline.after(seconds)
    outer = _CURRENT_DEADLINE.get()
    if outer is not None and outer.expires_at < candidate.expires_at:
        candidate = outer
    token = _CURRENT_DEADLINE.set(candidate)
    try:
        yield candidate
    finally:
        _CURRENT_DEADLINE.reset(token)
