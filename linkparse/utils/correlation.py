"""Correlation ids and per-invocation logging context.

The id arrives in ``X-Correlation-ID`` (or is minted here), lives in
structlog's context variables for the rest of the invocation and is mirrored
onto ``flask.g`` while a request is active.
"""

from __future__ import annotations

import contextvars
import re
from contextlib import suppress
from functools import wraps
from typing import Any, Callable, Optional, TypeVar
from uuid import uuid4

import structlog
from flask import g

T = TypeVar("T")

# Header values are echoed back and logged, so only short token-like ids are kept.
_VALID_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def normalise_correlation_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    return value if _VALID_ID_RE.fullmatch(value) else None


def current_correlation_id() -> Optional[str]:
    with suppress(RuntimeError):
        bound = getattr(g, "correlation_id", None)
        if bound:
            return bound
    return structlog.contextvars.get_contextvars().get("correlation_id")


def ensure_correlation_id(value: Optional[str] = None) -> str:
    """Bind ``value`` if it is a usable id, else keep the bound one or mint a new one."""
    correlation_id = (
        normalise_correlation_id(value) or current_correlation_id() or uuid4().hex
    )
    with suppress(RuntimeError):
        g.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    return correlation_id


def bind_request_context(url: Optional[str] = None, **extra: Any) -> None:
    structlog.contextvars.bind_contextvars(url=url, **extra)


def bind_strategy_context(strategy: Optional[str] = None) -> None:
    structlog.contextvars.bind_contextvars(strategy=strategy)


def clear_correlation_context() -> None:
    structlog.contextvars.clear_contextvars()
    with suppress(RuntimeError):
        g.pop("correlation_id", None)


def propagate_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Wrap ``fn`` so it runs inside a snapshot of the caller's context vars.

    Worker threads start with an empty context, so the correlation id, url and
    request deadline would otherwise be missing there. Each wrapper owns its own
    snapshot and must only be invoked once at a time.
    """
    snapshot = contextvars.copy_context()

    @wraps(fn)
    def runner(*args: Any, **kwargs: Any) -> T:
        return snapshot.run(fn, *args, **kwargs)

    return runner
