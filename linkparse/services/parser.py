"""Entry point: validate a URL, pick its strategy and run it under a deadline."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

import structlog

from linkparse.config import get_settings
from linkparse.models.parse_result import ParseResult
from linkparse.services.exceptions import DeadlineExceeded
from linkparse.services.strategies.base import error_for_exception
from linkparse.services.strategies.default import opaque_result
from linkparse.services.strategies.registry import StrategyRegistry, get_registry
from linkparse.utils.correlation import bind_request_context, propagate_context
from linkparse.utils.deadline import deadline_scope
from linkparse.utils.urls import validate_url

logger = structlog.get_logger(__name__)


def parse_url(
    url: str,
    html: Optional[str] = None,
    client_identity: Optional[str] = None,
    deadline_seconds: Optional[float] = None,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> ParseResult:
    """Parse ``url`` into a :class:`ParseResult`.

    Raises :class:`~linkparse.services.exceptions.InvalidURLError` for input
    that is not an absolute http(s) URL. Every other failure, including the
    deadline elapsing, comes back as a degraded result.
    """
    url = validate_url(url)
    if deadline_seconds is None:
        deadline_seconds = get_settings().PARSE_DEADLINE_SECONDS
    bind_request_context(url=url)

    strategy = (registry or get_registry()).select(url)
    logger.info("strategy.selected", url=url, strategy=strategy.name)

    started = time.perf_counter()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="linkparse-parse")
    try:
        with deadline_scope(deadline_seconds) as deadline:
            future = pool.submit(
                propagate_context(strategy.parse), url, html, client_identity
            )
            try:
                result = future.result(timeout=deadline.remaining() if deadline else None)
            except FutureTimeout:
                future.cancel()
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                logger.warning(
                    "parse.deadline_exceeded",
                    url=url,
                    strategy=strategy.name,
                    status="timeout",
                    elapsed_ms=elapsed_ms,
                )
                return opaque_result(
                    url,
                    error=error_for_exception(
                        DeadlineExceeded(
                            f"Parsing did not finish within {deadline_seconds:g}s", url=url
                        )
                    ),
                )
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    logger.info(
        "parse.completed",
        url=url,
        strategy=strategy.name,
        status=result.error.code if result.error else "success",
        fetch_method=result.fetch_method,
        confidence=result.confidence,
        elapsed_ms=int((time.perf_counter() - started) * 1000),
    )
    return result
