"""Ordered strategy list with first-match dispatch.

Match predicates overlap (Gist URLs are also GitHub URLs, every URL matches
the default), so the order of the list is the precedence. ``select`` is a
plain linear scan and must stay one.
"""

from __future__ import annotations

import threading
from typing import Iterable, Iterator, Optional

import structlog

from linkparse.services.fetch import UnifiedFetcher
from linkparse.services.strategies.base import Strategy
from linkparse.services.strategies.code import CODE_STRATEGIES
from linkparse.services.strategies.default import DefaultStrategy
from linkparse.services.strategies.media import MEDIA_STRATEGIES
from linkparse.services.strategies.publishing import PUBLISHING_STRATEGIES
from linkparse.services.strategies.reference import REFERENCE_STRATEGIES
from linkparse.services.strategies.social import SOCIAL_STRATEGIES
from linkparse.services.strategies.workspace import WORKSPACE_STRATEGIES

logger = structlog.get_logger(__name__)

STRATEGY_CLASSES: tuple[type[Strategy], ...] = (
    *MEDIA_STRATEGIES,
    *SOCIAL_STRATEGIES,
    *PUBLISHING_STRATEGIES,
    *CODE_STRATEGIES,
    *WORKSPACE_STRATEGIES,
    *REFERENCE_STRATEGIES,
    DefaultStrategy,
)


class StrategyRegistry:
    def __init__(self, strategies: Iterable[Strategy]) -> None:
        self._strategies = list(strategies)
        if not self._strategies:
            raise ValueError("StrategyRegistry needs at least one strategy")

    def select(self, url: str) -> Strategy:
        for strategy in self._strategies:
            if strategy.matches(url):
                return strategy
        # Only reachable when the list was built without a catch-all.
        return self._strategies[-1]

    @property
    def names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    def __iter__(self) -> Iterator[Strategy]:
        return iter(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)


def build_default_registry(fetcher: Optional[UnifiedFetcher] = None) -> StrategyRegistry:
    return StrategyRegistry(cls(fetcher) for cls in STRATEGY_CLASSES)


_registry_lock = threading.Lock()
_registry: Optional[StrategyRegistry] = None


def get_registry() -> StrategyRegistry:
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = build_default_registry()
                logger.info("registry.built", strategies=len(_registry))
    return _registry


def reset_registry() -> None:
    global _registry
    with _registry_lock:
        _registry = None


def select_strategy(url: str) -> Strategy:
    return get_registry().select(url)
