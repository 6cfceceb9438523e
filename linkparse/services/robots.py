"""robots.txt compliance with a per-host TTL cache."""

from __future__ import annotations

import threading
from typing import Iterable, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import requests
import structlog
from cachetools import TTLCache

from linkparse.config import FetchLimits

logger = structlog.get_logger(__name__)

# Product token matched against robots.txt User-agent lines.
ROBOTS_AGENT_TOKEN = "ReadabilityBot"
MAX_ROBOTS_BYTES = 512 * 1024

_ALLOW_ALL = "allow-all"


def _prefer_allow_rules(lines: Iterable[str]) -> list[str]:
    """Reorder each group so Allow lines are evaluated before Disallow lines.

    ``RobotFileParser`` applies the first matching rule of a group; placing the
    Allow rules first gives them precedence over overlapping Disallow rules.
    """
    output: list[str] = []
    agents: list[str] = []
    allows: list[str] = []
    others: list[str] = []

    def flush() -> None:
        output.extend(agents)
        output.extend(allows)
        output.extend(others)
        agents.clear()
        allows.clear()
        others.clear()

    for raw_line in lines:
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        field_name = line.split(":", 1)[0].strip().lower()
        if field_name == "user-agent":
            if allows or others:
                flush()
            agents.append(line)
        elif field_name == "allow":
            allows.append(line)
        else:
            others.append(line)
    flush()
    return output


def parse_robots(text: str) -> RobotFileParser:
    parser = RobotFileParser()
    parser.parse(_prefer_allow_rules(text.splitlines()))
    # can_fetch() refuses everything until the parser is marked as read.
    parser.modified()
    return parser


class RobotsPolicy:
    """Answers "may this URL be fetched?" and fails open on any error."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        limits: Optional[FetchLimits] = None,
        user_agent: Optional[str] = None,
        agent_token: str = ROBOTS_AGENT_TOKEN,
    ) -> None:
        self.limits = limits or FetchLimits.from_env()
        self.session = session or requests.Session()
        self.user_agent = user_agent
        self.agent_token = agent_token
        self._cache: TTLCache[str, object] = TTLCache(
            maxsize=1024, ttl=self.limits.robots_cache_ttl_seconds
        )
        self._lock = threading.Lock()

    def _robots_url(self, url: str) -> Optional[str]:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return None
        return f"{parsed.scheme}://{parsed.netloc}/robots.txt"

    def _load(self, robots_url: str) -> Optional[object]:
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}
        try:
            response = self.session.get(
                robots_url,
                headers=headers,
                timeout=self.limits.robots_timeout_seconds,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            logger.info("robots.unreachable", robots_url=robots_url, error=str(exc))
            return None

        if response.status_code >= 400:
            # No robots.txt means everything is allowed.
            return _ALLOW_ALL
        text = response.text or ""
        if len(text) > MAX_ROBOTS_BYTES:
            logger.warning("robots.too_large", robots_url=robots_url, size=len(text))
            return _ALLOW_ALL
        return parse_robots(text)

    def rules_for(self, url: str) -> Optional[object]:
        robots_url = self._robots_url(url)
        if robots_url is None:
            return None
        with self._lock:
            if robots_url in self._cache:
                return self._cache[robots_url]
        rules = self._load(robots_url)
        if rules is not None:
            with self._lock:
                self._cache[robots_url] = rules
        return rules

    def is_allowed(self, url: str) -> bool:
        rules = self.rules_for(url)
        if not isinstance(rules, RobotFileParser):
            return True
        allowed = rules.can_fetch(self.agent_token, url)
        if not allowed:
            logger.info("robots.blocked", url=url, status="blocked")
        return allowed

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
