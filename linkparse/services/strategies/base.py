"""Strategy contract plus the reusable policy templates platform strategies build on.

Every strategy exposes ``matches(url)`` and ``parse(url, html=None,
client_identity=None)``. ``parse`` is total: whatever ``run`` raises is logged
and turned into a webview fallback here, so neither the registry nor the caller
ever sees an exception.
"""

from __future__ import annotations

import html as html_lib
import re
import time
from typing import Any, Mapping, Optional
from urllib.parse import urlencode, urlparse

import structlog

from linkparse.config import FetchLimits
from linkparse.models.parse_result import (
    ContentType,
    ErrorCode,
    FetchMethod,
    ParseError,
    ParseResult,
    make_error,
)
from linkparse.services import article as article_extractor
from linkparse.services import quality
from linkparse.services.exceptions import (
    DeadlineExceeded,
    FetchFailed,
    UpstreamAPIError,
)
from linkparse.services.fetch import (
    BROWSER_USER_AGENT,
    FetchErrorCode,
    FetchResult,
    UnifiedFetcher,
    get_default_fetcher,
)
from linkparse.services.metadata import MetaTags, scrape
from linkparse.services.sanitizer import sanitize_html
from linkparse.utils.correlation import bind_strategy_context
from linkparse.utils.text_cleaner import (
    estimate_reading_time,
    make_excerpt,
    sanitize_text,
    sanitize_title,
    strip_tags,
)
from linkparse.utils.urls import hostname_of, title_from_url

logger = structlog.get_logger(__name__)

WEBVIEW_CONFIDENCE = 0.3
OPAQUE_CONFIDENCE = 0.2
META_ONLY_CONFIDENCE = 0.5
OEMBED_CONFIDENCE = 0.8
API_CONFIDENCE = 0.9

# Fetch failure kind -> caller-facing error code.
FETCH_ERROR_CODES: dict[str, str] = {
    FetchErrorCode.ROBOTS_BLOCKED: ErrorCode.PROTECTED,
    FetchErrorCode.RATE_LIMITED: ErrorCode.RATE_LIMITED,
    FetchErrorCode.TIMEOUT: ErrorCode.TIMEOUT,
}


def parse_code_for_fetch(fetch_code: Optional[str]) -> str:
    return FETCH_ERROR_CODES.get(fetch_code or "", ErrorCode.NETWORK_ERROR)


def error_for_fetch(result: FetchResult) -> ParseError:
    message = result.error.message if result.error else "Failed to fetch content"
    return make_error(parse_code_for_fetch(result.error_code), message)


def error_for_exception(exc: BaseException) -> ParseError:
    if isinstance(exc, FetchFailed):
        return make_error(parse_code_for_fetch(exc.code), str(exc))
    if isinstance(exc, DeadlineExceeded):
        return make_error(ErrorCode.TIMEOUT, str(exc) or "Deadline exceeded")
    return make_error(ErrorCode.PARSE_FAILED, str(exc) or exc.__class__.__name__)


def webview_fallback(
    url: str,
    title: Optional[str] = None,
    *,
    protected: bool = False,
    paywalled: bool = False,
    error: Optional[ParseError] = None,
    excerpt: Optional[str] = None,
    cover_image: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    confidence: float = WEBVIEW_CONFIDENCE,
    final_url: Optional[str] = None,
    robots_compliant: Optional[bool] = None,
    domain: Optional[str] = None,
    text: Optional[str] = None,
) -> ParseResult:
    """Opaque result telling the caller to render the original page."""
    return ParseResult(
        type=ContentType.WEBVIEW,
        title=title or title_from_url(url),
        domain=domain or hostname_of(url),
        excerpt=excerpt,
        cover_image=cover_image,
        reading_time_minutes=estimate_reading_time(text or excerpt),
        metadata=dict(metadata or {}),
        protected=protected,
        paywalled=paywalled,
        fetch_method=FetchMethod.WEBVIEW,
        confidence=confidence,
        error=error,
        final_url=final_url,
        robots_compliant=robots_compliant,
    )


def meta_only_result(
    url: str,
    title: Optional[str],
    excerpt: Optional[str],
    cover_image: Optional[str],
    *,
    type: str = ContentType.WEBVIEW,
    paywalled: bool = False,
    protected: bool = False,
    error: Optional[ParseError] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    confidence: float = META_ONLY_CONFIDENCE,
    final_url: Optional[str] = None,
    robots_compliant: Optional[bool] = None,
    domain: Optional[str] = None,
    text: Optional[str] = None,
) -> ParseResult:
    """Page metadata without a body."""
    return ParseResult(
        type=type,
        title=title or title_from_url(url),
        domain=domain or hostname_of(url),
        excerpt=excerpt,
        cover_image=cover_image,
        reading_time_minutes=estimate_reading_time(text or excerpt),
        metadata=dict(metadata or {}),
        protected=protected,
        paywalled=paywalled,
        fetch_method=FetchMethod.META_ONLY,
        confidence=confidence,
        error=error,
        final_url=final_url,
        robots_compliant=robots_compliant,
    )


def page_text(html: Optional[str]) -> str:
    return strip_tags(html or "")


def link_card(href: str, label: str) -> str:
    return f'<a href="{html_lib.escape(href)}">{html_lib.escape(label)}</a>'


class Strategy:
    """Base class for every extraction strategy."""

    name = "base"
    platform: Optional[str] = None
    # Fixed domain reported for the platform; ``None`` uses the URL host.
    domain: Optional[str] = None
    placeholder_title: Optional[str] = None
    protected_on_failure = False
    check_robots = False

    def __init__(self, fetcher: Optional[UnifiedFetcher] = None) -> None:
        self._fetcher = fetcher

    @property
    def fetcher(self) -> UnifiedFetcher:
        return self._fetcher or get_default_fetcher()

    def matches(self, url: str) -> bool:
        raise NotImplementedError

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        raise NotImplementedError

    def parse(
        self,
        url: str,
        html: Optional[str] = None,
        client_identity: Optional[str] = None,
    ) -> ParseResult:
        bind_strategy_context(self.name)
        started = time.perf_counter()
        try:
            return self.run(url, html, client_identity)
        except Exception as exc:
            logger.warning(
                "strategy.failed",
                strategy=self.name,
                url=url,
                status="fallback",
                error_type=exc.__class__.__name__,
                error=str(exc),
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )
            return self.failure_result(url, exc)

    def failure_result(self, url: str, exc: BaseException) -> ParseResult:
        return webview_fallback(
            url,
            self.placeholder_title,
            protected=self.protected_on_failure,
            error=error_for_exception(exc),
            metadata=self.base_metadata(),
            domain=self.domain_for(url),
        )

    def domain_for(self, url: str) -> str:
        return self.domain or hostname_of(url)

    def base_metadata(self, **extra: Any) -> dict[str, Any]:
        metadata: dict[str, Any] = {"platform": self.platform} if self.platform else {}
        metadata.update({key: value for key, value in extra.items() if value not in (None, "")})
        return metadata

    def fetch_page(
        self,
        url: str,
        *,
        client_identity: Optional[str] = None,
        user_agent: Optional[str] = None,
        check_robots: Optional[bool] = None,
    ) -> FetchResult:
        return self.fetcher.fetch_html(
            url,
            user_agent=user_agent,
            check_robots=self.check_robots if check_robots is None else check_robots,
            client_identity=client_identity,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name!r}>"


_SUBDOMAINS = r"(?:[a-z0-9-]+\.)*"


def host_and_path(url: str) -> str:
    if "://" not in url:
        url = "https://" + url
    try:
        parsed = urlparse(url)
    except ValueError:
        return ""
    host = (parsed.hostname or "").lower()
    return f"{host}{parsed.path or '/'}" if host else ""


class PatternStrategy(Strategy):
    """Matches when the URL's host and path start with one of ``patterns``.

    Patterns are written from the registrable domain onward; any subdomain in
    front of it is accepted. The query string and fragment are never consulted.
    """

    patterns: tuple[str, ...] = ()
    _compiled: tuple[re.Pattern[str], ...] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._compiled = tuple(
            re.compile(_SUBDOMAINS + pattern, re.IGNORECASE) for pattern in cls.patterns
        )

    def matches(self, url: str) -> bool:
        target = host_and_path(url)
        return bool(target) and any(pattern.match(target) for pattern in self._compiled)


class ApiStrategy(PatternStrategy):
    """Official or widely used JSON endpoint mapped directly into a result.

    ``run`` raises on any upstream failure; :meth:`Strategy.parse` turns that
    into the fallback.
    """

    oembed_endpoint: Optional[str] = None
    oembed_params: Mapping[str, str] = {}
    content_type = ContentType.ARTICLE

    def get_json(
        self,
        url: str,
        *,
        user_agent: Optional[str] = None,
        client_identity: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        return self.fetcher.get_json(
            url, timeout=timeout, user_agent=user_agent, client_identity=client_identity
        )

    def fetch_oembed(self, url: str, client_identity: Optional[str] = None) -> dict[str, Any]:
        if not self.oembed_endpoint:
            raise UpstreamAPIError(f"{self.name} has no oEmbed endpoint", url=url)
        params = {"url": url, "format": "json"}
        params.update(self.oembed_params)
        payload = self.get_json(
            f"{self.oembed_endpoint}?{urlencode(params)}",
            client_identity=client_identity,
            timeout=FetchLimits.from_env().timeout_seconds,
        )
        if not isinstance(payload, dict):
            raise UpstreamAPIError(f"{self.name} oEmbed returned no object", url=url)
        return payload

    def oembed_result(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        title: Optional[str] = None,
        excerpt: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ParseResult:
        embed_html = payload.get("html") if isinstance(payload.get("html"), str) else None
        title = title or sanitize_text(payload.get("title")) or self.placeholder_title
        author = sanitize_text(payload.get("author_name"))
        combined_metadata = self.base_metadata(
            author_name=author,
            author_url=payload.get("author_url"),
            provider_name=payload.get("provider_name"),
        )
        combined_metadata.update(metadata or {})
        text = " ".join(part for part in (title, excerpt, strip_tags(embed_html)) if part)
        return ParseResult(
            type=content_type or self.content_type,
            title=title or title_from_url(url),
            domain=self.domain_for(url),
            excerpt=excerpt,
            content_html=(sanitize_html(embed_html) or None) if embed_html else None,
            cover_image=payload.get("thumbnail_url"),
            reading_time_minutes=estimate_reading_time(text),
            metadata=combined_metadata,
            fetch_method=FetchMethod.OEMBED,
            confidence=OEMBED_CONFIDENCE,
        )

    def api_result(
        self,
        url: str,
        *,
        title: Optional[str],
        excerpt: Optional[str] = None,
        content_html: Optional[str] = None,
        cover_image: Optional[str] = None,
        text: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        fetch_method: str = FetchMethod.API,
        confidence: float = API_CONFIDENCE,
    ) -> ParseResult:
        """Result built from a JSON API payload; body markup is always sanitized."""
        if text is None:
            text = strip_tags(content_html) or excerpt
        return ParseResult(
            type=content_type or self.content_type,
            title=sanitize_text(title) or self.placeholder_title or title_from_url(url),
            domain=self.domain_for(url),
            excerpt=excerpt,
            content_html=(sanitize_html(content_html) or None) if content_html else None,
            cover_image=cover_image,
            reading_time_minutes=estimate_reading_time(text),
            metadata=self.base_metadata(**dict(metadata or {})),
            fetch_method=fetch_method,
            confidence=confidence,
        )

    def title_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        return None

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return sanitize_text(payload.get("description")) or (f"By {author}" if author else None)

    def metadata_for(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {}

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        payload = self.fetch_oembed(url, client_identity)
        return self.oembed_result(
            url,
            payload,
            title=self.title_for(payload),
            excerpt=self.excerpt_for(payload),
            metadata=self.metadata_for(url, payload),
        )


class MetaOnlyStrategy(PatternStrategy):
    """Never extracts a body; returns page metadata or a webview fallback."""

    content_type = ContentType.WEBVIEW
    confidence = META_ONLY_CONFIDENCE
    user_agent: Optional[str] = None

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        fetch_result: Optional[FetchResult] = None
        if html is None:
            fetch_result = self.fetch_page(
                url, client_identity=client_identity, user_agent=self.user_agent
            )
            if not fetch_result.success:
                return self.on_fetch_failure(url, fetch_result)
            html = fetch_result.html or ""
        return self.build(url, html, scrape(html), fetch_result)

    def on_fetch_failure(self, url: str, fetch_result: FetchResult) -> ParseResult:
        return webview_fallback(
            url,
            self.placeholder_title,
            protected=self.protected_on_failure,
            error=error_for_fetch(fetch_result),
            metadata=self.base_metadata(),
            domain=self.domain_for(url),
        )

    def build(
        self,
        url: str,
        html: str,
        meta: MetaTags,
        fetch_result: Optional[FetchResult],
    ) -> ParseResult:
        return meta_only_result(
            url,
            sanitize_title(meta.title) or self.placeholder_title,
            meta.description,
            meta.image,
            type=self.content_type,
            metadata=self.base_metadata(),
            confidence=self.confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain_for(url),
        )


class PaywallAwareStrategy(PatternStrategy):
    """Article host with a platform-tuned paywall check ahead of extraction."""

    user_agent: Optional[str] = BROWSER_USER_AGENT
    extract_body = True
    meta_only_confidence = 0.6
    paywall_message = "Content behind paywall"

    def detect_paywall(self, html: str, text_length: int) -> bool:
        raise NotImplementedError

    def author_of(self, meta: MetaTags) -> Optional[str]:
        return meta.author

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        final_url = None
        if html is None:
            fetch_result = self.fetch_page(
                url, client_identity=client_identity, user_agent=self.user_agent
            )
            if not fetch_result.success:
                raise FetchFailed(
                    fetch_result.error_code or FetchErrorCode.NETWORK_ERROR,
                    fetch_result.error.message if fetch_result.error else "Fetch failed",
                    url=url,
                )
            html = fetch_result.html or ""
            final_url = fetch_result.url

        meta = scrape(html)
        title = sanitize_title(meta.title) or self.placeholder_title
        metadata = self.base_metadata(author=self.author_of(meta))
        extracted = article_extractor.extract(html, final_url or url)
        text = extracted.text_content if extracted else page_text(html)

        if self.detect_paywall(html, len(text)):
            logger.info("strategy.paywall_detected", strategy=self.name, url=url, chars=len(text))
            return meta_only_result(
                url,
                title,
                meta.description,
                meta.image,
                paywalled=True,
                error=make_error(ErrorCode.PAYWALL, self.paywall_message),
                metadata=metadata,
                final_url=final_url,
                domain=self.domain_for(url),
                text=text,
            )

        if self.extract_body and extracted is not None:
            assessment = quality.assess(html, extracted.text_content, check_paywall=False)
            if assessment.recommendation == quality.Recommendation.SERVE:
                return ParseResult(
                    type=ContentType.ARTICLE,
                    title=sanitize_title(extracted.title) or title or title_from_url(url),
                    domain=self.domain_for(url),
                    excerpt=extracted.excerpt or meta.description,
                    content_html=sanitize_html(extracted.content) or None,
                    cover_image=meta.image,
                    reading_time_minutes=estimate_reading_time(extracted.text_content),
                    metadata=metadata,
                    fetch_method=FetchMethod.READABILITY,
                    confidence=assessment.confidence,
                    final_url=final_url,
                )

        return meta_only_result(
            url,
            title,
            meta.description or make_excerpt(text),
            meta.image,
            type=ContentType.ARTICLE,
            metadata=metadata,
            confidence=self.meta_only_confidence,
            final_url=final_url,
            domain=self.domain_for(url),
            text=text,
        )


class ScrapeMetaStrategy(PatternStrategy):
    """Social platform without a usable public API: Open Graph scrape with a browser UA.

    These platforms reject the honest bot user agent outright, so the scrape
    identifies as a browser; a failed scrape still yields a typed placeholder.
    """

    user_agent: Optional[str] = BROWSER_USER_AGENT
    content_type = ContentType.SOCIAL
    scrape_confidence = META_ONLY_CONFIDENCE

    def scrape_page(
        self, url: str, client_identity: Optional[str], html: Optional[str] = None
    ) -> tuple[MetaTags, Optional[FetchResult]]:
        if html:
            return scrape(html), None
        result = self.fetch_page(url, client_identity=client_identity, user_agent=self.user_agent)
        if not result.success or not result.html:
            logger.info(
                "strategy.scrape_failed",
                strategy=self.name,
                url=url,
                status=result.error_code or "empty",
            )
            return MetaTags(), result
        return scrape(result.html), result

    def placeholder(self, url: str, **metadata: Any) -> ParseResult:
        return webview_fallback(
            url,
            self.placeholder_title,
            protected=self.protected_on_failure,
            metadata=self.base_metadata(**metadata),
            domain=self.domain_for(url),
        )

