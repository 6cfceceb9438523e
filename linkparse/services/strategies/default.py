"""Generic pipeline for any URL no platform strategy claims.

Tiers run strictly in order and the first one that yields something usable
terminates the parse:

1. fetch (robots-compliant) unless the caller supplied the markup
2. oEmbed, either from the provider table or discovered in the page head
3. article extraction gated by the quality heuristics
4. Open Graph / Twitter card meta tags
5. an opaque webview titled from the URL slug
"""

from __future__ import annotations

import time
from typing import Optional

import structlog

from linkparse.models.parse_result import (
    ContentType,
    ErrorCode,
    FetchMethod,
    ParseError,
    ParseResult,
    make_error,
)
from linkparse.services import article as article_extractor
from linkparse.services import oembed, quality
from linkparse.services.fetch import FetchResult
from linkparse.services.metadata import MetaTags, scrape
from linkparse.services.sanitizer import sanitize
from linkparse.services.strategies.base import (
    META_ONLY_CONFIDENCE,
    OPAQUE_CONFIDENCE,
    WEBVIEW_CONFIDENCE,
    Strategy,
    error_for_fetch,
    meta_only_result,
    page_text,
    webview_fallback,
)
from linkparse.utils.text_cleaner import estimate_reading_time, make_excerpt, sanitize_title
from linkparse.utils.urls import title_from_url

logger = structlog.get_logger(__name__)

def opaque_result(
    url: str,
    *,
    error: Optional[ParseError] = None,
    final_url: Optional[str] = None,
    robots_compliant: Optional[bool] = None,
) -> ParseResult:
    """Last tier: needs nothing but the URL string."""
    return webview_fallback(
        url,
        title_from_url(url),
        error=error,
        confidence=OPAQUE_CONFIDENCE,
        final_url=final_url,
        robots_compliant=robots_compliant,
    )


class DefaultStrategy(Strategy):
    name = "Default"
    check_robots = True

    def matches(self, url: str) -> bool:
        return True

    def failure_result(self, url: str, exc: BaseException) -> ParseResult:
        return opaque_result(url, error=make_error(ErrorCode.PARSE_FAILED, str(exc) or "Parse failed"))

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        fetch_result: Optional[FetchResult] = None
        if html is None:
            fetch_result = self.fetch_page(url, client_identity=client_identity)
            if not fetch_result.success:
                return self._fetch_failed(url, fetch_result)
            if fetch_result.login_redirect:
                logger.info("strategy.login_redirect", url=url, final_url=fetch_result.url)
                return webview_fallback(
                    url,
                    title_from_url(url),
                    protected=True,
                    error=make_error(ErrorCode.LOGIN_REQUIRED, "This page requires authentication"),
                    final_url=fetch_result.url,
                    robots_compliant=fetch_result.robots_checked or None,
                )
            html = fetch_result.html or ""

        final_url = fetch_result.url if fetch_result else None
        robots_compliant = True if fetch_result and fetch_result.robots_checked else None

        embedded = oembed.resolve(url, html, fetcher=self.fetcher)
        if embedded is not None:
            return embedded

        meta = scrape(html)
        readable = self._readability_tier(url, html, meta, final_url, robots_compliant)
        if readable is not None:
            return readable

        if meta.has_title:
            return self._meta_tier(url, html, meta, final_url, robots_compliant)

        logger.info("strategy.tier", strategy=self.name, url=url, tier="opaque")
        return opaque_result(url, final_url=final_url, robots_compliant=robots_compliant)

    def _fetch_failed(self, url: str, fetch_result: FetchResult) -> ParseResult:
        error = error_for_fetch(fetch_result)
        robots_compliant = True if fetch_result.robots_checked else None
        return webview_fallback(
            url,
            title_from_url(url),
            protected=error.code == ErrorCode.PROTECTED,
            error=error,
            confidence=WEBVIEW_CONFIDENCE,
            robots_compliant=robots_compliant,
        )

    def _readability_tier(
        self,
        url: str,
        html: str,
        meta: MetaTags,
        final_url: Optional[str],
        robots_compliant: Optional[bool],
    ) -> Optional[ParseResult]:
        started = time.perf_counter()
        extracted = article_extractor.extract(html, final_url or url)
        if extracted is None:
            return None

        assessment = quality.assess(html, extracted.text_content)
        walls = assessment.detected_walls
        title = sanitize_title(extracted.title) or sanitize_title(meta.title) or title_from_url(url)
        logger.info(
            "quality.assessed",
            url=url,
            strategy=self.name,
            status=assessment.recommendation,
            confidence=assessment.confidence,
            issues=assessment.issues,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )

        if walls["consent"]:
            return webview_fallback(
                url,
                title,
                error=make_error(ErrorCode.CONSENT_WALL, "Cookie consent required"),
                final_url=final_url,
                robots_compliant=robots_compliant,
                text=extracted.text_content,
            )
        if walls["paywall"]:
            return meta_only_result(
                url,
                title,
                meta.description or extracted.excerpt,
                meta.image,
                paywalled=True,
                error=make_error(ErrorCode.PAYWALL, "Content behind paywall"),
                confidence=min(assessment.confidence, META_ONLY_CONFIDENCE),
                final_url=final_url,
                robots_compliant=robots_compliant,
                text=extracted.text_content,
            )
        if walls["login"]:
            return webview_fallback(
                url,
                title,
                protected=True,
                error=make_error(ErrorCode.LOGIN_REQUIRED, "Login required to view content"),
                final_url=final_url,
                robots_compliant=robots_compliant,
                text=extracted.text_content,
            )
        if assessment.recommendation == quality.Recommendation.WEBVIEW:
            return meta_only_result(
                url,
                sanitize_title(meta.title) or title,
                meta.description or extracted.excerpt,
                meta.image,
                error=make_error(ErrorCode.PARSE_FAILED, "Content quality too low"),
                confidence=min(assessment.confidence, WEBVIEW_CONFIDENCE),
                final_url=final_url,
                robots_compliant=robots_compliant,
                text=extracted.text_content,
            )

        cleaned = sanitize(extracted.content)
        if cleaned.has_unsafe_content:
            logger.info(
                "sanitizer.removed_unsafe",
                url=url,
                removed=cleaned.removed_elements,
            )
        return ParseResult(
            type=ContentType.ARTICLE,
            title=title,
            domain=self.domain_for(url),
            excerpt=extracted.excerpt or meta.description,
            content_html=cleaned.html or None,
            cover_image=meta.image,
            reading_time_minutes=estimate_reading_time(extracted.text_content),
            metadata=self.base_metadata(
                author=meta.author,
                site_name=meta.site_name,
                published_time=meta.published_time,
                engine=extracted.engine,
            ),
            fetch_method=FetchMethod.READABILITY,
            confidence=assessment.confidence,
            final_url=final_url,
            robots_compliant=robots_compliant,
        )

    def _meta_tier(
        self,
        url: str,
        html: str,
        meta: MetaTags,
        final_url: Optional[str],
        robots_compliant: Optional[bool],
    ) -> ParseResult:
        text = page_text(html)
        assessment = quality.assess(html, text)
        logger.info(
            "strategy.tier",
            strategy=self.name,
            url=url,
            tier="meta",
            confidence=assessment.confidence,
        )
        return meta_only_result(
            url,
            sanitize_title(meta.title),
            meta.description or make_excerpt(text),
            meta.image,
            paywalled=assessment.detected_walls["paywall"],
            protected=assessment.detected_walls["login"],
            metadata=self.base_metadata(site_name=meta.site_name, author=meta.author),
            confidence=min(assessment.confidence, META_ONLY_CONFIDENCE),
            final_url=final_url,
            robots_compliant=robots_compliant,
            text=text,
        )
