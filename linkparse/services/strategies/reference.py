"""Encyclopedias, catalogues and pin boards."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from linkparse.models.parse_result import (
    ContentType,
    ErrorCode,
    ParseResult,
    make_error,
)
from linkparse.services.exceptions import ExtractionFailed, UpstreamAPIError
from linkparse.services.fetch import FetchResult
from linkparse.services.metadata import MetaTags
from linkparse.services.strategies.base import (
    ApiStrategy,
    MetaOnlyStrategy,
    error_for_exception,
    meta_only_result,
    webview_fallback,
)
from linkparse.utils.text_cleaner import sanitize_text, sanitize_title

WIKIPEDIA_SUMMARY_URL = "https://{lang}.wikipedia.org/api/rest_v1/page/summary/{title}"

_WIKI_TITLE_RE = re.compile(r"/wiki/([^#?]+)")
_WIKI_LANG_RE = re.compile(r"(?:^|//)([a-z]{2,3}(?:-[a-z]+)?)\.(?:m\.)?wikipedia\.org", re.IGNORECASE)
_ASIN_RE = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})")


def wikipedia_language(url: str) -> str:
    match = _WIKI_LANG_RE.search(url)
    return match.group(1).lower() if match else "en"


class WikipediaStrategy(ApiStrategy):
    """REST summary only; the summary is the lead paragraph, so the full page stays a webview."""

    name = "Wikipedia"
    platform = "wikipedia"
    placeholder_title = "Wikipedia"
    patterns = (r"wikipedia\.org/wiki/",)
    content_type = ContentType.WEBVIEW

    def domain_for(self, url: str) -> str:
        return f"{wikipedia_language(url)}.wikipedia.org"

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        match = _WIKI_TITLE_RE.search(url)
        if not match:
            raise ExtractionFailed("No Wikipedia title found", url=url)
        data = self.get_json(
            WIKIPEDIA_SUMMARY_URL.format(lang=wikipedia_language(url), title=match.group(1)),
            client_identity=client_identity,
        )
        if not isinstance(data, dict) or not data.get("title"):
            raise UpstreamAPIError("Wikipedia summary missing title", url=url)

        summary = sanitize_text(data.get("extract"))
        page_id = data.get("pageid")
        return self.api_result(
            url,
            title=data["title"],
            excerpt=summary or None,
            cover_image=(data.get("thumbnail") or {}).get("source"),
            text=summary,
            metadata={
                "page_id": str(page_id) if page_id is not None else None,
                "description": data.get("description"),
            },
        )


class AmazonStrategy(MetaOnlyStrategy):
    """Product card from Open Graph tags only; Amazon blocks anything deeper."""

    name = "Amazon"
    platform = "amazon"
    domain = "amazon.com"
    placeholder_title = "Amazon Product"
    patterns = (
        r"amazon\.(com|co\.uk|de|jp|fr|it|ca|in|com\.br|com\.mx)/",
        r"amzn\.to/",
    )
    content_type = ContentType.PRODUCT
    confidence = 0.6

    @staticmethod
    def asin_of(url: str) -> Optional[str]:
        match = _ASIN_RE.search(url)
        return match.group(1) if match else None

    def failure_result(self, url: str, exc: BaseException) -> ParseResult:
        asin = self.asin_of(url)
        return webview_fallback(
            url,
            f"{self.placeholder_title} ({asin})" if asin else self.placeholder_title,
            error=error_for_exception(exc),
            metadata=self.base_metadata(asin=asin),
            domain=self.domain,
        )

    def on_fetch_failure(self, url: str, fetch_result: FetchResult) -> ParseResult:
        return webview_fallback(
            url,
            self.placeholder_title,
            error=make_error(ErrorCode.PARSE_FAILED, "Amazon blocked the request"),
            metadata=self.base_metadata(asin=self.asin_of(url)),
            domain=self.domain,
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
            metadata=self.base_metadata(asin=self.asin_of(url)),
            confidence=self.confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain,
        )


class IMDbStrategy(MetaOnlyStrategy):
    name = "IMDb"
    platform = "imdb"
    domain = "imdb.com"
    placeholder_title = "IMDb Title"
    patterns = (r"imdb\.com/title/",)
    content_type = ContentType.VIDEO


class PinterestStrategy(ApiStrategy):
    name = "Pinterest"
    platform = "pinterest"
    domain = "pinterest.com"
    placeholder_title = "Pinterest Pin"
    patterns = (r"pinterest\.com/pin/",)
    oembed_endpoint = "https://www.pinterest.com/oembed.json"
    content_type = ContentType.IMAGE

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Pin by {author}" if author else None


REFERENCE_STRATEGIES = (WikipediaStrategy, AmazonStrategy, IMDbStrategy, PinterestStrategy)
