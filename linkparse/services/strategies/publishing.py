"""Newsletter and blogging hosts with their own paywall markup, plus Hacker News."""

from __future__ import annotations

import re
from typing import Optional

from linkparse.models.parse_result import ContentType, ParseResult
from linkparse.services import quality
from linkparse.services.exceptions import ExtractionFailed, UpstreamAPIError
from linkparse.services.metadata import MetaTags
from linkparse.services.strategies.base import ApiStrategy, PaywallAwareStrategy, link_card
from linkparse.utils.text_cleaner import strip_tags

HACKER_NEWS_ITEM_URL = "https://hacker-news.firebaseio.com/v0/item/{id}.json"


class MediumStrategy(PaywallAwareStrategy):
    name = "Medium"
    platform = "medium"
    domain = "medium.com"
    placeholder_title = "Medium Article"
    patterns = (r"medium\.com/",)
    meta_only_confidence = 0.7
    paywall_message = "This article is for Medium members only"

    def detect_paywall(self, html: str, text_length: int) -> bool:
        return quality.detect_medium_paywall(html, text_length)


class SubstackStrategy(PaywallAwareStrategy):
    """Paid posts become meta-only; free posts are also left to the webview."""

    name = "Substack"
    platform = "substack"
    placeholder_title = "Substack Article"
    patterns = (r"substack\.com/",)
    extract_body = False
    meta_only_confidence = 0.6
    paywall_message = "This post is for paid subscribers only"

    def detect_paywall(self, html: str, text_length: int) -> bool:
        return quality.detect_substack_paywall(html, text_length)

    def author_of(self, meta: MetaTags) -> Optional[str]:
        return meta.author or meta.site_name


class HackerNewsStrategy(ApiStrategy):
    name = "Hacker News"
    platform = "hackernews"
    domain = "news.ycombinator.com"
    placeholder_title = "Hacker News Discussion"
    patterns = (r"news\.ycombinator\.com/item",)

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        match = re.search(r"[?&]id=(\d+)", url)
        if not match:
            raise ExtractionFailed("No Hacker News item id in URL", url=url)
        data = self.get_json(
            HACKER_NEWS_ITEM_URL.format(id=match.group(1)), client_identity=client_identity
        )
        if not isinstance(data, dict) or data.get("deleted") or data.get("dead"):
            raise UpstreamAPIError("Hacker News item unavailable", url=url)

        title = data.get("title") or ""
        comments = data.get("descendants")
        body = data.get("text")
        if not body and data.get("url"):
            body = link_card(data["url"], title or data["url"])
        return self.api_result(
            url,
            title=title,
            excerpt=f"Hacker News discussion with {comments or 0} comments",
            content_html=body,
            text=strip_tags(data.get("text") or "") or title,
            content_type=ContentType.ARTICLE,
            metadata={
                "author": data.get("by"),
                "score": data.get("score"),
                "comments": comments,
                "story_url": data.get("url"),
            },
        )


PUBLISHING_STRATEGIES = (MediumStrategy, SubstackStrategy, HackerNewsStrategy)
