"""Design and collaboration tools. Apart from Figma these sit behind a login."""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from linkparse.models.parse_result import ContentType, ErrorCode, ParseResult, make_error
from linkparse.services.exceptions import ParserError, UpstreamAPIError
from linkparse.services.fetch import BROWSER_USER_AGENT, FetchResult
from linkparse.services.metadata import MetaTags
from linkparse.services.strategies.base import (
    ApiStrategy,
    MetaOnlyStrategy,
    PatternStrategy,
    WEBVIEW_CONFIDENCE,
    webview_fallback,
)
from linkparse.utils.text_cleaner import make_excerpt, sanitize_text, sanitize_title
from linkparse.utils.urls import hostname_of

_JIRA_TICKET_RE = re.compile(r"browse/([A-Z0-9]+-\d+)")


class FigmaStrategy(ApiStrategy):
    name = "Figma"
    platform = "figma"
    domain = "figma.com"
    placeholder_title = "Figma Design"
    patterns = (r"figma\.com/",)
    oembed_endpoint = "https://www.figma.com/api/oembed"
    content_type = ContentType.IMAGE

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Design by {author}" if author else None


class NotionStrategy(MetaOnlyStrategy):
    """Always protected: the card carries the page title, never the page itself."""

    name = "Notion"
    platform = "notion"
    domain = "notion.so"
    placeholder_title = "Notion Page"
    protected_on_failure = True
    patterns = (r"notion\.site/", r"notion\.so/")

    def on_fetch_failure(self, url: str, fetch_result: FetchResult) -> ParseResult:
        return webview_fallback(
            url,
            self.placeholder_title,
            protected=True,
            error=make_error(ErrorCode.PROTECTED, "This Notion page requires authentication"),
            metadata=self.base_metadata(),
            domain=self.domain,
        )

    def build(
        self,
        url: str,
        html: str,
        meta: MetaTags,
        fetch_result: Optional[FetchResult],
    ) -> ParseResult:
        return webview_fallback(
            url,
            sanitize_title(meta.title) or self.placeholder_title,
            protected=True,
            error=make_error(ErrorCode.PROTECTED, "Notion content should be viewed in browser"),
            excerpt=meta.description or "View this page on Notion",
            cover_image=meta.image,
            metadata=self.base_metadata(),
            confidence=self.confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain,
        )


class TrelloStrategy(ApiStrategy):
    """Public boards and cards answer ``<url>.json``; private ones fall back to a protected card."""

    name = "Trello"
    platform = "trello"
    domain = "trello.com"
    placeholder_title = "Trello Board/Card"
    protected_on_failure = True
    patterns = (r"trello\.com/[bc]/",)
    content_type = ContentType.WEBVIEW

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        json_url = url.split("?", 1)[0].split("#", 1)[0].rstrip("/") + ".json"
        try:
            data = self.get_json(
                json_url, user_agent=BROWSER_USER_AGENT, client_identity=client_identity
            )
        except ParserError as exc:
            return webview_fallback(
                url,
                self.placeholder_title,
                protected=True,
                error=make_error(ErrorCode.PROTECTED, f"Trello board or card is private: {exc}"),
                metadata=self.base_metadata(),
                domain=self.domain,
            )
        if not isinstance(data, dict):
            raise UpstreamAPIError("Trello returned no object", url=url)

        description = sanitize_text(data.get("desc"))
        cover = (data.get("prefs") or {}).get("backgroundImage") or (
            data.get("cover") or {}
        ).get("sharedSourceUrl")
        return self.api_result(
            url,
            title=data.get("name") or "Trello",
            excerpt=make_excerpt(description, 300) if description else self.placeholder_title,
            cover_image=cover,
            text=description,
            metadata={"id": data.get("id")},
        )


class JiraStrategy(PatternStrategy):
    """Never fetched: every ticket needs an authenticated session."""

    name = "Jira"
    platform = "jira"
    placeholder_title = "Jira Ticket"
    patterns = (r"atlassian\.net/browse/", r"jira\..*/browse/")

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        match = _JIRA_TICKET_RE.search(url)
        ticket_id = match.group(1) if match else self.placeholder_title
        return webview_fallback(
            url,
            ticket_id,
            protected=True,
            error=make_error(ErrorCode.LOGIN_REQUIRED, "Jira tickets require authentication"),
            excerpt="Jira Ticket - Login required to view",
            metadata=self.base_metadata(ticket_id=ticket_id),
            confidence=WEBVIEW_CONFIDENCE,
            domain=hostname_of(url) or "jira.atlassian.net",
        )


WORKSPACE_STRATEGIES = (FigmaStrategy, NotionStrategy, TrelloStrategy, JiraStrategy)
