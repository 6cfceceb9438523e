"""Code hosting: Gist oEmbed, GitHub's repository API, Stack Exchange questions."""

from __future__ import annotations

import html as html_lib
import re
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from linkparse.models.parse_result import ContentType, ParseResult
from linkparse.services.exceptions import ExtractionFailed, UpstreamAPIError
from linkparse.services.strategies.base import ApiStrategy, link_card, webview_fallback
from linkparse.utils.text_cleaner import sanitize_text

GITHUB_REPO_API_URL = "https://api.github.com/repos/{owner}/{repo}"
STACK_EXCHANGE_QUESTION_URL = (
    "https://api.stackexchange.com/2.3/questions/{id}?site=stackoverflow&filter=withbody"
)

# First path segments that are GitHub product pages rather than owners.
_GITHUB_RESERVED = frozenset(
    {
        "about",
        "apps",
        "collections",
        "explore",
        "features",
        "login",
        "marketplace",
        "notifications",
        "orgs",
        "pricing",
        "settings",
        "sponsors",
        "topics",
        "trending",
    }
)


class GistStrategy(ApiStrategy):
    name = "GitHub Gist"
    platform = "gist"
    domain = "gist.github.com"
    placeholder_title = "GitHub Gist"
    patterns = (r"gist\.github\.com/",)
    oembed_endpoint = "https://gist.github.com/oembed"
    content_type = ContentType.CODE

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return sanitize_text(payload.get("description")) or (f"Gist by {author}" if author else None)


def github_repo(url: str) -> Optional[tuple[str, str]]:
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if len(segments) < 2 or segments[0].lower() in _GITHUB_RESERVED:
        return None
    repo = segments[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    return segments[0], repo


class GitHubStrategy(ApiStrategy):
    name = "GitHub"
    platform = "github"
    domain = "github.com"
    placeholder_title = "GitHub"
    patterns = (r"github\.com/",)
    content_type = ContentType.CODE

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        repo = github_repo(url)
        path = urlparse(url).path
        if repo is None or "/issues/" in path or "/pull/" in path:
            return webview_fallback(
                url,
                self.placeholder_title,
                excerpt="View on GitHub",
                metadata=self.base_metadata(),
                domain=self.domain,
            )

        owner, name = repo
        data = self.get_json(
            GITHUB_REPO_API_URL.format(owner=owner, repo=name), client_identity=client_identity
        )
        if not isinstance(data, dict) or not data.get("full_name"):
            raise UpstreamAPIError("GitHub repository payload missing full_name", url=url)

        full_name = data["full_name"]
        description = sanitize_text(data.get("description"))
        stars = data.get("stargazers_count")
        forks = data.get("forks_count")
        card = (
            '<div class="github-repo">'
            f"<h3>{html_lib.escape(full_name)}</h3>"
            f"<p>{html_lib.escape(description or '')}</p>"
            f"<p>Stars: {stars or 0} | Forks: {forks or 0}</p>"
            f"{link_card(data.get('html_url') or url, 'View repository')}"
            "</div>"
        )
        return self.api_result(
            url,
            title=full_name,
            excerpt=description or "GitHub Repository",
            content_html=card,
            cover_image=(data.get("owner") or {}).get("avatar_url"),
            metadata={
                "stars": stars,
                "forks": forks,
                "language": data.get("language"),
                "open_issues": data.get("open_issues_count"),
                "license": (data.get("license") or {}).get("spdx_id"),
            },
        )


class StackOverflowStrategy(ApiStrategy):
    name = "Stack Overflow"
    platform = "stackoverflow"
    domain = "stackoverflow.com"
    placeholder_title = "Stack Overflow Question"
    patterns = (r"stackoverflow\.com/questions/\d+",)
    content_type = ContentType.ARTICLE

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        match = re.search(r"/questions/(\d+)", url)
        if not match:
            raise ExtractionFailed("No question id in URL", url=url)
        data = self.get_json(
            STACK_EXCHANGE_QUESTION_URL.format(id=match.group(1)),
            client_identity=client_identity,
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            raise UpstreamAPIError("Question not found", url=url)
        question = items[0]
        owner = question.get("owner") or {}
        author = sanitize_text(owner.get("display_name"))
        return self.api_result(
            url,
            title=question.get("title"),
            excerpt=f"Stack Overflow question by {author}" if author else None,
            content_html=question.get("body"),
            cover_image=owner.get("profile_image"),
            metadata={
                "score": question.get("score"),
                "tags": ",".join(question.get("tags") or []),
                "is_answered": str(bool(question.get("is_answered"))).lower(),
                "answers": question.get("answer_count"),
            },
        )


CODE_STRATEGIES = (GistStrategy, GitHubStrategy, StackOverflowStrategy)
