"""Social platforms: Reddit's JSON listing, LinkedIn oEmbed, Instagram and Facebook scrapes."""

from __future__ import annotations

import html as html_lib
import re
from typing import Any, Mapping, Optional
from urllib.parse import urlparse, urlunparse

from linkparse.models.parse_result import ContentType, ParseResult
from linkparse.services.exceptions import ExtractionFailed, UpstreamAPIError
from linkparse.services.fetch import BROWSER_USER_AGENT
from linkparse.services.strategies.base import (
    ApiStrategy,
    ScrapeMetaStrategy,
    link_card,
    meta_only_result,
)
from linkparse.utils.text_cleaner import make_excerpt, sanitize_text, sanitize_title

_INSTAGRAM_ID_RE = re.compile(r"instagram\.com/(?:[^/]+/)?(?:p|reel|reels|tv)/([A-Za-z0-9_-]+)")
_INSTAGRAM_TITLE_RE = re.compile(r"^(.*?) \(@([^)]+)\) (?:on|\u2022) Instagram")


def reddit_json_url(url: str) -> str:
    """``https://www.reddit.com/r/x/comments/id/slug/`` -> old.reddit.com listing JSON."""
    parsed = urlparse(url)
    path = parsed.path.rstrip("/")
    if (parsed.hostname or "").lower().endswith("redd.it"):
        path = f"/comments{path}"
    return urlunparse(("https", "old.reddit.com", f"{path}.json", "", "", ""))


class RedditStrategy(ApiStrategy):
    name = "Reddit"
    platform = "reddit"
    domain = "reddit.com"
    placeholder_title = "Reddit Post"
    patterns = (r"reddit\.com/", r"redd\.it/")

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        # old.reddit.com serves the listing JSON to browsers, not to unknown bots.
        data = self.get_json(
            reddit_json_url(url),
            user_agent=BROWSER_USER_AGENT,
            client_identity=client_identity,
        )
        try:
            post = data[0]["data"]["children"][0]["data"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamAPIError("Could not parse Reddit listing", url=url) from exc

        selftext = post.get("selftext") or ""
        body = html_lib.unescape(post.get("selftext_html") or "")
        is_video = bool(post.get("is_video"))
        is_image = post.get("post_hint") == "image"
        title = post.get("title") or ""

        if is_image and post.get("url"):
            body = f'<img src="{html_lib.escape(post["url"])}" alt="{html_lib.escape(title)}" />' + body
        elif is_video and ((post.get("media") or {}).get("reddit_video") or {}).get("fallback_url"):
            video_url = post["media"]["reddit_video"]["fallback_url"]
            body = f'<video src="{html_lib.escape(video_url)}" controls></video>' + body
        elif post.get("url") and post.get("permalink") and post["permalink"] not in post["url"]:
            body = link_card(post["url"], post["url"]) + body

        thumbnail = post.get("thumbnail")
        if not (isinstance(thumbnail, str) and thumbnail.startswith("http")):
            thumbnail = None

        author = post.get("author")
        subreddit = post.get("subreddit")
        return self.api_result(
            url,
            title=title,
            excerpt=make_excerpt(selftext) or f"Posted by u/{author} in r/{subreddit}",
            content_html=body or None,
            cover_image=thumbnail,
            text=selftext or title,
            content_type=ContentType.VIDEO if is_video else ContentType.IMAGE if is_image else ContentType.ARTICLE,
            metadata={
                "subreddit": subreddit,
                "author": author,
                "upvotes": post.get("ups"),
                "comments": post.get("num_comments"),
            },
        )


class LinkedInStrategy(ApiStrategy):
    name = "LinkedIn"
    platform = "linkedin"
    domain = "linkedin.com"
    placeholder_title = "LinkedIn Post"
    patterns = (r"linkedin\.com/",)
    oembed_endpoint = "https://www.linkedin.com/oembed"
    content_type = ContentType.ARTICLE

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Post by {author}" if author else None


class InstagramStrategy(ScrapeMetaStrategy):
    name = "Instagram"
    platform = "instagram"
    domain = "instagram.com"
    placeholder_title = "Instagram Post"
    patterns = (r"instagram\.com/",)
    content_type = ContentType.IMAGE

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        match = _INSTAGRAM_ID_RE.search(url)
        if not match:
            raise ExtractionFailed("Could not extract Instagram post id", url=url)
        post_id = match.group(1)
        embed_url = f"https://www.instagram.com/p/{post_id}/embed"

        meta, fetch_result = self.scrape_page(url, client_identity, html)
        og_title = sanitize_text(meta.title)
        if not og_title or og_title == "Instagram":
            return self.placeholder(url, post_id=post_id, embed_url=embed_url)

        title = og_title
        author = None
        user_match = _INSTAGRAM_TITLE_RE.match(og_title)
        if user_match:
            author = user_match.group(2)
            title = f"{user_match.group(1)} (@{author})"
        excerpt = meta.description
        if ': "' in og_title:
            excerpt = og_title.split(': "', 1)[1].rstrip('"')

        return meta_only_result(
            url,
            title,
            excerpt or "View on Instagram",
            meta.image,
            type=self.content_type,
            metadata=self.base_metadata(
                post_id=post_id, embed_url=embed_url, author_username=author
            ),
            confidence=self.scrape_confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain,
        )


class FacebookStrategy(ScrapeMetaStrategy):
    """Open Graph card only; most Facebook content sits behind a login."""

    name = "Facebook"
    platform = "facebook"
    domain = "facebook.com"
    placeholder_title = "Facebook Post"
    protected_on_failure = True
    patterns = (r"facebook\.com/", r"fb\.watch/")

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        meta, fetch_result = self.scrape_page(url, client_identity, html)
        if not meta.title:
            return self.placeholder(url)
        og_type = (meta.type or "website").lower()
        return meta_only_result(
            url,
            sanitize_title(meta.title),
            meta.description,
            meta.image,
            type=ContentType.VIDEO if "video" in og_type else ContentType.SOCIAL,
            metadata=self.base_metadata(og_type=og_type),
            confidence=self.scrape_confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain,
        )


SOCIAL_STRATEGIES = (RedditStrategy, LinkedInStrategy, InstagramStrategy, FacebookStrategy)
