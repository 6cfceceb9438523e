"""oEmbed resolution: a fixed provider table first, ``<link>`` discovery second.

Absence of an embed is an ordinary outcome here, so :func:`resolve` returns
``None`` instead of raising and the caller moves on to the next tier.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import structlog

from linkparse.config import FetchLimits
from linkparse.models.parse_result import ContentType, FetchMethod, ParseResult
from linkparse.services.exceptions import ParserError
from linkparse.services.fetch import UnifiedFetcher, get_default_fetcher
from linkparse.services.metadata import find_link_hrefs
from linkparse.services.sanitizer import sanitize_html
from linkparse.utils.text_cleaner import (
    estimate_reading_time,
    sanitize_text,
    strip_tags,
)
from linkparse.utils.urls import absolutize, hostname_of, title_from_url

logger = structlog.get_logger(__name__)

OEMBED_CONFIDENCE = 0.8
JSON_DISCOVERY_TYPE = "application/json+oembed"
XML_DISCOVERY_TYPE = "text/xml+oembed"


@dataclass(frozen=True)
class OEmbedProvider:
    name: str
    endpoint: str
    content_type: str
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.patterns)


def _provider(name: str, endpoint: str, content_type: str, *patterns: str) -> OEmbedProvider:
    return OEmbedProvider(
        name=name,
        endpoint=endpoint,
        content_type=content_type,
        patterns=tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns),
    )


PROVIDERS: tuple[OEmbedProvider, ...] = (
    _provider(
        "YouTube",
        "https://www.youtube.com/oembed",
        ContentType.VIDEO,
        r"youtube\.com/(watch|shorts/|live/)",
        r"youtu\.be/",
    ),
    _provider("Vimeo", "https://vimeo.com/api/oembed.json", ContentType.VIDEO, r"vimeo\.com/\d+"),
    _provider(
        "Dailymotion",
        "https://www.dailymotion.com/services/oembed",
        ContentType.VIDEO,
        r"dailymotion\.com/video",
    ),
    _provider(
        "TikTok", "https://www.tiktok.com/oembed", ContentType.VIDEO, r"tiktok\.com/@[^/]+/video"
    ),
    _provider(
        "Spotify",
        "https://open.spotify.com/oembed",
        ContentType.AUDIO,
        r"open\.spotify\.com/(intl-[a-z]+/)?(track|album|playlist|episode|show|artist)",
    ),
    _provider(
        "SoundCloud", "https://soundcloud.com/oembed", ContentType.AUDIO, r"soundcloud\.com/[^/]+/"
    ),
    _provider(
        "Twitter",
        "https://publish.twitter.com/oembed",
        ContentType.SOCIAL,
        r"(^|[/.])twitter\.com/[^/]+/status",
        r"(^|[/.])x\.com/[^/]+/status",
    ),
    _provider(
        "Flickr", "https://www.flickr.com/services/oembed/", ContentType.SOCIAL, r"flickr\.com/photos/"
    ),
    _provider(
        "SlideShare", "https://www.slideshare.net/api/oembed/2", ContentType.ARTICLE, r"slideshare\.net/"
    ),
    _provider(
        "Speaker Deck", "https://speakerdeck.com/oembed.json", ContentType.ARTICLE, r"speakerdeck\.com/"
    ),
    _provider("CodePen", "https://codepen.io/api/oembed", ContentType.CODE, r"codepen\.io/[^/]+/pen"),
    _provider("Gist", "https://gist.github.com/oembed", ContentType.CODE, r"gist\.github\.com/"),
    _provider(
        "Figma", "https://www.figma.com/api/oembed", "design", r"figma\.com/(file|proto|design)/"
    ),
    _provider("Dribbble", "https://dribbble.com/oauth/oembed", "design", r"dribbble\.com/shots/"),
)

# oEmbed "type" -> ParseResult.type; "rich" keeps the provider's own hint.
_TYPE_MAP = {
    "video": ContentType.VIDEO,
    "photo": ContentType.SOCIAL,
    "link": ContentType.ARTICLE,
}


def find_provider(url: str) -> Optional[OEmbedProvider]:
    for provider in PROVIDERS:
        if provider.matches(url):
            return provider
    return None


def discover_endpoint(html: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Endpoint advertised by the page head, JSON declarations preferred over XML."""
    if not html:
        return None
    for declared_type in (JSON_DISCOVERY_TYPE, XML_DISCOVERY_TYPE):
        for href in find_link_hrefs(html, "alternate", declared_type):
            endpoint = absolutize(href, base_url)
            if not endpoint:
                continue
            if declared_type == XML_DISCOVERY_TYPE:
                endpoint = endpoint.replace("format=xml", "format=json")
            return endpoint
    return None


def build_request_url(endpoint: str, url: str) -> str:
    # Discovered endpoints already carry the target URL.
    if "url=" in endpoint:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode({'url': url, 'format': 'json'})}"


def map_type(oembed_type: Any, default_type: str) -> str:
    if isinstance(oembed_type, str):
        return _TYPE_MAP.get(oembed_type.lower(), default_type)
    return default_type


def _excerpt(payload: Mapping[str, Any]) -> Optional[str]:
    description = sanitize_text(payload.get("description"))
    if description:
        return description
    author = sanitize_text(payload.get("author_name"))
    provider = sanitize_text(payload.get("provider_name"))
    if author:
        return f"By {author} on {provider}" if provider else f"By {author}"
    return provider or None


def result_from_payload(
    url: str,
    payload: Mapping[str, Any],
    default_type: str,
    *,
    provider_name: Optional[str] = None,
    confidence: float = OEMBED_CONFIDENCE,
) -> ParseResult:
    """Map an oEmbed response body onto a ``ParseResult``."""
    title = sanitize_text(payload.get("title")) or title_from_url(url)
    excerpt = _excerpt(payload)
    embed_html = payload.get("html") if isinstance(payload.get("html"), str) else None
    content_html = (sanitize_html(embed_html) or None) if embed_html else None

    cover_image = payload.get("thumbnail_url")
    if not cover_image and payload.get("type") == "photo":
        cover_image = payload.get("url")

    provider = provider_name or sanitize_text(payload.get("provider_name")) or "oembed"
    metadata = {
        "platform": provider.lower(),
        "provider_name": payload.get("provider_name"),
        "author_name": payload.get("author_name"),
        "author_url": payload.get("author_url"),
        "duration_seconds": payload.get("duration"),
        "width": payload.get("width"),
        "height": payload.get("height"),
    }
    readable_text = " ".join(
        part for part in (title, excerpt, strip_tags(embed_html)) if part
    )
    return ParseResult(
        type=map_type(payload.get("type"), default_type),
        title=title,
        domain=hostname_of(url),
        excerpt=excerpt,
        content_html=content_html,
        cover_image=cover_image if isinstance(cover_image, str) else None,
        reading_time_minutes=estimate_reading_time(readable_text),
        metadata={key: value for key, value in metadata.items() if value not in (None, "")},
        fetch_method=FetchMethod.OEMBED,
        confidence=confidence,
    )


def fetch_payload(
    endpoint_url: str,
    *,
    fetcher: Optional[UnifiedFetcher] = None,
    timeout: Optional[float] = None,
) -> Optional[dict[str, Any]]:
    """Decoded oEmbed JSON, or ``None`` for any failure."""
    fetcher = fetcher or get_default_fetcher()
    timeout = timeout or FetchLimits.from_env().oembed_timeout_seconds
    try:
        payload = fetcher.get_json(endpoint_url, timeout=timeout)
    except ParserError as exc:
        logger.info(
            "oembed.failed",
            endpoint=endpoint_url,
            status="error",
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
        return None
    if not isinstance(payload, dict):
        logger.info("oembed.failed", endpoint=endpoint_url, status="not_an_object")
        return None
    return payload


def resolve(
    url: str,
    html: Optional[str] = None,
    *,
    fetcher: Optional[UnifiedFetcher] = None,
    timeout: Optional[float] = None,
) -> Optional[ParseResult]:
    """Embed description for ``url`` or ``None`` when no provider answers."""
    provider = find_provider(url)
    has_discovery_hint = bool(html) and "oembed" in html.lower()
    if provider is None and not has_discovery_hint:
        return None

    attempts: list[tuple[str, str, Optional[str]]] = []
    if provider is not None:
        attempts.append((provider.endpoint, provider.content_type, provider.name))
    if has_discovery_hint:
        discovered = discover_endpoint(html, url)
        if discovered:
            attempts.append((discovered, ContentType.ARTICLE, None))

    for endpoint, default_type, provider_name in attempts:
        payload = fetch_payload(
            build_request_url(endpoint, url), fetcher=fetcher, timeout=timeout
        )
        if payload is None:
            continue
        result = result_from_payload(url, payload, default_type, provider_name=provider_name)
        logger.info(
            "oembed.resolved",
            url=url,
            provider=provider_name or "discovered",
            status="success",
        )
        return result
    return None
