"""Strip executable content from extracted markup before it leaves the service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

import structlog
from bs4 import BeautifulSoup, Comment

logger = structlog.get_logger(__name__)

IFRAME_ALLOWLIST: tuple[str, ...] = (
    "youtube.com",
    "youtube-nocookie.com",
    "youtu.be",
    "player.vimeo.com",
    "open.spotify.com",
    "w.soundcloud.com",
    "platform.twitter.com",
    "instagram.com",
    "tiktok.com",
    "embed.music.apple.com",
)
IFRAME_SANDBOX = "allow-scripts allow-popups"

OBJECT_TAGS = ("object", "embed", "applet")
URL_ATTRIBUTES = (
    "href",
    "src",
    "action",
    "formaction",
    "poster",
    "background",
    "cite",
    "data",
    "xlink:href",
)
SAFE_DATA_IMAGE_PREFIXES = (
    "data:image/png",
    "data:image/jpeg",
    "data:image/jpg",
    "data:image/gif",
    "data:image/webp",
)
DANGEROUS_SCHEMES = ("javascript:", "vbscript:")
# SVG <animate>/<set> can rewrite an href at runtime through these.
ANIMATION_ATTRIBUTES = ("values", "from", "to", "by")


@dataclass
class SanitizeResult:
    html: str
    has_unsafe_content: bool = False
    removed_elements: dict[str, int] = field(
        default_factory=lambda: {
            "scripts": 0,
            "iframes": 0,
            "eventHandlers": 0,
            "dangerousUrls": 0,
            "forms": 0,
            "objects": 0,
        }
    )


def _compact(value: str) -> str:
    # Browsers ignore whitespace and control characters inside a scheme ("java\tscript:").
    return "".join(ch for ch in value if ch > " ").lower()


def is_dangerous_url(value: Optional[str]) -> bool:
    if not value:
        return False
    compact = _compact(value)
    if compact.startswith(DANGEROUS_SCHEMES):
        return True
    if compact.startswith("data:"):
        return not compact.startswith(SAFE_DATA_IMAGE_PREFIXES)
    return False


def _iframe_allowed(src: Optional[str], allowlist: Iterable[str]) -> bool:
    if not src:
        return False
    if src.startswith("//"):
        src = "https:" + src
    try:
        parsed = urlparse(src)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    return any(host == domain or host.endswith("." + domain) for domain in allowlist)


def _drop(tags: Iterable) -> int:
    removed = 0
    for tag in tags:
        # Children of an already removed parent are gone too.
        if tag.decomposed:
            continue
        tag.decompose()
        removed += 1
    return removed


def _merge_rel(existing: object) -> list[str]:
    if isinstance(existing, str):
        tokens = existing.split()
    elif isinstance(existing, (list, tuple)):
        tokens = [str(token) for token in existing]
    else:
        tokens = []
    merged = list(dict.fromkeys(token.lower() for token in tokens if token))
    for required in ("noopener", "noreferrer"):
        if required not in merged:
            merged.append(required)
    return merged


def sanitize(
    html: Optional[str],
    *,
    allow_iframes: bool = True,
    iframe_allowlist: Iterable[str] = IFRAME_ALLOWLIST,
) -> SanitizeResult:
    """Return a cleaned copy of ``html``; running it twice changes nothing more."""
    result = SanitizeResult(html="")
    if not html:
        return result
    stats = result.removed_elements
    allowlist = tuple(iframe_allowlist)

    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()

    stats["scripts"] += _drop(soup.find_all("script"))
    _drop(soup.find_all("noscript"))
    stats["objects"] += _drop(soup.find_all(OBJECT_TAGS))
    _drop(soup.find_all("base"))

    for tag in soup.find_all("meta"):
        if str(tag.get("http-equiv") or "").strip().lower() == "refresh":
            tag.decompose()

    for tag in soup.find_all("iframe"):
        if allow_iframes and _iframe_allowed(tag.get("src"), allowlist):
            tag["sandbox"] = IFRAME_SANDBOX
            continue
        stats["iframes"] += 1
        tag.decompose()

    for tag in soup.find_all("form"):
        stats["forms"] += 1
        tag.unwrap()

    for tag in soup.find_all(True):
        for attribute in list(tag.attrs):
            name = attribute.lower()
            if name.startswith("on"):
                stats["eventHandlers"] += 1
                del tag.attrs[attribute]
                continue
            if name == "srcdoc":
                stats["dangerousUrls"] += 1
                del tag.attrs[attribute]
                continue
            if name in ANIMATION_ATTRIBUTES:
                values = str(tag.attrs[attribute]).split(";")
                if any(is_dangerous_url(value) for value in values):
                    stats["dangerousUrls"] += 1
                    del tag.attrs[attribute]
                continue
            if name in URL_ATTRIBUTES or name == "srcset":
                value = tag.attrs[attribute]
                if isinstance(value, list):
                    value = " ".join(value)
                if is_dangerous_url(str(value)):
                    stats["dangerousUrls"] += 1
                    del tag.attrs[attribute]
        if tag.name == "a" and tag.get("href"):
            tag["rel"] = _merge_rel(tag.get("rel"))

    result.html = str(soup).strip()
    result.has_unsafe_content = bool(
        stats["scripts"] or stats["eventHandlers"] or stats["dangerousUrls"] or stats["objects"]
    )
    if result.has_unsafe_content:
        logger.debug("sanitizer.removed_unsafe", removed=dict(stats))
    return result


def sanitize_html(html: Optional[str]) -> str:
    return sanitize(html).html
