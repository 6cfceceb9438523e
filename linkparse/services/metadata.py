"""Open Graph / Twitter card scraping by direct markup inspection."""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from linkparse.utils.text_cleaner import first_non_empty, sanitize_text

# Only the document head carries meta tags; bound the scan for huge pages.
HEAD_SCAN_LIMIT = 512 * 1024

_META_TAG_RE = re.compile(r"<meta\b([^>]*)>", re.IGNORECASE)
_LINK_TAG_RE = re.compile(r"<link\b([^>]*)>", re.IGNORECASE)
_ATTRIBUTE_RE = re.compile(
    r"([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'=<>`]+))"
)
_TITLE_RE = re.compile(r"<title\b[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class MetaTags:
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    site_name: Optional[str] = None
    type: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    published_time: Optional[str] = None

    @property
    def has_title(self) -> bool:
        return bool(self.title)


def parse_attributes(fragment: str) -> dict[str, str]:
    """Attribute dict for a tag body; keys lower-cased, values entity-decoded."""
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE_RE.finditer(fragment):
        name = match.group(1).lower()
        value = next(
            (group for group in match.groups()[1:] if group is not None), ""
        )
        attributes.setdefault(name, html_lib.unescape(value).strip())
    return attributes


def collect_meta(html: str) -> dict[str, str]:
    """First value for every ``property``/``name``/``itemprop`` key in the page."""
    values: dict[str, str] = {}
    for match in _META_TAG_RE.finditer(html[:HEAD_SCAN_LIMIT]):
        attributes = parse_attributes(match.group(1))
        content = attributes.get("content")
        if not content:
            continue
        for key_attribute in ("property", "name", "itemprop"):
            key = attributes.get(key_attribute)
            if key:
                values.setdefault(key.lower(), content)
    return values


def find_link_hrefs(html: str, rel: str, type_: Optional[str] = None) -> list[str]:
    hrefs: list[str] = []
    wanted_rel = rel.lower()
    for match in _LINK_TAG_RE.finditer(html[:HEAD_SCAN_LIMIT]):
        attributes = parse_attributes(match.group(1))
        rel_values = attributes.get("rel", "").lower().split()
        if wanted_rel not in rel_values:
            continue
        if type_ and attributes.get("type", "").lower() != type_.lower():
            continue
        href = attributes.get("href")
        if href:
            hrefs.append(href)
    return hrefs


def _pick(values: dict[str, str], keys: Iterable[str]) -> Optional[str]:
    return first_non_empty(values.get(key) for key in keys)


def _clean(value: Optional[str]) -> Optional[str]:
    cleaned = sanitize_text(value)
    return cleaned or None


def scrape(html: Optional[str]) -> MetaTags:
    """Title, description, image and friends from Open Graph, Twitter and plain meta tags."""
    if not html:
        return MetaTags()
    values = collect_meta(html)

    title = _pick(values, ("og:title", "twitter:title"))
    if not title:
        title_match = _TITLE_RE.search(html[:HEAD_SCAN_LIMIT])
        if title_match:
            title = title_match.group(1)

    image = _pick(
        values,
        ("og:image", "og:image:secure_url", "og:image:url", "twitter:image", "twitter:image:src"),
    )
    if not image:
        image = first_non_empty(find_link_hrefs(html, "image_src"))

    return MetaTags(
        title=_clean(title),
        description=_clean(
            _pick(values, ("og:description", "twitter:description", "description"))
        ),
        image=image,
        site_name=_clean(_pick(values, ("og:site_name", "application-name"))),
        type=_pick(values, ("og:type",)),
        author=_clean(_pick(values, ("author", "article:author", "twitter:creator"))),
        url=_pick(values, ("og:url",)) or first_non_empty(find_link_hrefs(html, "canonical")),
        published_time=_pick(values, ("article:published_time", "datepublished")),
    )
