"""Helpers to normalise titles, excerpts and extracted article text."""

import html
import math
import re
import unicodedata
from typing import Iterable, Optional

WORDS_PER_MINUTE = 200
EXCERPT_LENGTH = 200

_CONTROL_CHARS = {
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\ufeff",  # zero-width no-break space / BOM
}

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(
    r"<(script|style|noscript|template)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_WHITESPACE_RE = re.compile(r"\s+")
# A site name suffix such as " | Site" or " - Site". Requires spaces around
# the separator so hyphenated words ("COVID-19") survive.
_TITLE_SUFFIX_RE = re.compile(r"\s+[|\-\u2013\u2014\u00b7]\s+[^|\-\u2013\u2014\u00b7]*$")
_SLUG_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_SLUG_SEPARATORS_RE = re.compile(r"[-_+.]+")


def _strip_control_chars(text: str) -> str:
    for char in _CONTROL_CHARS:
        text = text.replace(char, "")
    return text


def clean_text(raw_text: Optional[str]) -> str:
    """Normalise extracted article text, keeping paragraph breaks."""
    if not raw_text:
        return ""

    text = html.unescape(raw_text)
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\u00a0", " ")
    text = _strip_control_chars(text)
    text = re.sub(r"[\t\f]+", " ", text)
    text = re.sub(r" {2,}", " ", text)

    lines: list[str] = []
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            if lines and lines[-1] == "":
                continue
            lines.append("")
            continue
        lines.append(stripped)

    return "\n".join(lines).strip()


def strip_tags(markup: Optional[str]) -> str:
    """Collapse markup into a single line of plain text without building a DOM."""
    if not markup:
        return ""
    text = _BLOCK_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_text(text: Optional[str]) -> str:
    """Light clean-up for titles and excerpts: drop tags, decode entities, squash spaces."""
    if not text:
        return ""
    return _strip_control_chars(strip_tags(text))


def estimate_reading_time(
    text: Optional[str], words_per_minute: int = WORDS_PER_MINUTE
) -> int:
    """Minutes needed to read ``text``; zero only when there is no text at all."""
    if not text:
        return 0
    words = text.split()
    if not words:
        return 0
    return max(1, math.ceil(len(words) / words_per_minute))


def make_excerpt(text: Optional[str], length: int = EXCERPT_LENGTH) -> Optional[str]:
    if not text:
        return None
    flattened = _WHITESPACE_RE.sub(" ", text).strip()
    if not flattened:
        return None
    if len(flattened) <= length:
        return flattened
    return flattened[:length].rstrip() + "..."


def sanitize_title(title: Optional[str]) -> Optional[str]:
    """Drop a trailing site-name suffix, keeping the original if nothing would remain."""
    if not title:
        return None
    cleaned_source = sanitize_text(title)
    if not cleaned_source:
        return None
    cleaned = _TITLE_SUFFIX_RE.sub("", cleaned_source).strip()
    return cleaned or cleaned_source


def humanize_slug(segment: str) -> str:
    """``quarterly-report-2024.pdf`` -> ``Quarterly Report 2024``."""
    segment = _SLUG_EXTENSION_RE.sub("", segment)
    words = [word for word in _SLUG_SEPARATORS_RE.split(segment) if word]
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def first_non_empty(values: Iterable[Optional[str]]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None
