import os
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog
from bs4 import BeautifulSoup
from readability import Document

from linkparse.utils.text_cleaner import clean_text, make_excerpt, sanitize_title
from linkparse.utils.urls import absolutize

logger = structlog.get_logger(__name__)

MIN_ARTICLE_CHARS = int(os.getenv("ARTICLE_MIN_TEXT_CHARS", "200"))
MIN_PARAGRAPH_CHARS = int(os.getenv("ARTICLE_MIN_PARAGRAPH_CHARS", "25"))
ENGINE_ORDER: tuple[str, ...] = ("readability", "density")

BOILERPLATE_TAGS = (
    "script",
    "style",
    "noscript",
    "template",
    "header",
    "footer",
    "nav",
    "aside",
    "form",
    "iframe",
    "svg",
    "button",
)
BLOCK_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre")
CANDIDATE_TAGS = ("article", "main", "section", "div", "td", "body")

_POSITIVE_HINTS = re.compile(
    r"article|body|content|entry|hentry|main|page|post|story|text|blog", re.I
)
_NEGATIVE_HINTS = re.compile(
    r"comment|sidebar|footer|footnote|masthead|menu|related|share|social|"
    r"sponsor|promo|advert|banner|breadcrumb|widget|popup|cookie",
    re.I,
)
# readability-lxml's placeholder when the document has no <title>.
_NO_TITLE = "[no-title]"


@dataclass(frozen=True)
class ArticleResult:
    title: Optional[str]
    content: str
    text_content: str
    excerpt: Optional[str]
    engine: str

    @property
    def length(self) -> int:
        return len(self.text_content)


ExtractorFn = Callable[[str, Optional[str]], Optional[ArticleResult]]


@dataclass(frozen=True)
class ExtractorStrategy:
    name: str
    extractor: ExtractorFn

    def run(self, html: str, base_url: Optional[str]) -> Optional[ArticleResult]:
        return self.extractor(html, base_url)


class ExtractorRegistry:
    def __init__(self, strategies: Iterable[ExtractorStrategy]):
        self._strategies: dict[str, ExtractorStrategy] = {
            strategy.name: strategy for strategy in strategies
        }

    def get(self, name: str) -> Optional[ExtractorStrategy]:
        return self._strategies.get(name)

    def ordered(self, names: Iterable[str]) -> list[ExtractorStrategy]:
        seen: set[str] = set()
        ordered: list[ExtractorStrategy] = []
        for name in names:
            if name in seen:
                continue
            strategy = self.get(name)
            if strategy is None:
                continue
            ordered.append(strategy)
            seen.add(name)
        return ordered

    def all(self) -> list[ExtractorStrategy]:
        return list(self._strategies.values())


def _initialise_soup(html: str) -> Optional[BeautifulSoup]:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        try:
            return BeautifulSoup(html, "html.parser")
        except Exception:
            return None


def _collect_paragraphs(container) -> list[str]:
    paragraphs: list[str] = []
    seen: set[str] = set()
    for node in container.find_all(BLOCK_TAGS):
        # Nested blocks (a <p> inside an <li>) are reported by the innermost node.
        if node.find(BLOCK_TAGS):
            continue
        text = node.get_text(" ", strip=True)
        if not text or text in seen:
            continue
        if node.name == "p" and len(text) < MIN_PARAGRAPH_CHARS:
            continue
        paragraphs.append(text)
        seen.add(text)
    return paragraphs


def _text_of(container) -> str:
    paragraphs = _collect_paragraphs(container)
    if paragraphs:
        return clean_text("\n\n".join(paragraphs))
    return clean_text(container.get_text("\n", strip=True))


def _absolutize_links(container, base_url: Optional[str]) -> None:
    if not base_url:
        return
    for node in container.find_all(["a", "img", "source", "video", "audio"]):
        for attribute in ("href", "src", "poster"):
            value = node.get(attribute)
            if isinstance(value, str) and value.strip():
                node[attribute] = absolutize(value, base_url)


def _extract_with_readability(html: str, base_url: Optional[str]) -> Optional[ArticleResult]:
    document = Document(html, url=base_url) if base_url else Document(html)
    summary_html = document.summary(html_partial=True) or ""
    soup = _initialise_soup(summary_html)
    if soup is None:
        return None
    _absolutize_links(soup, base_url)
    text = _text_of(soup)
    if not text:
        return None

    title = document.short_title()
    if not title or title.strip() == _NO_TITLE:
        title = None

    body = soup.body or soup
    return ArticleResult(
        title=sanitize_title(title),
        content=body.decode_contents().strip(),
        text_content=text,
        excerpt=make_excerpt(text),
        engine="readability",
    )


def _class_weight(node) -> int:
    weight = 0
    for value in (" ".join(node.get("class") or []), node.get("id") or ""):
        if not value:
            continue
        if _NEGATIVE_HINTS.search(value):
            weight -= 25
        if _POSITIVE_HINTS.search(value):
            weight += 25
    return weight


def _link_density(node) -> float:
    text_length = len(node.get_text(" ", strip=True))
    if not text_length:
        return 1.0
    link_length = sum(len(link.get_text(" ", strip=True)) for link in node.find_all("a"))
    return link_length / text_length


def _extract_with_density(html: str, base_url: Optional[str]) -> Optional[ArticleResult]:
    """Score block containers by paragraph density, readability style."""
    soup = _initialise_soup(html)
    if soup is None:
        return None

    title_node = soup.find("title")
    title = title_node.get_text(" ", strip=True) if title_node else None

    for tag in soup.find_all(BOILERPLATE_TAGS):
        if not tag.decomposed:
            tag.decompose()

    scores: dict[int, float] = {}
    nodes: dict[int, object] = {}
    for paragraph in soup.find_all(["p", "pre", "blockquote"]):
        text = paragraph.get_text(" ", strip=True)
        if len(text) < MIN_PARAGRAPH_CHARS:
            continue
        content_score = 1 + text.count(",") + min(len(text) // 100, 3)
        parent = paragraph.parent
        grandparent = parent.parent if parent is not None else None
        for ancestor, share in ((parent, 1.0), (grandparent, 0.5)):
            if ancestor is None or ancestor.name not in CANDIDATE_TAGS:
                continue
            key = id(ancestor)
            if key not in scores:
                nodes[key] = ancestor
                base = 5 if ancestor.name in ("article", "main") else 0
                scores[key] = base + _class_weight(ancestor)
            scores[key] += content_score * share

    if not scores:
        return None

    best_key = max(
        scores, key=lambda key: scores[key] * (1 - _link_density(nodes[key]))
    )
    best = nodes[best_key]
    _absolutize_links(best, base_url)
    text = _text_of(best)
    if not text:
        return None
    return ArticleResult(
        title=sanitize_title(title),
        content=best.decode_contents().strip(),
        text_content=text,
        excerpt=make_excerpt(text),
        engine="density",
    )


EXTRACTOR_REGISTRY = ExtractorRegistry(
    [
        ExtractorStrategy("readability", _extract_with_readability),
        ExtractorStrategy("density", _extract_with_density),
    ]
)


def extract(html: Optional[str], base_url: Optional[str] = None) -> Optional[ArticleResult]:
    """Main content of ``html``, or ``None`` when nothing clears the density threshold."""
    if not html or not html.strip():
        return None

    for strategy in EXTRACTOR_REGISTRY.ordered(ENGINE_ORDER):
        attempt_started = time.perf_counter()
        try:
            result = strategy.run(html, base_url)
        except Exception as exc:
            logger.warning(
                "article.engine_attempt",
                engine=strategy.name,
                url=base_url,
                status="exception",
                error_type=exc.__class__.__name__,
                elapsed_ms=int((time.perf_counter() - attempt_started) * 1000),
            )
            continue

        elapsed_ms = int((time.perf_counter() - attempt_started) * 1000)
        chars = result.length if result else 0
        if result is not None and chars >= MIN_ARTICLE_CHARS:
            logger.info(
                "article.engine_attempt",
                engine=strategy.name,
                url=base_url,
                status="success",
                chars=chars,
                elapsed_ms=elapsed_ms,
            )
            return result

        logger.info(
            "article.engine_attempt",
            engine=strategy.name,
            url=base_url,
            status="empty" if not chars else "short",
            chars=chars,
            elapsed_ms=elapsed_ms,
        )

    return None
