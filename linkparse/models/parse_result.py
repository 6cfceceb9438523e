from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


class ContentType:
    ARTICLE = "article"
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    SOCIAL = "social"
    CODE = "code"
    PRODUCT = "product"
    WEBVIEW = "webview"


class FetchMethod:
    API = "api"
    OEMBED = "oembed"
    READABILITY = "readability"
    META_ONLY = "meta-only"
    WEBVIEW = "webview"

    ALL = (API, OEMBED, READABILITY, META_ONLY, WEBVIEW)
    # Results obtained this way never carry renderable body markup.
    BODYLESS = frozenset({META_ONLY, WEBVIEW})


class Fallback:
    WEBVIEW = "webview"
    META_ONLY = "meta-only"
    RETRY = "retry"
    REJECT = "reject"


class ErrorCode:
    PAYWALL = "PAYWALL"
    PROTECTED = "PROTECTED"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    CONSENT_WALL = "CONSENT_WALL"
    TIMEOUT = "TIMEOUT"
    SIZE_LIMIT = "SIZE_LIMIT"
    ENCODING = "ENCODING"
    ROBOTS_BLOCKED = "ROBOTS_BLOCKED"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_FAILED = "PARSE_FAILED"
    # Only used at the HTTP boundary for malformed input.
    INVALID_URL = "INVALID_URL"


DEFAULT_FALLBACKS: dict[str, str] = {
    ErrorCode.PAYWALL: Fallback.WEBVIEW,
    ErrorCode.PROTECTED: Fallback.WEBVIEW,
    ErrorCode.LOGIN_REQUIRED: Fallback.WEBVIEW,
    ErrorCode.CONSENT_WALL: Fallback.WEBVIEW,
    ErrorCode.ROBOTS_BLOCKED: Fallback.WEBVIEW,
    ErrorCode.PARSE_FAILED: Fallback.WEBVIEW,
    ErrorCode.SIZE_LIMIT: Fallback.WEBVIEW,
    ErrorCode.ENCODING: Fallback.WEBVIEW,
    ErrorCode.TIMEOUT: Fallback.RETRY,
    ErrorCode.RATE_LIMITED: Fallback.RETRY,
    ErrorCode.NETWORK_ERROR: Fallback.RETRY,
    ErrorCode.NOT_FOUND: Fallback.REJECT,
    ErrorCode.INVALID_URL: Fallback.REJECT,
}


@dataclass(frozen=True)
class ParseError:
    code: str
    message: str
    fallback: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "fallback": self.fallback}


def make_error(code: str, message: str, fallback: Optional[str] = None) -> ParseError:
    """Build a ``ParseError`` using the recommended recovery action for ``code``."""
    return ParseError(
        code=code,
        message=message,
        fallback=fallback or DEFAULT_FALLBACKS.get(code, Fallback.WEBVIEW),
    )


def _clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return min(max(number, 0.0), 1.0)


@dataclass(frozen=True)
class ParseResult:
    """Normalised description of a parsed URL.

    Instances are values: normalisation happens once in ``__post_init__`` and
    later adjustments go through ``dataclasses.replace``.
    """

    type: str
    title: str
    domain: str
    excerpt: Optional[str] = None
    content_html: Optional[str] = None
    cover_image: Optional[str] = None
    reading_time_minutes: int = 0
    metadata: dict[str, str] = field(default_factory=dict)
    protected: bool = False
    paywalled: bool = False
    fetch_method: str = FetchMethod.WEBVIEW
    confidence: float = 0.3
    error: Optional[ParseError] = None
    final_url: Optional[str] = None
    robots_compliant: Optional[bool] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp_confidence(self.confidence))
        object.__setattr__(
            self, "reading_time_minutes", max(int(self.reading_time_minutes or 0), 0)
        )
        object.__setattr__(
            self,
            "metadata",
            {
                str(key): str(value)
                for key, value in (self.metadata or {}).items()
                if value is not None
            },
        )
        if self.fetch_method in FetchMethod.BODYLESS:
            object.__setattr__(self, "content_html", None)
        if not self.title:
            object.__setattr__(self, "title", self.domain or "Untitled")

    @property
    def is_bodyless(self) -> bool:
        return self.content_html is None

    def to_dict(self) -> dict[str, Any]:
        """Serialise using the wire keys the mobile client expects."""
        return {
            "type": self.type,
            "title": self.title,
            "excerpt": self.excerpt,
            "content_html": self.content_html,
            "cover_image": self.cover_image,
            "reading_time_minutes": self.reading_time_minutes,
            "domain": self.domain,
            "metadata": dict(self.metadata) if self.metadata else None,
            "protected": self.protected,
            "paywalled": self.paywalled,
            "fetchMethod": self.fetch_method,
            "confidence": round(self.confidence, 3),
            "error": self.error.to_dict() if self.error else None,
            "finalUrl": self.final_url,
            "robotsCompliant": self.robots_compliant,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParseResult":
        error_payload = data.get("error")
        error = None
        if isinstance(error_payload, Mapping) and error_payload.get("code"):
            error = make_error(
                str(error_payload["code"]),
                str(error_payload.get("message") or ""),
                error_payload.get("fallback"),
            )
        return cls(
            type=data.get("type") or ContentType.WEBVIEW,
            title=data.get("title") or "",
            domain=data.get("domain") or "",
            excerpt=data.get("excerpt"),
            content_html=data.get("content_html"),
            cover_image=data.get("cover_image"),
            reading_time_minutes=data.get("reading_time_minutes") or 0,
            metadata=dict(data.get("metadata") or {}),
            protected=bool(data.get("protected")),
            paywalled=bool(data.get("paywalled")),
            fetch_method=data.get("fetchMethod") or FetchMethod.WEBVIEW,
            confidence=data.get("confidence", 0.3),
            error=error,
            final_url=data.get("finalUrl"),
            robots_compliant=data.get("robotsCompliant"),
        )
