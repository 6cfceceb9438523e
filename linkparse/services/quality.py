"""Content quality gate.

Pure functions over already-fetched markup and extracted text. Nothing here
performs I/O, and input the detectors cannot cope with degrades to a
low-confidence ``SERVE`` rather than raising.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

MIN_CONTENT_LENGTH = int(os.getenv("QUALITY_MIN_CONTENT_LENGTH", "300"))
NO_CONTENT_LENGTH = 50
CONSENT_MAX_LENGTH = 600
CONSENT_MIN_KEYWORDS = 2
PAYWALL_CONTENT_THRESHOLD = 500
PAYWALL_SCORE_THRESHOLD = 0.6
LOGIN_SCORE_THRESHOLD = 0.5
# Interstitial phrases ("access denied", "page not found") only mean something
# when they are most of what the page says.
INTERSTITIAL_MAX_TEXT = int(os.getenv("QUALITY_INTERSTITIAL_MAX_TEXT", "1500"))
MAX_REPLACEMENT_CHAR_RATIO = 0.05
CONFIDENCE_FLOOR = float(os.getenv("QUALITY_CONFIDENCE_FLOOR", "0.4"))
MALFORMED_INPUT_CONFIDENCE = 0.3


class Issue:
    NO_CONTENT = "NO_CONTENT"
    CONSENT_WALL = "CONSENT_WALL"
    PAYWALL = "PAYWALL"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    CAPTCHA_DETECTED = "CAPTCHA_DETECTED"
    JAVASCRIPT_REQUIRED = "JAVASCRIPT_REQUIRED"
    BOT_BLOCKED = "BOT_BLOCKED"
    ERROR_PAGE = "ERROR_PAGE"
    CONTENT_TOO_SHORT = "CONTENT_TOO_SHORT"
    ENCODING_ISSUES = "ENCODING_ISSUES"


class Recommendation:
    SERVE = "SERVE"
    WEBVIEW = "WEBVIEW"


ISSUE_PENALTIES = {
    Issue.NO_CONTENT: 0.9,
    Issue.CONSENT_WALL: 0.8,
    Issue.CAPTCHA_DETECTED: 0.8,
    Issue.PAYWALL: 0.6,
    Issue.LOGIN_REQUIRED: 0.6,
    Issue.JAVASCRIPT_REQUIRED: 0.7,
    Issue.BOT_BLOCKED: 0.7,
    Issue.ERROR_PAGE: 0.9,
    Issue.CONTENT_TOO_SHORT: 0.3,
    Issue.ENCODING_ISSUES: 0.4,
}

HARD_ISSUES = frozenset(
    {
        Issue.NO_CONTENT,
        Issue.CAPTCHA_DETECTED,
        Issue.JAVASCRIPT_REQUIRED,
        Issue.BOT_BLOCKED,
        Issue.ERROR_PAGE,
        Issue.ENCODING_ISSUES,
    }
)

CONSENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "en": (
        "cookie",
        "cookies",
        "consent",
        "privacy policy",
        "accept all",
        "we use cookies",
        "gdpr",
        "manage preferences",
        "cookie settings",
        "by continuing",
        "agree to our",
        "accept cookies",
        "reject all",
        "necessary cookies",
        "functional cookies",
        "analytics cookies",
        "personalization",
        "we value your privacy",
        "cookie notice",
    ),
    "tr": (
        "\u00e7erez",
        "\u00e7erezler",
        "gizlilik politikas\u0131",
        "kabul et",
        "kabul ediyorum",
        "kvkk",
        "ki\u015fisel veri",
        "\u00e7erez politikas\u0131",
        "\u00e7erez ayarlar\u0131",
        "devam ederek",
        "t\u00fcm\u00fcn\u00fc kabul",
        "t\u00fcm\u00fcn\u00fc reddet",
        "tercihler",
    ),
    "de": (
        "datenschutz",
        "akzeptieren",
        "cookies akzeptieren",
        "einwilligung",
        "datenschutzerkl\u00e4rung",
        "alle akzeptieren",
        "notwendige cookies",
        "einstellungen",
    ),
    "fr": (
        "confidentialit\u00e9",
        "accepter",
        "politique de confidentialit\u00e9",
        "consentement",
        "accepter tout",
        "param\u00e8tres des cookies",
        "nous utilisons des cookies",
    ),
    "es": (
        "privacidad",
        "aceptar",
        "pol\u00edtica de privacidad",
        "aceptar todas",
        "configuraci\u00f3n de cookies",
        "consentimiento",
    ),
}

ALL_CONSENT_KEYWORDS: tuple[str, ...] = tuple(
    dict.fromkeys(keyword for group in CONSENT_KEYWORDS.values() for keyword in group)
)

PAYWALL_KEYWORDS: tuple[str, ...] = (
    "subscribe to continue",
    "subscriber-only",
    "premium content",
    "members only",
    "member-only",
    "exclusive content",
    "unlock this article",
    "sign up to read",
    "create a free account",
    "already a subscriber",
    "subscription required",
    "paid subscribers",
    "support quality journalism",
    "become a member",
    "join to unlock",
    "this content is for",
    "metered paywall",
    "free articles remaining",
    "you have read",
    "register to continue",
    "sign in to read",
    "abone ol",
    "abonelik gerekli",
    "premium i\u00e7erik",
    "sadece \u00fcyelere",
    "\u00fcye giri\u015fi",
    "giri\u015f yap\u0131n",
    "\u00fccretsiz kay\u0131t",
    "premium-inhalt",
    "nur f\u00fcr abonnenten",
    "jetzt abonnieren",
    "r\u00e9serv\u00e9 aux abonn\u00e9s",
    "contenu premium",
    "abonnez-vous",
)

PAYWALL_MARKUP_HINTS = ("paywall", "premium-content", "subscriber-only", "metered")
PAYWALL_MARKUP_STRUCTURES = (
    'class="paywall"',
    'id="paywall"',
    "data-paywall",
    "data-metered",
)

LOGIN_KEYWORDS: tuple[str, ...] = (
    "sign in",
    "log in",
    "login",
    "sign up",
    "register",
    "create account",
    "authentication required",
    "please log in",
    "session expired",
    "unauthorized",
    "access denied",
    "forbidden",
    "giri\u015f yap",
    "kay\u0131t ol",
    "oturum a\u00e7",
    "hesap olu\u015ftur",
    "anmelden",
    "registrieren",
    "einloggen",
    "se connecter",
    "cr\u00e9er un compte",
    "inscription",
)

LOGIN_FORM_MARKERS = ("login-form", "signin-form", "auth-form", "login-modal")
OAUTH_MARKERS = ("oauth", "social-login", "google-sign-in", "facebook-login")

_CAPTCHA_RE = re.compile(r"recaptcha|hcaptcha|captcha|verify you are human|are you a robot", re.I)
_JS_REQUIRED_RE = re.compile(
    r"javascript is required|please enable javascript|this page requires javascript", re.I
)
_BOT_BLOCKED_RE = re.compile(r"access denied|\bblocked\b|\bforbidden\b|rate limit exceeded", re.I)
_ERROR_PAGE_RE = re.compile(
    r"404 not found|page not found|error occurred|something went wrong", re.I
)
_SUBSCRIBE_CTA_RE = re.compile(r"\bsubscribe\b|\bsubscription\b|\bbecome a member\b", re.I)
_SENTENCE_END = (".", "!", "?", '"', "'", ")", "\u201d", "\u2019", ":")

_LOGIN_URL_PATTERNS = (
    re.compile(r"/(?:login|log-in|signin|sign-in|auth|authenticate|sso)(?:[/?#.]|$)", re.I),
    re.compile(r"accounts\.google\.", re.I),
    re.compile(r"login\.microsoft", re.I),
    re.compile(r"facebook\.com/login", re.I),
    re.compile(r"github\.com/login", re.I),
)


@dataclass
class QualityAssessment:
    is_valid: bool
    confidence: float
    issues: list[str] = field(default_factory=list)
    detected_walls: dict[str, bool] = field(
        default_factory=lambda: {
            "consent": False,
            "paywall": False,
            "login": False,
            "captcha": False,
        }
    )
    recommendation: str = Recommendation.SERVE

    @property
    def has_wall(self) -> bool:
        return any(
            self.detected_walls.get(name) for name in ("consent", "paywall", "login")
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "confidence": self.confidence,
            "issues": list(self.issues),
            "detectedWalls": dict(self.detected_walls),
            "recommendation": self.recommendation,
        }


def count_keywords(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def paywall_score(lower_text: str, lower_html: str, text_length: int) -> float:
    matches = count_keywords(lower_text, PAYWALL_KEYWORDS)
    score = min(matches * 0.15, 0.6)
    if text_length < PAYWALL_CONTENT_THRESHOLD and matches > 0:
        score += 0.3
    if any(hint in lower_html for hint in PAYWALL_MARKUP_HINTS):
        score += 0.2
    if any(marker in lower_html for marker in PAYWALL_MARKUP_STRUCTURES):
        score += 0.3
    if looks_truncated_before_cta(lower_text):
        score += 0.3
    return min(score, 1.0)


def looks_truncated_before_cta(text: str) -> bool:
    """Visible text stops mid-sentence right next to a subscribe call-to-action."""
    stripped = text.strip()
    if not stripped:
        return False
    tail = stripped[-300:]
    if not _SUBSCRIBE_CTA_RE.search(tail):
        return False
    body = _SUBSCRIBE_CTA_RE.split(tail, maxsplit=1)[0].rstrip()
    if not body:
        return False
    return not body.endswith(_SENTENCE_END)


def login_score(lower_text: str, lower_html: str) -> float:
    matches = count_keywords(lower_text, LOGIN_KEYWORDS)
    score = min(matches * 0.1, 0.4)
    if 'type="password"' in lower_html or "type='password'" in lower_html:
        score += 0.3
    if any(marker in lower_html for marker in LOGIN_FORM_MARKERS):
        score += 0.2
    if any(marker in lower_html for marker in OAUTH_MARKERS):
        score += 0.1
    return min(score, 1.0)


def _interstitial_issue(text: str, html: str) -> Optional[str]:
    if _CAPTCHA_RE.search(text) or _CAPTCHA_RE.search(html):
        return Issue.CAPTCHA_DETECTED
    if _JS_REQUIRED_RE.search(text):
        return Issue.JAVASCRIPT_REQUIRED
    if _BOT_BLOCKED_RE.search(text):
        return Issue.BOT_BLOCKED
    if _ERROR_PAGE_RE.search(text):
        return Issue.ERROR_PAGE
    return None


def compute_confidence(text_length: int, issues: Iterable[str]) -> float:
    confidence = 1.0
    if text_length < 500:
        confidence -= 0.2
    elif text_length < 1000:
        confidence -= 0.1
    for issue in issues:
        confidence -= ISSUE_PENALTIES.get(issue, 0.0)
    return max(0.0, min(confidence, 1.0))


def _recommend(issues: list[str], walls: dict[str, bool], confidence: float) -> str:
    if any(issue in HARD_ISSUES for issue in issues):
        return Recommendation.WEBVIEW
    if walls["consent"] or walls["paywall"] or walls["login"]:
        return Recommendation.WEBVIEW
    if confidence < CONFIDENCE_FLOOR:
        return Recommendation.WEBVIEW
    return Recommendation.SERVE


def _coerce(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else str(value)


def assess(
    html: Optional[str],
    text: Optional[str],
    *,
    min_content_length: int = MIN_CONTENT_LENGTH,
    check_consent: bool = True,
    check_paywall: bool = True,
) -> QualityAssessment:
    """Classify ``text`` (extracted from ``html``) and score its trustworthiness."""
    try:
        return _assess(
            _coerce(html),
            _coerce(text),
            min_content_length=min_content_length,
            check_consent=check_consent,
            check_paywall=check_paywall,
        )
    except Exception as exc:
        logger.warning("quality.assess_failed", status="degraded", error=str(exc))
        return QualityAssessment(
            is_valid=False,
            confidence=MALFORMED_INPUT_CONFIDENCE,
            recommendation=Recommendation.SERVE,
        )


def _assess(
    html: str,
    text: str,
    *,
    min_content_length: int,
    check_consent: bool,
    check_paywall: bool,
) -> QualityAssessment:
    text_length = len(text)
    lower_text = text.lower()
    lower_html = html.lower()
    walls = {"consent": False, "paywall": False, "login": False, "captcha": False}
    issues: list[str] = []

    if text_length < NO_CONTENT_LENGTH:
        assessment = QualityAssessment(
            is_valid=False,
            confidence=0.0,
            issues=[Issue.NO_CONTENT],
            detected_walls=walls,
            recommendation=Recommendation.WEBVIEW,
        )
        logger.debug("quality.assessed", status="no_content", chars=text_length)
        return assessment

    if check_consent and text_length < CONSENT_MAX_LENGTH:
        if count_keywords(lower_text, ALL_CONSENT_KEYWORDS) >= CONSENT_MIN_KEYWORDS:
            walls["consent"] = True
            issues.append(Issue.CONSENT_WALL)

    if check_paywall and paywall_score(lower_text, lower_html, text_length) > PAYWALL_SCORE_THRESHOLD:
        walls["paywall"] = True
        issues.append(Issue.PAYWALL)

    if login_score(lower_text, lower_html) > LOGIN_SCORE_THRESHOLD:
        walls["login"] = True
        issues.append(Issue.LOGIN_REQUIRED)

    if text_length < INTERSTITIAL_MAX_TEXT:
        interstitial = _interstitial_issue(text, html)
        if interstitial:
            if interstitial == Issue.CAPTCHA_DETECTED:
                walls["captcha"] = True
            issues.append(interstitial)

    if text_length < min_content_length and not issues:
        issues.append(Issue.CONTENT_TOO_SHORT)

    if text.count("\ufffd") / text_length > MAX_REPLACEMENT_CHAR_RATIO:
        issues.append(Issue.ENCODING_ISSUES)

    confidence = compute_confidence(text_length, issues)
    recommendation = _recommend(issues, walls, confidence)
    logger.debug(
        "quality.assessed",
        status=recommendation,
        chars=text_length,
        issues=issues,
        confidence=confidence,
    )
    return QualityAssessment(
        is_valid=not issues,
        confidence=confidence,
        issues=issues,
        detected_walls=walls,
        recommendation=recommendation,
    )


MEDIUM_PAYWALL_INDICATORS = (
    "member-only story",
    "become a member",
    "metered-paywall",
    "meteredcontent",
    "locked-content",
    "hi.postcontent",
    "read more from",
    "open in app",
)

SUBSTACK_PAYWALL_INDICATORS = (
    "paywall",
    "members-only",
    "subscription-required",
    "subscribe to continue",
    "paid subscribers",
    "this post is for paid subscribers",
    "upgrade to paid",
)
SUBSTACK_SHORT_TEXT = 300
SUBSTACK_TRUNCATED_TEXT = 1500


def detect_medium_paywall(html: str, text_length: int) -> bool:
    matches = count_keywords(html.lower(), MEDIUM_PAYWALL_INDICATORS)
    return matches >= 2 or (text_length < 500 and matches >= 1)


def detect_substack_paywall(html: str, text_length: int) -> bool:
    """Members-only marker with a truncated body, or an almost empty Substack page."""
    lowered = html.lower()
    matches = count_keywords(lowered, SUBSTACK_PAYWALL_INDICATORS)
    if matches and text_length < SUBSTACK_TRUNCATED_TEXT:
        return True
    return text_length < SUBSTACK_SHORT_TEXT and "substack" in lowered


def is_login_redirect(url: str, final_url: Optional[str]) -> bool:
    """True when a redirect landed on a known auth endpoint the original URL was not."""
    if not final_url or url == final_url:
        return False
    return any(
        pattern.search(final_url) and not pattern.search(url)
        for pattern in _LOGIN_URL_PATTERNS
    )
