import json
import os
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from linkparse.config import FetchLimits, RateLimitConfig
from linkparse.services.exceptions import FetchFailed, UpstreamAPIError
from linkparse.services.quality import is_login_redirect
from linkparse.services.robots import RobotsPolicy
from linkparse.utils.deadline import clamp_timeout, remaining_seconds
from linkparse.utils.rate_limits import RateLimitStore, get_rate_limit_store
from linkparse.utils.urls import ALLOWED_URL_SCHEMES, is_private_host

logger = structlog.get_logger(__name__)

# Honest, stable identity for every outbound request.
USER_AGENT = os.getenv("FETCH_USER_AGENT", "Mozilla/5.0 (compatible; ReadabilityBot/1.0)")
# Only for social platforms that refuse the bot identity outright.
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_JSON = "application/json,text/javascript;q=0.9,*/*;q=0.5"
ACCEPT_LANGUAGE = os.getenv("FETCH_ACCEPT_LANGUAGE", "en-US,en;q=0.9")
CONNECT_RETRIES = int(os.getenv("FETCH_CONNECT_RETRIES", "2"))
STREAM_CHUNK_BYTES = 64 * 1024
REPLACEMENT_CHAR_THRESHOLD = float(os.getenv("FETCH_REPLACEMENT_CHAR_THRESHOLD", "0.05"))

CHARSET_ALIASES = {
    "iso-8859-9": "windows-1254",
    "iso-8859-1": "windows-1252",
    "latin1": "windows-1252",
    "latin-1": "windows-1252",
    "ascii": "utf-8",
    "us-ascii": "utf-8",
}

_HEADER_CHARSET_RE = re.compile(r"charset=[\"']?([^\"';\s]+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(r"<meta[^>]+charset=[\"']?([^\"'>\s/]+)", re.IGNORECASE)


class FetchErrorCode:
    ROBOTS_BLOCKED = "ROBOTS_BLOCKED"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    SIZE_LIMIT = "SIZE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_URL = "INVALID_URL"
    PRIVATE_IP = "PRIVATE_IP"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    REDIRECT_LOOP = "REDIRECT_LOOP"
    HTTP_ERROR = "HTTP_ERROR"
    ENCODING = "ENCODING"


@dataclass(frozen=True)
class FetchOptions:
    timeout: Optional[float] = None
    max_bytes: Optional[int] = None
    check_robots: bool = True
    follow_redirects: bool = True
    user_agent: Optional[str] = None
    accept: Optional[str] = None


@dataclass(frozen=True)
class FetchError:
    code: str
    message: str


@dataclass
class FetchResult:
    success: bool
    url: str
    html: Optional[str] = None
    error: Optional[FetchError] = None
    redirect_chain: list[str] = field(default_factory=list)
    status_code: Optional[int] = None
    charset: Optional[str] = None
    content_type: Optional[str] = None
    robots_checked: bool = False
    login_redirect: bool = False
    elapsed_ms: int = 0

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None


def _retry_adapter() -> HTTPAdapter:
    # Connection-level retries only; status handling and redirects stay with the fetcher.
    retry = Retry(
        total=CONNECT_RETRIES,
        connect=CONNECT_RETRIES,
        read=0,
        status=0,
        redirect=0,
        backoff_factor=0.3,
        allowed_methods=("GET", "HEAD"),
        raise_on_redirect=False,
        raise_on_status=False,
    )
    return HTTPAdapter(max_retries=retry, pool_connections=16, pool_maxsize=32)


def build_session() -> requests.Session:
    session = requests.Session()
    adapter = _retry_adapter()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _build_headers(user_agent: Optional[str], accept: Optional[str]) -> dict[str, str]:
    return {
        "User-Agent": user_agent or USER_AGENT,
        "Accept": accept or ACCEPT_HTML,
        "Accept-Language": ACCEPT_LANGUAGE,
        "Accept-Encoding": "gzip, deflate",
    }


def normalise_charset(charset: str) -> str:
    lowered = charset.strip().strip("\"'").lower()
    return CHARSET_ALIASES.get(lowered, lowered)


def charset_from_header(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    match = _HEADER_CHARSET_RE.search(content_type)
    return match.group(1).lower() if match else None


def charset_from_html(html: str) -> Optional[str]:
    match = _META_CHARSET_RE.search(html[:4096])
    return match.group(1).lower() if match else None


def _replacement_ratio(text: str) -> float:
    if not text:
        return 0.0
    return text.count("\ufffd") / len(text)


def decode_body(body: bytes, header_charset: Optional[str]) -> tuple[str, str, bool]:
    """Decode ``body`` and report ``(text, charset, ok)``.

    The header charset wins; without one the document's own ``<meta charset>``
    is consulted when a UTF-8 decode looks damaged.
    """
    charset = normalise_charset(header_charset or "utf-8")
    try:
        text = body.decode(charset, errors="replace")
    except LookupError:
        charset = "utf-8"
        text = body.decode(charset, errors="replace")
    ok = _replacement_ratio(text) <= REPLACEMENT_CHAR_THRESHOLD

    if not ok and not header_charset:
        meta_charset = charset_from_html(text)
        if meta_charset and normalise_charset(meta_charset) != "utf-8":
            candidate_charset = normalise_charset(meta_charset)
            try:
                candidate = body.decode(candidate_charset, errors="replace")
            except LookupError:
                return text, charset, ok
            return (
                candidate,
                candidate_charset,
                _replacement_ratio(candidate) <= REPLACEMENT_CHAR_THRESHOLD,
            )
    return text, charset, ok


class UnifiedFetcher:
    """Outbound HTTP with robots compliance, rate limits, byte caps and SSRF guards."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        rate_limits: Optional[RateLimitStore] = None,
        robots: Optional[RobotsPolicy] = None,
        limits: Optional[FetchLimits] = None,
        rate_config: Optional[RateLimitConfig] = None,
    ) -> None:
        self.session = session or build_session()
        self.limits = limits or FetchLimits.from_env()
        self.rate_config = rate_config or RateLimitConfig.from_env()
        self.rate_limits = rate_limits if rate_limits is not None else get_rate_limit_store()
        self.robots = robots or RobotsPolicy(
            self.session, limits=self.limits, user_agent=USER_AGENT
        )

    def _failure(
        self,
        code: str,
        message: str,
        url: str,
        started: float,
        *,
        redirect_chain: Optional[list[str]] = None,
        status_code: Optional[int] = None,
        robots_checked: bool = False,
    ) -> FetchResult:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.warning(
            "fetch.failed",
            url=url,
            status="failed",
            code=code,
            error=message,
            status_code=status_code,
            elapsed_ms=elapsed_ms,
        )
        return FetchResult(
            success=False,
            url=url,
            error=FetchError(code, message),
            redirect_chain=list(redirect_chain or []),
            status_code=status_code,
            robots_checked=robots_checked,
            elapsed_ms=elapsed_ms,
        )

    def _check_target(self, url: str) -> Optional[FetchError]:
        try:
            parsed = urlparse(url)
            hostname = parsed.hostname
        except ValueError:
            return FetchError(FetchErrorCode.INVALID_URL, "Invalid URL format.")
        if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES or not hostname:
            return FetchError(
                FetchErrorCode.INVALID_URL, "Invalid protocol. Only HTTP(S) allowed."
            )
        if is_private_host(hostname):
            return FetchError(
                FetchErrorCode.PRIVATE_IP, "Private IP addresses are not allowed."
            )
        return None

    def _check_rate_limits(self, client_identity: str, domain: str) -> Optional[str]:
        config = self.rate_config
        allowed, retry_after = self.rate_limits.hit(
            f"client:{client_identity}",
            config.per_client_limit,
            config.per_client_window_seconds,
        )
        if not allowed:
            return f"Client rate limit exceeded. Retry after {int(retry_after) + 1}s."
        allowed, retry_after = self.rate_limits.hit(
            f"domain:{domain}",
            config.per_domain_limit,
            config.per_domain_window_seconds,
        )
        if not allowed:
            return f"Domain rate limit exceeded. Retry after {int(retry_after) + 1}s."
        return None

    def fetch(
        self,
        url: str,
        options: Optional[FetchOptions] = None,
        client_identity: Optional[str] = None,
    ) -> FetchResult:
        options = options or FetchOptions()
        started = time.perf_counter()
        timeout = options.timeout or self.limits.timeout_seconds
        max_bytes = options.max_bytes or self.limits.max_html_bytes
        # Wall-clock budget for the whole fetch, redirects and body included.
        expires_at = started + timeout

        target_error = self._check_target(url)
        if target_error:
            return self._failure(target_error.code, target_error.message, url, started)

        domain = (urlparse(url).hostname or "").lower()
        if client_identity:
            limited = self._check_rate_limits(client_identity, domain)
            if limited:
                return self._failure(FetchErrorCode.RATE_LIMITED, limited, url, started)

        robots_checked = False
        if options.check_robots:
            robots_checked = True
            if not self.robots.is_allowed(url):
                return self._failure(
                    FetchErrorCode.ROBOTS_BLOCKED,
                    "Blocked by robots.txt",
                    url,
                    started,
                    robots_checked=True,
                )

        headers = _build_headers(options.user_agent, options.accept)
        redirect_chain: list[str] = []
        visited: set[str] = set()
        current_url = url

        for _hop in range(self.limits.max_redirects + 1):
            if current_url in visited:
                return self._failure(
                    FetchErrorCode.REDIRECT_LOOP,
                    "Redirect loop detected",
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )
            visited.add(current_url)

            if options.check_robots and redirect_chain and not self.robots.is_allowed(current_url):
                return self._failure(
                    FetchErrorCode.ROBOTS_BLOCKED,
                    "Redirect target blocked by robots.txt",
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=True,
                )

            hop_error = self._check_target(current_url)
            if hop_error:
                return self._failure(
                    hop_error.code,
                    hop_error.message,
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )

            request_timeout = min(clamp_timeout(timeout), expires_at - time.perf_counter())
            if request_timeout <= 0:
                return self._failure(
                    FetchErrorCode.TIMEOUT,
                    "Request deadline exceeded before the request was sent",
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )

            try:
                response = self.session.get(
                    current_url,
                    headers=headers,
                    timeout=request_timeout,
                    allow_redirects=False,
                    stream=True,
                )
            except requests.Timeout:
                return self._failure(
                    FetchErrorCode.TIMEOUT,
                    f"Request timed out after {request_timeout:.1f}s",
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )
            except requests.RequestException as exc:
                return self._failure(
                    FetchErrorCode.NETWORK_ERROR,
                    str(exc) or exc.__class__.__name__,
                    current_url,
                    started,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )

            try:
                status_code = response.status_code
                if 300 <= status_code < 400 and options.follow_redirects:
                    location = response.headers.get("Location")
                    if not location:
                        return self._failure(
                            FetchErrorCode.HTTP_ERROR,
                            "Redirect without location header",
                            current_url,
                            started,
                            redirect_chain=redirect_chain,
                            status_code=status_code,
                            robots_checked=robots_checked,
                        )
                    redirect_chain.append(current_url)
                    current_url = urljoin(current_url, location)
                    continue

                return self._read_response(
                    response,
                    original_url=url,
                    final_url=current_url,
                    max_bytes=max_bytes,
                    started=started,
                    expires_at=expires_at,
                    redirect_chain=redirect_chain,
                    robots_checked=robots_checked,
                )
            finally:
                response.close()

        return self._failure(
            FetchErrorCode.TOO_MANY_REDIRECTS,
            f"Exceeded {self.limits.max_redirects} redirects",
            current_url,
            started,
            redirect_chain=redirect_chain,
            robots_checked=robots_checked,
        )

    def _read_response(
        self,
        response: requests.Response,
        *,
        original_url: str,
        final_url: str,
        max_bytes: int,
        started: float,
        expires_at: float,
        redirect_chain: list[str],
        robots_checked: bool,
    ) -> FetchResult:
        status_code = response.status_code
        failure_kwargs: dict[str, Any] = {
            "redirect_chain": redirect_chain,
            "status_code": status_code,
            "robots_checked": robots_checked,
        }
        if status_code in (404, 410):
            return self._failure(
                FetchErrorCode.NOT_FOUND, f"HTTP {status_code}", final_url, started,
                **failure_kwargs,
            )
        if status_code == 429:
            return self._failure(
                FetchErrorCode.RATE_LIMITED,
                "Upstream rate limited the request (HTTP 429)",
                final_url,
                started,
                **failure_kwargs,
            )
        if status_code >= 300:
            return self._failure(
                FetchErrorCode.HTTP_ERROR, f"HTTP {status_code}", final_url, started,
                **failure_kwargs,
            )

        content_length = response.headers.get("Content-Length")
        if content_length and content_length.strip().isdigit():
            if int(content_length) > max_bytes:
                return self._failure(
                    FetchErrorCode.SIZE_LIMIT,
                    f"Content too large: {content_length} bytes (max: {max_bytes})",
                    final_url,
                    started,
                    **failure_kwargs,
                )

        chunks: list[bytes] = []
        total = 0
        try:
            for chunk in response.iter_content(chunk_size=STREAM_CHUNK_BYTES):
                if not chunk:
                    continue
                total += len(chunk)
                if total > max_bytes:
                    return self._failure(
                        FetchErrorCode.SIZE_LIMIT,
                        f"Content exceeded {max_bytes} bytes during download",
                        final_url,
                        started,
                        **failure_kwargs,
                    )
                remaining = remaining_seconds()
                if time.perf_counter() >= expires_at or (remaining is not None and remaining <= 0):
                    return self._failure(
                        FetchErrorCode.TIMEOUT,
                        "Request deadline exceeded while reading the body",
                        final_url,
                        started,
                        **failure_kwargs,
                    )
                chunks.append(chunk)
        except requests.Timeout:
            return self._failure(
                FetchErrorCode.TIMEOUT, "Timed out reading the response body", final_url,
                started, **failure_kwargs,
            )
        except requests.RequestException as exc:
            return self._failure(
                FetchErrorCode.NETWORK_ERROR, str(exc) or exc.__class__.__name__,
                final_url, started, **failure_kwargs,
            )

        content_type = response.headers.get("Content-Type")
        text, charset, decoded_ok = decode_body(b"".join(chunks), charset_from_header(content_type))
        if not decoded_ok:
            return self._failure(
                FetchErrorCode.ENCODING,
                f"Too many undecodable characters using {charset}",
                final_url,
                started,
                **failure_kwargs,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        login_redirect = is_login_redirect(original_url, final_url)
        logger.info(
            "fetch.success",
            url=final_url,
            status="success",
            status_code=status_code,
            bytes=total,
            redirects=len(redirect_chain),
            login_redirect=login_redirect,
            elapsed_ms=elapsed_ms,
        )
        return FetchResult(
            success=True,
            url=final_url,
            html=text,
            redirect_chain=list(redirect_chain),
            status_code=status_code,
            charset=charset,
            content_type=content_type,
            robots_checked=robots_checked,
            login_redirect=login_redirect,
            elapsed_ms=elapsed_ms,
        )

    def fetch_html(
        self,
        url: str,
        *,
        user_agent: Optional[str] = None,
        check_robots: bool = True,
        client_identity: Optional[str] = None,
    ) -> FetchResult:
        return self.fetch(
            url,
            FetchOptions(check_robots=check_robots, user_agent=user_agent),
            client_identity=client_identity,
        )

    def get_json(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        client_identity: Optional[str] = None,
    ) -> Any:
        """GET a public JSON API, raising instead of returning a failed result."""
        result = self.fetch(
            url,
            FetchOptions(
                timeout=timeout,
                check_robots=False,
                user_agent=user_agent,
                accept=ACCEPT_JSON,
            ),
            client_identity=client_identity,
        )
        if not result.success or result.html is None:
            error = result.error or FetchError(FetchErrorCode.NETWORK_ERROR, "Empty response")
            raise FetchFailed(error.code, error.message, url=url)
        try:
            return json.loads(result.html)
        except ValueError as exc:
            raise UpstreamAPIError(f"Invalid JSON from {url}: {exc}", url=url) from exc


_fetcher_lock = threading.Lock()
_default_fetcher: Optional[UnifiedFetcher] = None


def get_default_fetcher() -> UnifiedFetcher:
    global _default_fetcher
    if _default_fetcher is not None:
        return _default_fetcher
    with _fetcher_lock:
        if _default_fetcher is None:
            _default_fetcher = UnifiedFetcher()
    return _default_fetcher


def set_default_fetcher(fetcher: Optional[UnifiedFetcher]) -> None:
    global _default_fetcher
    with _fetcher_lock:
        _default_fetcher = fetcher
