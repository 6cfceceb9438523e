"""URL validation and normalisation shared by the service and the strategies."""

from __future__ import annotations

import ipaddress
from typing import Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode, urljoin, urlparse, urlunparse

from linkparse.services.exceptions import InvalidURLError
from linkparse.utils.text_cleaner import humanize_slug

ALLOWED_URL_SCHEMES = {"http", "https"}

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "gclsrc",
        "dclid",
        "mc_cid",
        "mc_eid",
        "_ga",
        "_gl",
        "ref",
        "ref_src",
        "ref_url",
        "source",
        "via",
        "at_medium",
        "at_campaign",
        "spm",
        "share_token",
        "si",
        "feature",
        # Credentials occasionally pasted along with a link.
        "token",
        "access_token",
        "auth",
        "key",
        "password",
    }
)

FAVICON_SERVICE_URL = "https://www.google.com/s2/favicons?domain={domain}&sz=128"

_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "metadata.google.internal"}
_SHARED_ADDRESS_SPACE = ipaddress.ip_network("100.64.0.0/10")


def validate_url(url: object) -> str:
    """Return ``url`` stripped if it is an absolute http(s) URL, else raise."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError("Missing required field: url")
    candidate = url.strip()
    try:
        parsed = urlparse(candidate)
        hostname = parsed.hostname
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL format: {exc}", url=candidate) from exc
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        raise InvalidURLError("Invalid protocol. Only HTTP(S) allowed.", url=candidate)
    if not parsed.netloc or not hostname:
        raise InvalidURLError("Invalid URL format: missing host", url=candidate)
    return candidate


def sanitize_url(url: str) -> str:
    """Drop tracking and credential-like query parameters, keeping everything else."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.query:
        return url
    kept = [
        (name, value)
        for name, value in parse_qsl(parsed.query, keep_blank_values=True)
        if name.lower() not in TRACKING_PARAMS
    ]
    return urlunparse(parsed._replace(query=urlencode(kept, doseq=True)))


def hostname_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_private_host(hostname: Optional[str]) -> bool:
    """Loopback, private, link-local, reserved and metadata addresses are off limits."""
    if not hostname:
        return True
    host = hostname.strip("[]").lower()
    if host in _BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if address.version == 4 and address in _SHARED_ADDRESS_SPACE:
        return True
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def title_from_url(url: str) -> str:
    """Human title from the last path segment, falling back to the host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Untitled"
    segments = [segment for segment in parsed.path.split("/") if segment]
    host = (parsed.hostname or "").lower()
    if not segments:
        return host or "Untitled"
    title = humanize_slug(unquote(segments[-1]))
    return title or host or "Untitled"


def absolutize(href: Optional[str], base_url: Optional[str]) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if not href:
        return None
    if not base_url:
        return href
    try:
        return urljoin(base_url, href)
    except ValueError:
        return href


def favicon_url(domain: str) -> str:
    return FAVICON_SERVICE_URL.format(domain=quote(domain, safe=".-"))
