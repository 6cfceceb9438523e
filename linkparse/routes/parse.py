from __future__ import annotations

import dataclasses
import hashlib
from typing import Any, Mapping, Optional

import structlog
from flask import Blueprint, current_app, jsonify, request
from flask_limiter.util import get_remote_address

from linkparse.auth import auth_required, current_principal
from linkparse.extensions import cache, limiter
from linkparse.models.parse_result import ErrorCode, Fallback, ParseResult
from linkparse.services.exceptions import InvalidURLError
from linkparse.services.parser import parse_url
from linkparse.utils.correlation import clear_correlation_context, ensure_correlation_id
from linkparse.utils.urls import favicon_url, sanitize_url, validate_url

bp = Blueprint("parse", __name__)
logger = structlog.get_logger(__name__)

CACHE_KEY_PREFIX = "parse:"
# Domains that render client-side; a cached entry titled with the brand alone is stale.
HEALABLE_DOMAINS = ("x.com", "twitter.com", "reddit.com")
GENERIC_TITLES = frozenset({"x.com", "twitter.com", "reddit.com", "x", "twitter", "reddit"})


def cache_key(sanitized_url: str) -> str:
    return CACHE_KEY_PREFIX + hashlib.sha256(sanitized_url.encode("utf-8")).hexdigest()


def needs_healing(cached: Mapping[str, Any]) -> bool:
    domain = str(cached.get("domain") or "").lower()
    title = str(cached.get("title") or "").lower()
    if not any(candidate in domain for candidate in HEALABLE_DOMAINS):
        return False
    return title == domain or title in GENERIC_TITLES


def client_identity(body: Mapping[str, Any]) -> Optional[str]:
    """user_id, then the token subject, then the peer address.

    Forwarded headers only count once ``TRUSTED_PROXY_HOPS`` puts ProxyFix in
    front of the app, which rewrites the peer address from them.
    """
    user_id = body.get("user_id")
    if isinstance(user_id, str) and user_id.strip():
        return user_id.strip()
    principal = current_principal()
    if principal is not None and principal.subject:
        return principal.subject
    return get_remote_address()


def with_cover_fallback(result: ParseResult) -> ParseResult:
    if result.cover_image or not result.domain:
        return result
    return dataclasses.replace(result, cover_image=favicon_url(result.domain))


def _error_response(code: str, message: str, fallback: str, status: int):
    return (
        jsonify(
            {
                "success": False,
                "error": {"code": code, "message": message, "fallback": fallback},
            }
        ),
        status,
    )


@bp.route("/parse", methods=["POST"])
@limiter.limit(lambda: current_app.config.get("PARSE_ROUTE_LIMIT") or "60 per minute")
@auth_required
def parse():
    correlation_id = ensure_correlation_id(request.headers.get("X-Correlation-ID"))
    try:
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            body = {}
        try:
            sanitized = sanitize_url(validate_url(body.get("url")))
        except InvalidURLError as exc:
            logger.info("parse.rejected", status="invalid_url", error=str(exc))
            response = _error_response(ErrorCode.INVALID_URL, str(exc), Fallback.REJECT, 400)
            response[0].headers["X-Correlation-ID"] = correlation_id
            return response

        key = cache_key(sanitized)
        skip_cache = bool(body.get("skip_cache"))
        if not skip_cache:
            cached = cache.get(key)
            if cached and needs_healing(cached):
                logger.info(
                    "parse.cache_healed",
                    url=sanitized,
                    title=cached.get("title"),
                    domain=cached.get("domain"),
                )
                cache.delete(key)
                cached = None
            if cached:
                logger.info("parse.cache_hit", url=sanitized, status="cached")
                response = jsonify({**cached, "success": True, "cached": True})
                response.headers["X-Correlation-ID"] = correlation_id
                return response

        result = parse_url(
            sanitized,
            client_identity=client_identity(body),
            deadline_seconds=current_app.config.get("PARSE_DEADLINE_SECONDS"),
        )
        result = with_cover_fallback(result)
        payload = result.to_dict()
        if result.error is None or result.error.fallback != Fallback.RETRY:
            cache.set(key, payload, timeout=current_app.config.get("PARSE_CACHE_TTL_SECONDS"))

        response = jsonify({**payload, "success": True, "cached": False})
        response.headers["X-Correlation-ID"] = correlation_id
        return response
    except Exception as exc:
        logger.exception("parse.unhandled_error", status="error", error=str(exc))
        response = _error_response(
            ErrorCode.PARSE_FAILED, "Internal error while parsing", Fallback.WEBVIEW, 500
        )
        response[0].headers["X-Correlation-ID"] = correlation_id
        return response
    finally:
        clear_correlation_context()
