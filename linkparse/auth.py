"""Bearer token authentication for the parse API."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import jwt
import structlog
from flask import current_app, g, jsonify, request

from linkparse.config import AppSettings, get_settings

TCallable = TypeVar("TCallable", bound=Callable[..., Any])
logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Who is calling: a static API token or a JWT subject."""

    kind: str
    subject: Optional[str] = None


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _match_static_token(token: str, tokens: list[str]) -> bool:
    matched = False
    for candidate in tokens:
        # Compare against every token so timing does not reveal the position.
        if hmac.compare_digest(token.encode("utf-8"), candidate.encode("utf-8")):
            matched = True
    return matched


def verify_token(token: str, settings: Optional[AppSettings] = None) -> Optional[Principal]:
    """Return the principal for ``token`` or ``None`` when it is not accepted."""
    settings = settings or get_settings()
    if _match_static_token(token, settings.api_tokens):
        return Principal(kind="token")
    if not settings.JWT_SECRET:
        return None

    options: dict[str, Any] = {"require": ["sub"]}
    kwargs: dict[str, Any] = {"algorithms": ["HS256"]}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, options=options, **kwargs)
    except jwt.ExpiredSignatureError:
        logger.info("auth.rejected", reason="expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.info("auth.rejected", reason="invalid", error_type=exc.__class__.__name__)
        return None
    return Principal(kind="jwt", subject=str(claims["sub"]))


def current_principal() -> Optional[Principal]:
    return getattr(g, "principal", None)


def auth_required(view: TCallable) -> TCallable:
    """Reject the request with 401 unless auth is disabled or the bearer token checks out."""

    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any):
        g.principal = None
        if not current_app.config.get("AUTH_ENABLED", False):
            return view(*args, **kwargs)

        token = bearer_token()
        principal = verify_token(token) if token else None
        if principal is None:
            logger.info(
                "auth.required_failure",
                path=request.path,
                ip=request.remote_addr,
                token_present=bool(token),
            )
            return (
                jsonify(
                    {
                        "success": False,
                        "error": {
                            "code": "UNAUTHORIZED",
                            "message": "Missing or invalid bearer token",
                            "fallback": "reject",
                        },
                    }
                ),
                401,
            )
        g.principal = principal
        return view(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
