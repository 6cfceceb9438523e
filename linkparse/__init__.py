import os
from typing import Optional

import structlog
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from limits.storage import storage_from_string
from werkzeug.middleware.proxy_fix import ProxyFix

from linkparse.config import AppSettings, get_settings
from linkparse.extensions import cache, limiter
from linkparse.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def _select_cache_config(env_name: str, default_timeout: int) -> dict[str, str | int]:
    cache_type_env = (os.getenv("CACHE_TYPE") or "").strip()

    # Explicit env takes precedence, otherwise default by environment.
    if cache_type_env:
        selected_cache_type = cache_type_env
    elif env_name == "production":
        selected_cache_type = "RedisCache"
    else:
        selected_cache_type = "SimpleCache"

    cache_config: dict[str, str | int] = {
        "CACHE_TYPE": selected_cache_type,
        "CACHE_DEFAULT_TIMEOUT": default_timeout,
    }

    lowered = selected_cache_type.lower()
    if lowered in {"redis", "rediscache"}:
        redis_url = (os.getenv("CACHE_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()
        if redis_url:
            cache_config["CACHE_TYPE"] = "RedisCache"
            cache_config["CACHE_REDIS_URL"] = redis_url
        else:
            if env_name == "production":
                logger.error(
                    "cache.redis_url_missing",
                    status="fallback",
                    cache_type="SimpleCache",
                )
            cache_config["CACHE_TYPE"] = "SimpleCache"
    elif lowered == "nullcache":
        cache_config["CACHE_TYPE"] = "NullCache"
    elif lowered != "simplecache":
        logger.error(
            "cache.unsupported_type",
            cache_type=selected_cache_type,
            status="fallback",
        )
        cache_config["CACHE_TYPE"] = "SimpleCache"
    return cache_config


def init_extensions(app: Flask, default_timeout: int) -> None:
    """Configure the response cache and the route limiter."""
    env_name = (app.config.get("ENV") or "").strip().lower()
    cache_config = _select_cache_config(env_name, default_timeout)
    cache.init_app(app, config=cache_config)
    app.config.update(cache_config)
    logger.info("cache.configured", backend=app.config["CACHE_TYPE"])

    storage_uri = (app.config.get("RATELIMIT_STORAGE_URI") or "").strip()
    if not storage_uri:
        if app.config["CACHE_TYPE"] == "RedisCache" and app.config.get("CACHE_REDIS_URL"):
            storage_uri = app.config["CACHE_REDIS_URL"]
        else:
            storage_uri = "memory://"

    try:
        storage_from_string(storage_uri)
    except Exception as exc:  # pragma: no cover - fail-safe for boot issues
        logger.error(
            "ratelimit.storage_unavailable",
            storage_uri=storage_uri,
            error=str(exc),
            status="fallback",
        )
        storage_uri = "memory://"

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    limiter.init_app(app)
    logger.info("ratelimit.configured", storage_uri=storage_uri)


def create_app(settings: Optional[AppSettings] = None) -> Flask:
    """Create and configure an instance of the Flask application."""
    load_dotenv()
    setup_logging()

    settings = settings or get_settings()
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        ENV=settings.ENV,
        AUTH_ENABLED=settings.AUTH_ENABLED,
        PARSE_CACHE_TTL_SECONDS=settings.PARSE_CACHE_TTL_SECONDS,
        PARSE_DEADLINE_SECONDS=settings.PARSE_DEADLINE_SECONDS,
        PARSE_ROUTE_LIMIT=settings.PARSE_ROUTE_LIMIT,
        RATELIMIT_STORAGE_URI=settings.RATELIMIT_STORAGE_URI,
        LINKPARSE_SETTINGS=settings,
    )
    logger.info(
        "app.starting",
        env=settings.ENV,
        auth_enabled=settings.AUTH_ENABLED,
        cache_type=os.getenv("CACHE_TYPE"),
        ratelimit_storage_uri=settings.RATELIMIT_STORAGE_URI or None,
    )

    if settings.AUTH_ENABLED and not (settings.api_tokens or settings.JWT_SECRET):
        raise RuntimeError(
            "AUTH_ENABLED is set but neither API_TOKENS nor JWT_SECRET is configured."
        )

    if settings.TRUSTED_PROXY_HOPS > 0:
        hops = settings.TRUSTED_PROXY_HOPS
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    init_extensions(app, settings.PARSE_CACHE_TTL_SECONDS)

    allowed_origins = settings.allowed_origins
    if settings.ENV != "production":
        for origin in ("http://localhost:5000", "http://127.0.0.1:5000"):
            if origin not in allowed_origins:
                allowed_origins.append(origin)
    app.config["ALLOWED_ORIGINS"] = allowed_origins
    CORS(app, origins=allowed_origins)

    from .routes import parse, utility

    if "parse" not in app.blueprints:
        app.register_blueprint(parse.bp)
    if "utility" not in app.blueprints:
        app.register_blueprint(utility.bp)

    @app.errorhandler(429)
    def too_many_requests(e):
        return (
            jsonify(
                {
                    "success": False,
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": str(getattr(e, "description", e)),
                        "fallback": "retry",
                    },
                }
            ),
            429,
        )

    return app
