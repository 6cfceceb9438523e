from flask import Blueprint, current_app, jsonify

from linkparse.extensions import limiter
from linkparse.services.strategies.registry import get_registry
from linkparse.utils.rate_limits import get_rate_limit_store

bp = Blueprint("utility", __name__)


@bp.route("/health")
@limiter.exempt
def health():
    """Strategy count plus the backends the service is wired to."""
    registry = get_registry()
    return jsonify(
        {
            "status": "ok",
            "strategies": len(registry),
            "strategy_names": registry.names,
            "cache_backend": current_app.config.get("CACHE_TYPE"),
            "rate_limit_backend": get_rate_limit_store().__class__.__name__,
            "route_limit_storage": current_app.config.get("RATELIMIT_STORAGE_URI"),
        }
    )


@bp.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight liveness probe."""
    return "ok", 200
