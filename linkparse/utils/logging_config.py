"""structlog wiring: JSON lines by default, console rendering with ``LOG_FORMAT=plain``.

Every event carries the same core fields so parse invocations can be traced
end to end: the correlation id, the URL, the strategy that handled it, a
status and the elapsed time.
"""

import logging
import logging.handlers
import os
import sys
from typing import Any, Dict, Optional, TextIO

import structlog

from linkparse.utils.urls import sanitize_url

CORE_FIELDS = ("correlation_id", "url", "strategy", "status", "elapsed_ms")
# Bound context copied onto an event unless the call site already set the key.
CONTEXT_FIELDS = (*CORE_FIELDS, "client", "path", "status_code")
URL_FIELDS = ("url", "final_url", "json_url", "endpoint")
PROBE_PATHS = ("/healthz", "/health")
NOISY_LOGGERS = {
    "werkzeug": logging.INFO,
    "urllib3": logging.WARNING,
    "readability": logging.WARNING,
    "charset_normalizer": logging.WARNING,
}

_configured = False


def add_core_fields(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    context = structlog.contextvars.get_contextvars()
    for key in CONTEXT_FIELDS:
        if key not in event_dict and key in context:
            event_dict[key] = context[key]
    event_dict.setdefault("event", event_dict.get("message") or "log.event")
    for key in CORE_FIELDS:
        event_dict.setdefault(key, None)
    return event_dict


def redact_urls(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Strip tracking and credential query parameters from logged URLs."""
    for key in URL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and "?" in value:
            event_dict[key] = sanitize_url(value)
    return event_dict


def drop_probe_traffic(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    path = event_dict.get("path")
    if isinstance(path, str) and path.startswith(PROBE_PATHS):
        raise structlog.DropEvent
    return event_dict


def shared_processors(log_format: str) -> list:
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_core_fields,
        redact_urls,
        drop_probe_traffic,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "plain":
        processors.append(structlog.processors.UnicodeDecoder())
    return processors


def _dev_log_file() -> str:
    log_dir = os.path.join(os.path.dirname(__file__), "..", "..", "instance")
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, "linkparse-dev.log")


def setup_logging(force: bool = False, stream: Optional[TextIO] = None) -> None:
    """Route stdlib and structlog records through one formatter.

    ``stream`` defaults to stdout; the debug CLI passes stderr so its result
    JSON stays alone on stdout. Repeat calls are no-ops unless ``force``.
    """
    global _configured
    if _configured and not force:
        return

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
    if log_format not in {"json", "plain"}:
        log_format = "json"

    processors = shared_processors(log_format)
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if log_format == "plain"
        else structlog.processors.JSONRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer, foreign_pre_chain=processors, fmt="%(message)s"
    )
    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    if os.getenv("ENV") == "development":
        file_handler = logging.handlers.RotatingFileHandler(
            _dev_log_file(), maxBytes=5 * 1024 * 1024, backupCount=3
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name, logger_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(logger_level)

    _configured = True
