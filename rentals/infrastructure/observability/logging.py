"""
Structured logging for the rental marketplace client.

JSON lines on stdout by default; a coloured console renderer when running
locally with `json_logs=False`. Values bound with `bind_request_context`
are merged into every entry logged while handling that request.
"""

import logging
import sys
import uuid

import structlog
from structlog.stdlib import LoggerFactory

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "psycopg")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON; otherwise human-readable console output
    """
    renderer = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(method: str, path: str) -> str:
    """Start a fresh per-request log context and return its request id."""
    request_id = uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
    return request_id


def log_request(status_code: int, duration_ms: float, user_id: str = None):
    """Log the outcome of the request bound by `bind_request_context`."""
    logger = get_logger("http")

    log_data = {"status_code": status_code, "duration_ms": duration_ms}
    if user_id:
        log_data["user_id"] = user_id

    if status_code >= 500:
        logger.error("HTTP request failed", **log_data)
    elif status_code >= 400:
        logger.warning("HTTP request rejected", **log_data)
    else:
        logger.info("HTTP request completed", **log_data)


def log_readiness_check(check: str, ok: bool, latency_ms: float = None, error: str = None):
    """Log one readiness probe result."""
    logger = get_logger("health")

    log_data = {"check": check, "ok": ok}
    if latency_ms is not None:
        log_data["latency_ms"] = latency_ms
    if error:
        log_data["error"] = error

    if ok:
        logger.debug("Readiness check passed", **log_data)
    else:
        logger.warning("Readiness check failed", **log_data)
