"""Observability helpers: structured logging and CloudWatch Embedded Metrics.

Call `init_observability` once, early, before the FastAPI app is created.
"""
from __future__ import annotations

import logging
import os

import structlog
from aws_embedded_metrics import metric_scope
from aws_embedded_metrics.config import get_config

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]

SERVICE_NAME = "ResumeOptimizer"

# Event keys whose values must never reach a log line
SECRET_KEYS = {"authorization", "credential", "render_credential", "api_key", "x-api-key", "token"}


def _redact_secrets(logger, method_name, event_dict):
    for key in event_dict.keys() & SECRET_KEYS:
        event_dict[key] = "***"
    return event_dict


def _setup_logging() -> None:
    """Configure structlog for structured logging (JSON or console)."""

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(log_level)

    # Silence noisy loggers; httpx logs full request URLs at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _setup_metrics() -> None:
    config = get_config()
    config.service_name = config.service_name or SERVICE_NAME


def init_observability() -> None:
    """Setup logging & metrics. Call once at process start."""

    _setup_logging()
    _setup_metrics()

    structlog.get_logger(__name__).info("Observability initialized")
