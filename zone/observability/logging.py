"""
Structured Logging with Structlog.

Every entry carries the service identity and whatever request context is
bound, and override codes are masked before rendering so a code can never
be read back out of the log stream.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from zone.config import settings

# Event keys that may hold a one-time code.
SECRET_KEYS = frozenset({"code", "otp", "code_hash"})


def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("version", settings.api_version)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging() -> None:
    """
    Route structlog through the stdlib root logger on stdout.

    LOG_FORMAT=json (the default) renders one JSON object per line, e.g.
    ``{"event": "heartbeat_ingested", "level": "info", "domain": "a.com",
    "service": "zone-api", "request_id": "...", "timestamp": "..."}``;
    LOG_FORMAT=console renders coloured key=value lines for local work.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service,
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


# with log_context(request_id=...): binds for the block, restores on exit.
log_context = structlog.contextvars.bound_contextvars
