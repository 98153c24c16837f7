import logging
import re

import structlog

from app.core.config import settings

SECRET_KEY_PATTERN = re.compile(r"\b(sk|rk|pk)_(?:test|live)_[0-9a-zA-Z_]+")


def scrub(value):
    """Mask payment provider API keys inside a string."""
    if not isinstance(value, str):
        return value
    return SECRET_KEY_PATTERN.sub(lambda match: f"{match.group(1)}_****", value)


def scrub_secrets(logger, method_name, event_dict):
    """Processor that masks provider keys in every string value of an event."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = scrub(value)
        elif isinstance(value, BaseException):
            event_dict[key] = scrub(str(value))
    return event_dict


def configure_logging():
    """Configure structured logging"""

    # Console renderer for development
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            scrub_secrets,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard logging config
    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    )
