"""structlog configuration.

Learn: Every module does `logger = structlog.get_logger()` and logs dotted
event names with keyword context. This module only wires the processor
chain: request ids from contextvars, ISO timestamps, secret redaction, and
a console or JSON renderer depending on the environment.
"""

import logging
from typing import Any

import structlog

from sessionguard.config import Settings

_SECRET_KEYS = ("password", "token", "secret", "verifier", "authorization")


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask values whose key looks like it carries a credential."""
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if any(marker in key.lower() for marker in _SECRET_KEYS):
            event_dict[key] = "***"
    return event_dict


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else logging.INFO
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.is_development
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
