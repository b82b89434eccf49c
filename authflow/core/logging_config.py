"""
Logging setup for the auth flows.

structlog is routed through stdlib logging (ProcessorFormatter), rendering
JSON in production and plain console lines elsewhere. Flow logs carry
credentials in transit, so every record passes redact_secrets() before it
is rendered, and callers log emails and pubkeys only through email_domain()
and truncate_pubkey().
"""

import logging
import re
from typing import Any, Dict, Optional

import structlog

from authflow.core.config import settings

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

SECRET_KEYS = frozenset(
    {"password", "nsec", "id_token", "token", "proof", "authorization", "credential", "credentials"}
)

REDACTED = "[redacted]"

_NSEC_PATTERN = re.compile(r"nsec1[02-9ac-hj-np-z]+")


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor: blank secret-bearing keys and any nsec embedded in a string value."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "nsec1" in value:
            event_dict[key] = _NSEC_PATTERN.sub(f"nsec1{REDACTED}", value)
    return event_dict


def resolve_log_level(environment: Optional[str] = None, log_level: Optional[str] = None) -> str:
    """
    Explicit level if valid, otherwise the environment's default.

    Args:
        environment: Defaults to settings.environment
        log_level: Defaults to settings.log_level
    """
    environment = environment or settings.environment
    level = (settings.log_level if log_level is None else log_level) or ""
    if level.upper() in LEVELS:
        return level.upper()
    return DEFAULT_LEVELS.get(environment, "INFO")


def configure_logging(environment: Optional[str] = None, log_level: Optional[str] = None) -> None:
    """
    Install the structlog pipeline on the root logger.

    Call once at startup; calling again replaces the previous handler.
    """
    environment = environment or settings.environment

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if environment == "production":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(resolve_log_level(environment, log_level))

    # Request lines would repeat what the linking client already logs
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def truncate_pubkey(pubkey: Optional[str]) -> Optional[str]:
    """Shorten a hex pubkey to 8...4 characters for log output."""
    if not pubkey:
        return pubkey
    if len(pubkey) <= 16:
        return pubkey
    return f"{pubkey[:8]}...{pubkey[-4:]}"


def email_domain(email: Optional[str]) -> Optional[str]:
    """Only the domain part of an email is ever logged."""
    if not email:
        return None
    parts = email.split("@")
    return parts[1] if len(parts) > 1 else "unknown"
