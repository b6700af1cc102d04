"""Logging configuration for HMS Vault.

Every event passes through ``redact_secrets`` before rendering, so key
material, passphrases, tokens and plaintext never reach the log output even
if a call site passes them by mistake.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

from hmsvault.config import get_settings

REDACTED = "[REDACTED]"

# Event keys whose values are secret. ``key`` alone is a transit key *name*
# and stays visible.
SENSITIVE_KEYS = frozenset(
    {
        "plaintext",
        "passphrase",
        "password",
        "secret",
        "token",
        "vault_token",
        "encryption_key",
        "key_hex",
        "key_material",
    }
)


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask sensitive values and raw bytes in an event dict."""
    for name, value in event_dict.items():
        if name.lower() in SENSITIVE_KEYS:
            event_dict[name] = REDACTED
        elif isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[name] = f"<{len(value)} bytes>"
    return event_dict


def setup_logging() -> None:
    """Configure structured logging."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer(colors=True)
                if settings.is_development
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Third-party packages log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Request logs from httpx would include secret paths
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
