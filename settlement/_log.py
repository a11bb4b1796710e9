"""
Logging — structlog configuration.

    from settlement._log import configure_logging, get_logger

    configure_logging(level="INFO", json=True)
    log = get_logger("checkout")
    log.info("order_committed", order_id=order.id, total=str(order.total))

Secrets never reach a renderer: any event key that looks like a credential is
masked by `redact_secrets` before output.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

# ═══════════════════════════════════════════════════════════════════════════════
# Redaction
# ═══════════════════════════════════════════════════════════════════════════════

SENSITIVE_KEYS = frozenset({
    "secret",
    "key_secret",
    "salt_key",
    "signature",
    "encryption_key",
    "password",
    "authorization",
})


def mask_secret(value: str | None) -> str:
    """`****` followed by the last four characters."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return "****" + value[-4:]


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = mask_secret(str(event_dict[key]))
    return event_dict


# ═══════════════════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════════════════


def configure_logging(*, level: str = "INFO", json: bool = False) -> None:
    renderer: Any = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> Any:
    return structlog.get_logger().bind(component=component)


__all__ = (
    "SENSITIVE_KEYS",
    "mask_secret",
    "redact_secrets",
    "configure_logging",
    "get_logger",
)
