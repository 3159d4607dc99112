"""structlog setup shared by every habitsync module.

The sync core logs structured events (``log.info("sync-cycle-done",
pending=3)``) through :func:`get_logger`; plain modules keep using
``logging.getLogger(__name__)``.  Both end up in the same stdlib handlers
because structlog is configured on top of :mod:`logging`.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

_configured = False


def configure_logging(level: str = "INFO", *, json: bool = False) -> None:
    """Configure stdlib logging and structlog once per process."""

    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(levelname)s - %(name)s - %(message)s")
    logging.getLogger().setLevel(log_level)

    if _configured:
        return

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(**bindings: Any):  # noqa: D401 – factory helper
    """Return a bound logger with optional key/value bindings."""

    return structlog.get_logger("habitsync").bind(**bindings)


def redact_key(session_key: str | None) -> str | None:
    """Shorten a session key to its pairing-code prefix for log output."""

    if not session_key:
        return None
    return session_key[:8].upper() + "…"


__all__ = ["configure_logging", "get_logger", "redact_key"]
