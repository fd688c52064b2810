"""Structured logging with structlog.

Security: wallet private keys, seed phrases and exchange API secrets are
NEVER logged; any event field with a sensitive name is masked before it
reaches a handler.  JSON output in production, console output for the CLI.

Modules grab ``log = get_logger(__name__)`` at import time.  Until the
process calls ``configure_logging`` explicitly, a default setup driven by
``LOG_LEVEL`` / ``LOG_FORMAT`` is installed on first use; an explicit
call later replaces it.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

_EXPLICIT = False
_DEFAULTED = False
_HANDLERS: list[logging.Handler] = []

# Fields that must NEVER appear in logs
_REDACTED_FIELDS = frozenset({
    "private_key", "secret", "password", "api_key", "api_secret",
    "passphrase", "mnemonic", "seed_phrase", "signature", "encryption_key",
    "x-mbx-apikey",
})
_REDACTED = "***REDACTED***"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _REDACTED if str(k).lower() in _REDACTED_FIELDS else _redact(v)
            for k, v in value.items()
        }
    return value


def _redact_processor(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask sensitive fields, including inside nested dicts (e.g. headers)."""
    for key in list(event_dict.keys()):
        if key.lower() in _REDACTED_FIELDS:
            event_dict[key] = _REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def _install(level: str, fmt: str, log_file: str | None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    for handler in _HANDLERS:
        root.removeHandler(handler)
        handler.close()
    _HANDLERS.clear()
    root.setLevel(log_level)

    _HANDLERS.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLERS.append(logging.FileHandler(str(log_path)))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _redact_processor,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderers: list[structlog.types.Processor]
    if fmt == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    # The renderer lives on the handler formatter, so loggers cached
    # before a reconfiguration pick up the new output format too
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        foreign_pre_chain=shared_processors,
    )
    for handler in _HANDLERS:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    log_file: str | None = None,
) -> None:
    """Configure structured logging for the application.

    The first explicit call wins; later explicit calls are no-ops.
    """
    global _EXPLICIT
    if _EXPLICIT:
        return
    _install(level, fmt, log_file)
    _EXPLICIT = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger."""
    global _DEFAULTED
    if not _EXPLICIT and not _DEFAULTED:
        _install(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            fmt=os.environ.get("LOG_FORMAT", "console"),
            log_file=None,
        )
        _DEFAULTED = True
    return structlog.get_logger(name)
