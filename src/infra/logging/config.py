from __future__ import annotations

import logging
import os
import sys
from typing import Any, Mapping, MutableMapping, cast

import structlog

_configured: bool = False

# Keys whose values never reach a rendered log line
_REDACTED_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "access_token",
        "authorization",
        "api_key",
        "database_url",
        "dsn",
    }
)
_REDACTED = "[REDACTED]"


def _event_as_msg(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    """Copy ``event`` into ``msg``; log shippers index on ``msg``."""
    if "msg" not in event_dict and isinstance(event_dict.get("event"), str):
        event_dict["msg"] = event_dict["event"]
    return event_dict


def _redact(key: str, value: Any) -> Any:
    if key.lower() in _REDACTED_KEYS:
        return _REDACTED
    if isinstance(value, Mapping):
        return {k: _redact(str(k), v) for k, v in cast(Mapping[Any, Any], value).items()}
    if isinstance(value, (list, tuple)):
        return [_redact(key, item) for item in cast(list[Any], value)]
    return value


def _redact_secrets(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    return {key: _redact(key, value) for key, value in event_dict.items()}


def _renderer(log_format: str) -> Any:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def is_configured() -> bool:
    return _configured


def configure_logging(level: str | None = None, *, log_format: str | None = None) -> None:
    """Route structlog through stdlib logging to stdout.

    ``level`` defaults to ``LOG_LEVEL`` (INFO). ``log_format`` defaults to
    ``LOG_FORMAT``: ``json`` (one object per line with ts, level, msg and
    event keys) or ``console`` for local development.
    """
    global _configured

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (log_format or os.getenv("LOG_FORMAT", "json")).lower()

    # force=True rebinds the handler to whatever sys.stdout is now (capsys swaps it)
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            _event_as_msg,
            _redact_secrets,
            structlog.processors.dict_tracebacks,
            _renderer(fmt),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


__all__ = ["configure_logging", "is_configured"]
