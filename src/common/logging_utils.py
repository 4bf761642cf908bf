"""Logging helpers shared by the CLI and the upgrade engine.

Structured debug traces are emitted through the standard ``logging`` module
with an ``extra=`` payload built by :func:`extra_context`; nothing here writes
to stdout.
"""
from __future__ import annotations

import logging
import os
import sys
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from constants import Constants

_HANDLER_NAME = "ngupgrade-console"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the console handler on the root logger.

    Safe to call more than once; the handler is only added the first time.

    Args:
        level: Explicit level name. Falls back to the NGUPGRADE_LOG_LEVEL
            environment variable, then INFO.
    """
    root = logging.getLogger()
    if not any(getattr(h, "name", None) == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)

    level_name = str(level or os.environ.get(Constants.ENV_LOG_LEVEL, "INFO")).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from this logger would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping for structured log records.

    Keys that collide with LogRecord attributes are prefixed with ``ctx_`` so
    that logging never raises on them. ``None`` values are dropped.
    """
    reserved = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)))
    reserved.update({"message", "asctime"})
    payload: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        payload[f"ctx_{key}" if key in reserved else key] = value
    return payload


def safe_url(url: str) -> str:
    """Strip credentials and query strings from a URL before it is logged."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid-url>"
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds; still running timers report time so far."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 2)
