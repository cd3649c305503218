"""Logging configuration helpers for the filing tracker."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Client libraries log every request at INFO; keep them quiet unless debugging.
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "apscheduler.executors.default")


def resolve_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Translate a user provided level into a numeric log level.

    Unknown names fall back to ``default`` rather than failing start-up.
    """

    if level is None:
        return default
    if isinstance(level, int):
        return level
    candidate = logging.getLevelName(level.strip().upper())
    return candidate if isinstance(candidate, int) else default


def configure_logging(level: str | int | None = None, *, force: bool = False) -> int:
    """Configure the root logger for console output and return the chosen level.

    The level defaults to ``FILING_TRACKER_LOG_LEVEL`` (INFO when unset).
    ``force`` mirrors :func:`logging.basicConfig` and replaces handlers that are
    already installed.
    """

    if level is None:
        level = os.getenv("FILING_TRACKER_LOG_LEVEL")
    resolved = resolve_level(level)

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        root_logger.setLevel(resolved)
    else:
        logging.basicConfig(level=resolved, format=LOG_FORMAT, force=force)

    library_level = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    return resolved


__all__ = ["configure_logging", "resolve_level"]
