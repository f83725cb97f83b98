"""Logging helpers shared by every module.

Modules keep a module-level ``logger = logging.getLogger(__name__)`` and pass
structured fields through ``extra=extra_context(...)`` so that a formatter or
handler can pick them up without changing the message text.
"""
from __future__ import annotations

import logging
import re
import sys
import time
import urllib.parse
from typing import Any, Dict, Iterable, Optional

from constants import Constants

_SENSITIVE_QUERY_KEYS = {"token", "access_token", "auth", "apikey", "api_key", "key", "password"}
_TOKEN_PATTERN = re.compile(r"(npm_[A-Za-z0-9]{20,}|(?i:bearer)\s+[A-Za-z0-9\-\._~\+/]+=*)")
REDACTED = "[REDACTED]"


def configure_logging(level: str = "INFO", logfile: Optional[str] = None, quiet: bool = False) -> None:
    """Configure the root logger for CLI usage.

    Args:
        level: Logging level name (DEBUG, INFO, ...).
        logfile: Optional path of a file receiving the log output.
        quiet: Suppress console output entirely.
    """
    handlers: list[logging.Handler] = []
    if logfile:
        handlers.append(logging.FileHandler(logfile, encoding="utf-8"))
    if not quiet:
        handlers.append(logging.StreamHandler(sys.stderr))
    if not handlers:
        handlers.append(logging.NullHandler())
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=Constants.LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records, dropping None values."""
    return {k: v for k, v in fields.items() if v is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def redact(text: str) -> str:
    """Mask tokens that look like npm or bearer credentials."""
    if not text:
        return text
    return _TOKEN_PATTERN.sub(REDACTED, text)


def safe_url(url: str) -> str:
    """Return ``url`` with userinfo and credential-like query values masked."""
    if not url:
        return url
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{REDACTED}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = urllib.parse.parse_qsl(query, keep_blank_values=True)
        query = "&".join(
            f"{k}={REDACTED if k.lower() in _SENSITIVE_QUERY_KEYS else v}" for k, v in pairs
        )
    return urllib.parse.urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def log_selection(
    logger: logging.Logger,
    ecosystem: str,
    manifest_path: str,
    lockfile_path: Optional[str],
    rationale: str,
) -> None:
    """Log which manifest/lockfile pair was picked for analysis."""
    logger.info(
        "%s manifest: %s, lockfile: %s (%s)",
        ecosystem,
        manifest_path,
        lockfile_path or "none",
        rationale,
        extra=extra_context(
            event="selection",
            component="loader",
            manifest=manifest_path,
            lockfile=lockfile_path,
            rationale=rationale,
        ),
    )


def warn_multiple_lockfiles(
    logger: logging.Logger,
    ecosystem: str,
    selected: Optional[str],
    alternatives: Iterable[str],
) -> None:
    """Warn that several lockfiles exist and only one is used."""
    ignored = ", ".join(alternatives)
    logger.warning(
        "Multiple %s lockfiles found; using %s and ignoring %s",
        ecosystem,
        selected,
        ignored,
        extra=extra_context(event="multiple_lockfiles", component="loader", selected=selected),
    )


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start: float = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds, measured up to now while the block is still open."""
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
