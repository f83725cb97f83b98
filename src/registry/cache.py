"""TTL cache for registry metadata with optional JSON persistence."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from constants import Constants
from common.logging_utils import extra_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Entries are replaced whole, never mutated."""

    key: str
    payload: T
    fetched_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check if this entry has outlived its TTL."""
        return now - self.fetched_at > self.ttl


class RegistryCache(Generic[T]):
    """TTL cache for registry lookups.

    Eviction is TTL-only: an entry is served until ``now - fetched_at > ttl``
    and is then treated as absent. There is no size pressure.
    """

    def __init__(
        self,
        default_ttl: float = Constants.HTTP_CACHE_TTL_SEC,
        *,
        registry: str = Constants.REGISTRY_URL_NPM,
        path: Optional[str] = None,
        encode: Optional[Callable[[T], Any]] = None,
        decode: Optional[Callable[[Any], T]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds.
            registry: Registry URL the entries belong to; persisted entries
                from another registry are ignored on load.
            path: Optional JSON file used by load()/save().
            encode: Converts a payload into JSON-serializable data for save().
            decode: Inverse of ``encode`` used by load().
            clock: Time source, seconds since the epoch.
        """
        self._default_ttl = float(default_ttl)
        self._registry = registry
        self._path = path
        self._encode = encode or (lambda payload: payload)
        self._decode = decode or (lambda data: data)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._dirty = False
        self.hits = 0
        self.misses = 0

    @property
    def path(self) -> Optional[str]:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[T]:
        """Return the cached payload, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            self._dirty = True
            self.misses += 1
            return None
        self.hits += 1
        return entry.payload

    def set(self, key: str, payload: T, ttl: Optional[float] = None) -> None:
        """Store ``payload`` under ``key``, replacing any previous entry."""
        effective_ttl = float(ttl) if ttl is not None else self._default_ttl
        self._entries[key] = CacheEntry(key=key, payload=payload, fetched_at=self._clock(), ttl=effective_ttl)
        self._dirty = True

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if e.is_expired(now))
        fetched = [e.fetched_at for e in self._entries.values()]
        return {
            "total_entries": len(self._entries),
            "expired_entries": expired,
            "active_entries": len(self._entries) - expired,
            "hits": self.hits,
            "misses": self.misses,
            "default_ttl": self._default_ttl,
            "oldest_entry": min(fetched) if fetched else None,
            "newest_entry": max(fetched) if fetched else None,
        }

    def load(self) -> int:
        """Load unexpired entries for this registry from ``path``.

        Returns:
            Number of entries loaded. A missing or unreadable file loads nothing.
        """
        if not self._path or not os.path.isfile(self._path):
            return 0
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Couldn't load cache file %s: %s", self._path, exc)
            return 0
        if not isinstance(data, dict) or data.get("version") != Constants.CACHE_FORMAT_VERSION:
            logger.info("Cache file %s has an incompatible format; ignoring it.", self._path)
            return 0

        now = self._clock()
        loaded = 0
        for key, raw in (data.get("entries") or {}).items():
            if not isinstance(raw, dict) or raw.get("registry") != self._registry:
                continue
            try:
                entry = CacheEntry(
                    key=key,
                    payload=self._decode(raw["payload"]),
                    fetched_at=float(raw["fetched_at"]),
                    ttl=float(raw.get("ttl", self._default_ttl)),
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Skipping malformed cache entry %s: %s", key, exc)
                continue
            if entry.is_expired(now):
                continue
            self._entries[key] = entry
            loaded += 1
        if loaded:
            logger.info(
                "%d entries loaded from cache %s",
                loaded,
                self._path,
                extra=extra_context(event="cache_load", component="cache", count=loaded),
            )
        return loaded

    def save(self) -> bool:
        """Persist unexpired entries to ``path`` with an atomic replace.

        Returns:
            True when a file was written.
        """
        if not self._path or not self._dirty:
            return False
        now = self._clock()
        entries = {}
        for key, entry in self._entries.items():
            if entry.is_expired(now):
                continue
            entries[key] = {
                "payload": self._encode(entry.payload),
                "fetched_at": entry.fetched_at,
                "ttl": entry.ttl,
                "registry": self._registry,
            }
        document = {
            "version": Constants.CACHE_FORMAT_VERSION,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "entries": entries,
        }
        directory = os.path.dirname(os.path.abspath(self._path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".depcompat-cache-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh)
                os.replace(tmp_path, self._path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Couldn't save cache file %s: %s", self._path, exc)
            return False
        self._dirty = False
        return True
