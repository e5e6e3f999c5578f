# FILE: chatrouter/routing/cache.py
"""
Resolved-command cache for the Chat Router.

Maps a normalized message (+ the chat's auto-context) to the command it
resolved to, so repeated phrasings skip the rule library and classifier.

Keys are case-insensitive and whitespace-collapsed; the stored command keeps
its casing. Entries expire after the configured TTL and the store never
holds more than max_size entries (oldest evicted first).
"""
from __future__ import annotations
import re
import time
import logging
import threading
from collections import OrderedDict
from typing import Optional, Dict, Any, Callable

from chatrouter.config import CacheConfig
from .schemas import CacheEntry, RouteContext

logger = logging.getLogger(__name__)


# =============================================================================
# KEYS
# =============================================================================

def normalize_message(text: str) -> str:
    """Lowercase, collapse whitespace, strip."""
    return re.sub(r"\s+", " ", text.lower()).strip()


def build_cache_key(text: str, context: Optional[RouteContext] = None) -> str:
    """
    Cache key for a message in a given context.

    The same words mean different commands in different projects, so the
    active repo (or, failing that, company) is part of the key.
    """
    key = normalize_message(text)
    if context is not None:
        if context.auto_repo:
            key += f"|repo:{context.auto_repo}"
        elif context.auto_company:
            key += f"|co:{context.auto_company}"
    return key


# =============================================================================
# ROUTE CACHE
# =============================================================================

class RouteCache:
    """
    Bounded TTL cache of message -> command.

    Safe to share between concurrently handled chats.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def max_size(self) -> int:
        return self.config.max_size

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        ttl = self.config.ttl_seconds
        return ttl > 0 and now - entry.created_at >= ttl

    def get(self, key: str) -> Optional[str]:
        """Return the cached command, or None if absent or expired."""
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.command

    def set(self, key: str, command: str) -> None:
        """Store a command, evicting the oldest entries to stay within max_size."""
        if not self.enabled or self.config.max_size <= 0:
            return
        with self._lock:
            # Re-setting a key refreshes its age and position
            self._entries.pop(key, None)
            while self._entries and len(self._entries) >= self.config.max_size:
                oldest, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Cache evicted: {oldest}")
            self._entries[key] = CacheEntry(key=key, command=command, created_at=self._clock())

    def clean_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Cache cleaned {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = 0
        logger.info("Route cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "enabled": self.enabled,
                "size": len(self._entries),
                "max_size": self.config.max_size,
                "ttl_seconds": self.config.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
