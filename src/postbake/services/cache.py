"""In-memory TTL cache of rendered onebox markup, shared across runs."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass
class CachedOnebox:
    """Rendered preview markup for one URL."""

    markup: str
    expires_at: datetime


@dataclass
class OneboxCache:
    """Keeps rendered previews so repeated links don't refetch their page."""

    ttl_seconds: int = 3600
    _store: dict[str, CachedOnebox] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def get(self, url: str) -> str | None:
        """Get the preview for a URL if it exists and hasn't expired."""
        async with self._lock:
            entry = self._store.get(url)
            if entry is None:
                return None
            if datetime.now() > entry.expires_at:
                del self._store[url]
                return None
            return entry.markup

    async def set(self, url: str, markup: str) -> None:
        """Store the preview for a URL."""
        expires_at = datetime.now() + timedelta(seconds=self.ttl_seconds)
        async with self._lock:
            self._store[url] = CachedOnebox(markup=markup, expires_at=expires_at)

    async def invalidate(self, url: str) -> bool:
        """Drop the preview for a URL. Returns True if one was cached."""
        async with self._lock:
            return self._store.pop(url, None) is not None

    async def clear(self) -> int:
        """Clear all previews. Returns number of entries cleared."""
        async with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    @property
    def size(self) -> int:
        """Return the current number of cached previews."""
        return len(self._store)


# Global cache instance
_cache: OneboxCache | None = None


def get_onebox_cache() -> OneboxCache:
    """Get the global onebox cache instance."""
    global _cache
    if _cache is None:
        from postbake.config import get_settings

        settings = get_settings()
        ttl = 0 if settings.debug else settings.onebox_cache_ttl_seconds
        _cache = OneboxCache(ttl_seconds=ttl)
    return _cache


def reset_onebox_cache() -> None:
    """Reset the global onebox cache. Useful for testing."""
    global _cache
    _cache = None
