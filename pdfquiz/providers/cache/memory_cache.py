"""In-memory cache provider using cachetools.TTLCache.

Holds chat answers for a single process.  Swap in a shared backend behind
:class:`ICacheProvider` for multi-worker deployments.
"""

from __future__ import annotations

from typing import Any

import structlog
from cachetools import TTLCache

from pdfquiz.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry is
        evicted.
    ttl:
        Time-to-live in seconds applied to every entry.  ``TTLCache`` has a
        single TTL, so the per-call ``ttl`` argument of :meth:`set` is
        accepted for interface compatibility only.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 3600) -> None:
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=max_size, ttl=ttl)

    async def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        logger.debug("cache_hit" if value is not None else "cache_miss", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._cache[key] = value

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._cache
