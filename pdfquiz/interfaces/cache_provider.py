"""Abstract base class for cache service providers.

Used to memoise chat answers per (document, question).  Implementations
may use process memory, Redis, or anything else with TTL support.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# Concrete implementations:
#   MemoryCacheProvider -- cachetools.TTLCache
# Located in: pdfquiz/providers/cache/
class ICacheProvider(ABC):
    """Contract for key-value cache services."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value under *key*, or ``None`` if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*.

        Parameters
        ----------
        ttl:
            Time-to-live in seconds.  ``None`` uses the provider default.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  No-op when absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""
