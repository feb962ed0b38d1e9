"""Abstract base class for out-of-band push notification providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# Concrete implementations:
#   ExpoPushProvider -- Expo push HTTP API, device tokens in SQLite
# Located in: pdfquiz/providers/push/
class IPushProvider(ABC):
    """Contract for notifying a user outside any live connection."""

    @abstractmethod
    async def send(
        self,
        owner_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        """Send a notification to every device registered for *owner_id*.

        Returns
        -------
        int
            Number of devices the provider accepted the message for.
        """

    @abstractmethod
    async def register_token(self, owner_id: str, token: str, platform: str = "") -> None:
        """Register (or refresh) a device token for *owner_id*."""

    @abstractmethod
    async def remove_token(self, owner_id: str, token: str) -> bool:
        """Remove a device token.  Returns ``True`` if one was removed."""
