"""Abstract base class for bearer-token identity verification.

Tokens are verified once at the HTTP / WebSocket entry boundary; the
pipeline itself only ever sees the resolved ``owner_id``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   HmacIdentityProvider -- stateless HMAC-SHA256 signed tokens
# Located in: pdfquiz/providers/identity/
class IIdentityProvider(ABC):
    """Contract for resolving bearer tokens to owner ids."""

    @abstractmethod
    def verify(self, token: str) -> str:
        """Return the owner id encoded in *token*.

        Raises
        ------
        pdfquiz.utils.errors.AuthenticationError
            If the token is malformed, forged or expired.
        """

    @abstractmethod
    def issue(self, owner_id: str) -> str:
        """Mint a token for *owner_id*."""
