"""Abstract base class for text-embedding service providers.

The embedding stage turns chunk text into vectors through this contract;
the question generator and chat service embed queries with it.  Every
vector returned by one provider instance has the same length.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- text-embedding-3-small (requires API key)
# Located in: pdfquiz/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a single text.

        Raises
        ------
        pdfquiz.utils.errors.ProviderError
            If the embedding API call fails or times out.
        """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Return embedding vectors positionally matching *texts*."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the length of every vector this provider produces.

        ``1536`` for ``text-embedding-3-small``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier used in logs and errors."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and usable."""
