"""Abstract base class for chunk persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pdfquiz.models.chunk import Chunk


# Concrete implementations:
#   SQLiteChunkRepository -- aiosqlite, embeddings stored as JSON
# Located in: pdfquiz/providers/persistence/
class IChunkRepository(ABC):
    """Contract for storing a document's chunks and their embeddings."""

    @abstractmethod
    async def add_chunks(self, chunks: list[Chunk]) -> None:
        """Insert *chunks* in one transaction."""

    @abstractmethod
    async def list_by_document(self, document_id: str) -> list[Chunk]:
        """Return the document's chunks ordered by ``sequence``."""

    @abstractmethod
    async def set_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        """Store embeddings keyed by chunk id.  Returns rows updated."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every chunk of the document.  Returns rows deleted."""

    @abstractmethod
    async def count(self, document_id: str) -> int:
        """Return how many chunks the document has."""
