"""Abstract base class for document persistence.

Only :class:`~pdfquiz.pipeline.state_machine.DocumentStateMachine` calls
:meth:`IDocumentRepository.update_status`; everything else reads documents
or creates them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pdfquiz.models.document import Document, DocumentStatus


# Concrete implementations:
#   SQLiteDocumentRepository -- aiosqlite
# Located in: pdfquiz/providers/persistence/
class IDocumentRepository(ABC):
    """Contract for storing and loading :class:`Document` rows."""

    @abstractmethod
    async def get(self, document_id: str) -> Document | None:
        """Return the document, or ``None`` if it does not exist."""

    @abstractmethod
    async def get_for_owner(self, document_id: str, owner_id: str) -> Document | None:
        """Return the document only if it exists *and* belongs to *owner_id*."""

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[Document]:
        """Return the owner's documents, newest first."""

    @abstractmethod
    async def save(self, document: Document) -> None:
        """Insert or fully replace *document*."""

    @abstractmethod
    async def update_status(
        self,
        document_id: str,
        expected: DocumentStatus,
        status: DocumentStatus,
        fields: dict[str, Any] | None = None,
    ) -> Document | None:
        """Compare-and-set the status.

        Writes *status* (and any extra *fields*) only if the stored status
        still equals *expected*.

        Returns
        -------
        Document or None
            The updated document, or ``None`` when the stored status no
            longer matched (or the row is gone).
        """

    @abstractmethod
    async def set_storage_key(self, document_id: str, storage_key: str) -> Document | None:
        """Record where the upload was stored."""

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete the document row.  Returns ``True`` if a row was removed."""
