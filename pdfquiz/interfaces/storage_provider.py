"""Abstract base class for object storage providers.

The upload stage writes the raw PDF through this contract and the extract
stage reads it back.  Keys are opaque strings chosen by the pipeline
(``documents/{document_id}.pdf``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   LocalFileStorageProvider -- files under Settings.storage_dir
# Located in: pdfquiz/providers/storage/
class IStorageProvider(ABC):
    """Contract for binary object storage."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store *data* under *key*, replacing any existing object.

        Returns
        -------
        str
            A URL addressing the stored object.

        Raises
        ------
        pdfquiz.utils.errors.StorageError
            If the write fails.
        """

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the bytes stored under *key*.

        Raises
        ------
        pdfquiz.utils.errors.StorageObjectNotFoundError
            If no object exists under *key*.
        pdfquiz.utils.errors.StorageError
            If the read fails for any other reason.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if an object is stored under *key*."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object under *key*.  No-op when absent."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier used in logs and errors."""
