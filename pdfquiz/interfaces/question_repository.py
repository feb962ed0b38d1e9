"""Abstract base class for question persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pdfquiz.models.question import Question


# Concrete implementations:
#   SQLiteQuestionRepository -- aiosqlite
# Located in: pdfquiz/providers/persistence/
class IQuestionRepository(ABC):
    """Contract for storing a document's generated questions."""

    @abstractmethod
    async def replace_for_document(self, document_id: str, questions: list[Question]) -> None:
        """Atomically replace all of the document's questions with *questions*."""

    @abstractmethod
    async def list_by_document(self, document_id: str) -> list[Question]:
        """Return the document's questions in generation order."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every question of the document.  Returns rows deleted."""

    @abstractmethod
    async def count(self, document_id: str) -> int:
        """Return how many questions the document has."""
