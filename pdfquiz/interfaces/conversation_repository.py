"""Abstract base class for chat conversation persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pdfquiz.models.conversation import ChatMessage, Conversation


# Concrete implementations:
#   SQLiteConversationRepository -- aiosqlite
# Located in: pdfquiz/providers/persistence/
class IConversationRepository(ABC):
    """Contract for storing conversations about a document and their turns."""

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        """Persist a new conversation and return it."""

    @abstractmethod
    async def get_for_owner(self, conversation_id: str, owner_id: str) -> Conversation | None:
        """Return the conversation only if *owner_id* owns it."""

    @abstractmethod
    async def list_for_owner(
        self, owner_id: str, document_id: str | None = None
    ) -> list[Conversation]:
        """Return the owner's conversations, most recently active first.

        When *document_id* is given only that document's conversations are
        returned.
        """

    @abstractmethod
    async def add_message(self, message: ChatMessage) -> ChatMessage:
        """Append a turn and bump the conversation's ``updated_at``."""

    @abstractmethod
    async def recent_messages(self, conversation_id: str, limit: int = 10) -> list[ChatMessage]:
        """Return the last *limit* turns in chronological order."""

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[ChatMessage]:
        """Return every turn in chronological order."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Delete a conversation and its turns.  Returns ``False`` if absent."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every conversation of the document.  Returns conversations deleted."""
