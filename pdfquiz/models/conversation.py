"""Chat conversation models.

A :class:`Conversation` belongs to one owner and one COMPLETED document;
its :class:`ChatMessage` turns are stored server-side so each new question
is answered with the recent exchange as context.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONVERSATION_TITLE = "New conversation"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class MessageRole(str, Enum):  # noqa: UP042
    USER = "user"
    ASSISTANT = "assistant"


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    document_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ChatMessage(BaseModel):
    """One turn of a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)

    def as_turn(self) -> dict[str, str]:
        """The ``{"role", "content"}`` shape used when prompting the LLM."""
        return {"role": self.role.value, "content": self.content}
