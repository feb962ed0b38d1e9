"""Pydantic request/response schemas for the pdfquiz HTTP API.

Request schemas end with ``Request`` and response schemas with
``Response``.  Responses are built from the domain models with the
``from_*`` helpers so routes stay one-liners.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pdfquiz.models.conversation import ChatMessage, Conversation
from pdfquiz.models.document import Document, DocumentProgress
from pdfquiz.models.question import Question


class ErrorResponse(BaseModel):
    """Body of every error returned by the API."""

    error: str
    detail: str = ""


class DocumentResponse(BaseModel):
    id: str
    title: str
    original_filename: str
    status: str
    content_type: str
    file_size: int
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        return cls(
            id=document.id,
            title=document.title,
            original_filename=document.original_filename,
            status=document.status.value,
            content_type=document.content_type,
            file_size=document.file_size,
            error_message=document.error_message,
            created_at=document.created_at,
            updated_at=document.updated_at,
            completed_at=document.completed_at,
        )


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse] = Field(default_factory=list)
    total: int = 0


class DocumentStatusResponse(BaseModel):
    """Polling view of a document's progress."""

    document_id: str
    status: str
    progress: int = Field(ge=0, le=100)
    message: str = ""
    error: str | None = None

    @classmethod
    def from_progress(cls, progress: DocumentProgress) -> DocumentStatusResponse:
        return cls(
            document_id=progress.document_id,
            status=progress.status.value,
            progress=progress.progress,
            message=progress.message,
            error=progress.error,
        )


class QuestionResponse(BaseModel):
    id: str
    question: str
    options: list[str]
    correct_option_index: int
    difficulty: str
    question_type: str
    explanation: str = ""
    page_reference: str = ""
    source_chunk_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_question(cls, question: Question) -> QuestionResponse:
        return cls(
            id=question.id,
            question=question.question,
            options=list(question.options),
            correct_option_index=question.correct_option_index,
            difficulty=question.difficulty.value,
            question_type=question.question_type,
            explanation=question.explanation,
            page_reference=question.page_reference,
            source_chunk_ids=list(question.source_chunk_ids),
        )


class QuestionListResponse(BaseModel):
    document_id: str
    questions: list[QuestionResponse] = Field(default_factory=list)
    total: int = 0


class AskQuestionRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)
    conversation_id: str | None = None


class AskQuestionResponse(BaseModel):
    answer: str
    sources: list[dict[str, Any]] = Field(default_factory=list)
    cached: bool = False
    conversation_id: str | None = None


class CreateConversationRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)


class ChatMessageResponse(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> ChatMessageResponse:
        return cls(
            id=message.id,
            role=message.role.value,
            content=message.content,
            created_at=message.created_at,
        )


class ConversationResponse(BaseModel):
    id: str
    document_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[ChatMessageResponse] = Field(default_factory=list)

    @classmethod
    def from_conversation(
        cls, conversation: Conversation, messages: list[ChatMessage] | None = None
    ) -> ConversationResponse:
        return cls(
            id=conversation.id,
            document_id=conversation.document_id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            messages=[ChatMessageResponse.from_message(m) for m in messages or []],
        )


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse] = Field(default_factory=list)
    total: int = 0


class PushTokenRequest(BaseModel):
    token: str = Field(min_length=1)
    platform: str = ""


class PushTokenResponse(BaseModel):
    registered: bool = False
    removed: bool = False


class QueueStatsResponse(BaseModel):
    pending: dict[str, int]
    active: dict[str, int] = Field(default_factory=dict)
    workers_running: bool = False


class HealthResponse(BaseModel):
    status: str
    version: str
    providers: list[str] = Field(default_factory=list)
