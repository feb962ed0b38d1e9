"""Document aggregate models.

A :class:`Document` is the root of everything the pipeline produces: its
chunks and questions hang off ``Document.id`` and are deleted with it.
Instances are frozen; status changes go through
:class:`~pdfquiz.pipeline.state_machine.DocumentStateMachine`, which writes a
``model_copy`` back through the repository.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# DocumentStatus -- authoritative lifecycle status.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042
    """Lifecycle status of a document.

    Forward path:
        UPLOADING -> PROCESSING -> EXTRACTING -> CHUNKING ->
        GENERATING_QUESTIONS -> COMPLETED

    FAILED and CANCELLED are exits from any non-terminal state.  FAILED may
    be retried, which re-enters at PROCESSING.
    """

    UPLOADING = "uploading"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    GENERATING_QUESTIONS = "generating_questions"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_in_flight(self) -> bool:
        return self not in _TERMINAL


_TERMINAL = frozenset(
    {DocumentStatus.COMPLETED, DocumentStatus.FAILED, DocumentStatus.CANCELLED}
)


class Document(BaseModel):
    """An uploaded PDF and its processing state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    title: str
    original_filename: str
    # None until the upload stage has stored the bytes.
    storage_key: str | None = None
    status: DocumentStatus = DocumentStatus.UPLOADING
    content_type: str = "application/pdf"
    file_size: int = 0
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None


class DocumentProgress(BaseModel):
    """Point-in-time status snapshot returned by status queries."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    error: str | None = None
