"""Pipeline job and progress-event models.

A :class:`PipelineJob` is the queue-resident unit of work for one stage of
one document.  Jobs are immutable; redelivery after a transient failure is
a ``model_copy`` with ``attempt`` incremented and ``last_error`` set.

:class:`ProgressEvent` is what the notifier fans out to subscribers.  Its
``event`` is ``"progress"`` for stage updates, ``"completed"`` or
``"failed"`` for terminal outcomes, and ``"cancelled"`` when the owner
stopped processing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from pdfquiz.models.chunk import ExtractedText
from pdfquiz.models.document import DocumentStatus


class PipelineStage(str, Enum):  # noqa: UP042
    """Stages of the ingestion pipeline, in execution order."""

    UPLOAD = "upload"
    EXTRACT = "extract"
    CHUNK = "chunk"
    EMBED = "embed"
    GENERATE_QUESTIONS = "generate_questions"


class PipelineJob(BaseModel):
    """One delivery of one stage for one document.

    ``file_data`` is only carried by UPLOAD jobs; ``extracted`` only by CHUNK
    jobs (the EXTRACT stage's output).  Every other stage reloads what it
    needs from the repositories.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    owner_id: str
    stage: PipelineStage
    correlation_id: str = Field(default_factory=lambda: uuid4().hex)
    # 1-based; incremented on each redelivery.
    attempt: int = Field(default=1, ge=1)
    progress: int = Field(default=0, ge=0, le=100)
    last_error: str | None = None
    file_data: bytes | None = Field(default=None, repr=False)
    extracted: ExtractedText | None = Field(default=None, repr=False)
    enqueued_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    def next_attempt(self, error: str) -> PipelineJob:
        return self.model_copy(
            update={"attempt": self.attempt + 1, "last_error": error}
        )


EventKind = Literal["progress", "completed", "failed", "cancelled"]


class ProgressEvent(BaseModel):
    """A progress, completion or failure notification for one document."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    owner_id: str
    status: DocumentStatus
    progress: int = Field(ge=0, le=100)
    message: str = ""
    event: EventKind = "progress"
    # Terminal payload: questions_count / processing_time_seconds / title,
    # or error.
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def is_terminal(self) -> bool:
        return self.event != "progress"

    def to_wire(self) -> dict[str, Any]:
        """Serialise to the JSON shape pushed over WebSocket connections."""
        payload: dict[str, Any] = {
            "type": self.event,
            "document_id": self.document_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        payload.update(self.data)
        return payload
