"""Central coordinator for the document ingestion pipeline.

Pipeline stages (one queued job per stage, run by
:class:`~pdfquiz.pipeline.workers.StageWorkerPool`):

    UPLOAD -> EXTRACT -> CHUNK -> EMBED -> GENERATE_QUESTIONS -> COMPLETED

For each delivered job :meth:`DocumentPipeline.process_job`:

1. Reloads the document and discards the job if the document is gone,
   terminal, or already past this stage (stale or duplicate delivery).
2. Moves the document to the stage's entry status and publishes progress.
3. Runs the stage handler with a cancellation checkpoint.
4. Enqueues the next stage, or marks the document COMPLETED after the last.

Failures go through :class:`~pdfquiz.pipeline.retry_policy.RetryPolicy`:
transient ones are redelivered with exponential backoff and leave the
status alone; fatal ones (or the last allowed attempt) fail the document
and publish exactly one failure event.

The owner-facing operations (create, retry, cancel, status, results,
delete) also live here; the HTTP layer and the CLI only translate to and
from them.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import PurePath
from typing import Any

import structlog

from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.interfaces.conversation_repository import IConversationRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.job_queue import IJobQueue
from pdfquiz.interfaces.question_repository import IQuestionRepository
from pdfquiz.interfaces.storage_provider import IStorageProvider
from pdfquiz.models.document import Document, DocumentProgress, DocumentStatus
from pdfquiz.models.pipeline import PipelineJob, PipelineStage, ProgressEvent
from pdfquiz.models.question import Question
from pdfquiz.pipeline.definition import definition_for, next_stage
from pdfquiz.pipeline.progress_notifier import ProgressNotifier
from pdfquiz.pipeline.retry_policy import RetryPolicy
from pdfquiz.pipeline.stages import StageContext, StageHandler
from pdfquiz.pipeline.state_machine import DocumentStateMachine, status_rank
from pdfquiz.utils.errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    InvalidTransitionError,
    InvalidUploadError,
    JobCancelledError,
    NotCancellableError,
    NotRetryableError,
)
from pdfquiz.utils.logging import get_logger, job_context

_PDF_MAGIC = b"%PDF-"

# Progress shown by status() when no event has been published in this process.
_STATUS_PROGRESS = {
    DocumentStatus.UPLOADING: 0,
    DocumentStatus.PROCESSING: 20,
    DocumentStatus.EXTRACTING: 20,
    DocumentStatus.CHUNKING: 40,
    DocumentStatus.GENERATING_QUESTIONS: 80,
    DocumentStatus.COMPLETED: 100,
    DocumentStatus.FAILED: 0,
    DocumentStatus.CANCELLED: 0,
}


class DocumentPipeline:
    """Runs documents through the stages and exposes owner operations.

    All collaborators are injected; the pipeline never constructs them.

    Parameters
    ----------
    documents, chunks, questions:
        Persistence.
    storage:
        Object storage holding the uploaded PDFs.
    queue:
        Job queue the workers pull from.
    state_machine:
        The only writer of document status.
    notifier:
        Progress fan-out.
    handlers:
        One handler per :class:`PipelineStage`.
    retry_policy:
        Failure classification and backoff.
    max_upload_bytes, allowed_content_type:
        Upload validation.
    conversations:
        Chat conversations, deleted along with their document.
    """

    def __init__(
        self,
        documents: IDocumentRepository,
        chunks: IChunkRepository,
        questions: IQuestionRepository,
        storage: IStorageProvider,
        queue: IJobQueue,
        state_machine: DocumentStateMachine,
        notifier: ProgressNotifier,
        handlers: dict[PipelineStage, StageHandler],
        retry_policy: RetryPolicy | None = None,
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_content_type: str = "application/pdf",
        conversations: IConversationRepository | None = None,
    ) -> None:
        missing = set(PipelineStage) - set(handlers)
        if missing:
            raise ValueError(f"No handler for stages: {sorted(s.value for s in missing)}")
        self._documents = documents
        self._chunks = chunks
        self._questions = questions
        self._storage = storage
        self._queue = queue
        self._state_machine = state_machine
        self._notifier = notifier
        self._handlers = dict(handlers)
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_upload_bytes = max_upload_bytes
        self._allowed_content_type = allowed_content_type
        self._conversations = conversations
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def notifier(self) -> ProgressNotifier:
        return self._notifier

    @property
    def queue(self) -> IJobQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def create_document(
        self,
        owner_id: str,
        filename: str,
        content_type: str | None,
        data: bytes,
        title: str | None = None,
    ) -> Document:
        """Validate an upload, create its document and submit it.

        Raises
        ------
        InvalidUploadError
            400 for a missing file, 413 when too large, 415 for a non-PDF.
        """
        if not data:
            raise InvalidUploadError("No file uploaded", status_code=400)
        if len(data) > self._max_upload_bytes:
            raise InvalidUploadError(
                f"File exceeds the {self._max_upload_bytes // (1024 * 1024)} MB limit",
                status_code=413,
            )
        if (content_type or "").split(";")[0].strip().lower() != self._allowed_content_type:
            raise InvalidUploadError("Only PDF files are allowed", status_code=415)
        if not data.startswith(_PDF_MAGIC):
            raise InvalidUploadError("File is not a PDF document", status_code=415)

        name = filename or "document.pdf"
        document = Document(
            owner_id=owner_id,
            title=(title or "").strip() or PurePath(name).stem or "Untitled document",
            original_filename=name,
            content_type=self._allowed_content_type,
            file_size=len(data),
        )
        await self._documents.save(document)
        self._logger.info(
            "document_created",
            document_id=document.id,
            owner_id=owner_id,
            filename=name,
            size_bytes=len(data),
        )
        await self.submit(document.id, owner_id, data)
        return document

    async def submit(self, document_id: str, owner_id: str, data: bytes) -> PipelineJob:
        """Queue the UPLOAD stage for an UPLOADING document."""
        document = await self._documents.get_for_owner(document_id, owner_id)
        if document is None:
            raise DocumentNotFoundError()
        if document.status is not DocumentStatus.UPLOADING:
            raise InvalidTransitionError(
                f"Document {document_id} is {document.status.value}, not uploading"
            )
        job = PipelineJob(
            document_id=document_id,
            owner_id=owner_id,
            stage=PipelineStage.UPLOAD,
            file_data=data,
        )
        await self._queue.enqueue(job)
        await self._notifier.publish(
            document_id, owner_id, DocumentStatus.UPLOADING, 0, "Upload received"
        )
        return job

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def process_job(self, job: PipelineJob) -> None:
        """Run one delivered job.  Never raises; failures are handled here."""
        with job_context(
            document_id=job.document_id,
            owner_id=job.owner_id,
            stage=job.stage.value,
            correlation_id=job.correlation_id,
        ):
            try:
                await self._run_stage(job)
            except JobCancelledError:
                self._logger.info("stage_cancelled", attempt=job.attempt)
            except Exception as exc:
                await self._handle_failure(job, exc)

    async def _run_stage(self, job: PipelineJob) -> None:
        stage_def = definition_for(job.stage)
        document = await self._documents.get(job.document_id)
        if document is None or document.status.is_terminal:
            self._logger.info(
                "stage_discarded",
                reason="document_gone" if document is None else document.status.value,
            )
            return
        if status_rank(document.status) > status_rank(stage_def.entry_status):
            self._logger.info("stage_discarded", reason="stale", status=document.status.value)
            return

        document = await self._state_machine.transition(document.id, stage_def.entry_status)
        await self._notifier.publish(
            document.id,
            document.owner_id,
            document.status,
            stage_def.progress_start,
            stage_def.message,
        )
        self._logger.info("stage_started", attempt=job.attempt)

        async def _report(fraction: float, message: str) -> None:
            await self._notifier.publish(
                document.id,
                document.owner_id,
                stage_def.entry_status,
                stage_def.progress_at(fraction),
                message,
            )

        handler = self._handlers[job.stage]
        context = StageContext(
            document=document,
            checkpoint=lambda: self._checkpoint(job.document_id),
            report=_report,
        )
        payload = await handler.run(job, context)
        await self._checkpoint(job.document_id)
        self._logger.info("stage_completed", attempt=job.attempt)

        following = next_stage(job.stage)
        if following is None:
            await self._complete(job.document_id, payload)
            return

        next_job = PipelineJob(
            document_id=job.document_id,
            owner_id=job.owner_id,
            stage=following,
            correlation_id=job.correlation_id,
            progress=stage_def.progress_end,
            extracted=payload.get("extracted"),
        )
        await self._queue.enqueue(next_job)
        current = await self._documents.get(job.document_id)
        status = current.status if current is not None else stage_def.entry_status
        await self._notifier.publish(
            job.document_id,
            job.owner_id,
            status,
            stage_def.progress_end,
            f"{stage_def.message}: done",
        )

    async def _checkpoint(self, document_id: str) -> None:
        document = await self._documents.get(document_id)
        if document is None or document.status is DocumentStatus.CANCELLED:
            raise JobCancelledError()

    async def _complete(self, document_id: str, payload: dict[str, Any]) -> None:
        outcome = await self._state_machine.apply(document_id, DocumentStatus.COMPLETED)
        if not outcome.changed:
            return
        document = outcome.document
        data = await self._completion_data(document, payload.get("questions_count"))
        await self._notifier.publish(
            document_id,
            document.owner_id,
            DocumentStatus.COMPLETED,
            100,
            "Processing complete",
            event="completed",
            data=data,
        )
        self._logger.info(
            "document_completed",
            questions=data["questions_count"],
            processing_time_seconds=data["processing_time_seconds"],
        )

    async def _completion_data(
        self, document: Document, questions_count: int | None = None
    ) -> dict[str, Any]:
        started = document.processing_started_at or document.created_at
        elapsed = 0.0
        if document.completed_at is not None:
            elapsed = (document.completed_at - started).total_seconds()
        if questions_count is None:
            questions_count = await self._questions.count(document.id)
        return {
            "title": document.title,
            "questions_count": questions_count,
            "processing_time_seconds": round(elapsed, 2),
        }

    async def _handle_failure(self, job: PipelineJob, exc: Exception) -> None:
        document = await self._documents.get(job.document_id)
        if document is None or document.status is DocumentStatus.CANCELLED:
            self._logger.info("stage_failure_discarded", error=str(exc))
            return
        if isinstance(exc, InvalidTransitionError) and document.status.is_terminal:
            self._logger.info("stage_failure_discarded", error=str(exc))
            return

        decision = self._retry_policy.decide(exc, job.attempt)
        if decision.retry:
            self._logger.warning(
                "stage_retry_scheduled",
                attempt=job.attempt,
                delay_seconds=decision.delay_seconds,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._queue.enqueue(job.next_attempt(str(exc)), decision.delay_seconds)
            return

        self._logger.error(
            "stage_failed",
            attempt=job.attempt,
            disposition=decision.disposition.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        try:
            outcome = await self._state_machine.apply(
                job.document_id, DocumentStatus.FAILED, error_detail=str(exc)
            )
        except (InvalidTransitionError, DocumentNotFoundError) as transition_exc:
            self._logger.info("stage_failure_discarded", error=str(transition_exc))
            return
        if not outcome.changed:
            return
        snapshot = self._notifier.snapshot(job.document_id)
        await self._notifier.publish(
            job.document_id,
            job.owner_id,
            DocumentStatus.FAILED,
            snapshot.progress if snapshot is not None else job.progress,
            "Processing failed",
            event="failed",
            data={"title": outcome.document.title, "error": str(exc)},
        )

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def retry(self, document_id: str, owner_id: str) -> Document:
        """Restart a FAILED document from the earliest stage it still needs.

        Resumes at EMBED when chunks already exist, otherwise at EXTRACT.

        Raises
        ------
        DocumentNotFoundError
            Missing or owned by someone else.
        NotRetryableError
            Not FAILED, or the uploaded file is no longer stored.
        """
        document = await self._owned(document_id, owner_id)
        if document.status is not DocumentStatus.FAILED:
            raise NotRetryableError()
        if not document.storage_key or not await self._storage.exists(document.storage_key):
            raise NotRetryableError("The uploaded file is no longer available; upload it again")

        document = await self._state_machine.transition(document_id, DocumentStatus.PROCESSING)
        stage = PipelineStage.EMBED if await self._chunks.count(document_id) else PipelineStage.EXTRACT
        await self._queue.enqueue(
            PipelineJob(document_id=document_id, owner_id=owner_id, stage=stage)
        )

        self._notifier.reset(document_id)
        await self._notifier.publish(
            document_id,
            owner_id,
            document.status,
            definition_for(stage).progress_start,
            "Retrying processing",
        )
        self._logger.info("document_retry", document_id=document_id, resume_stage=stage.value)
        return document

    async def cancel(self, document_id: str, owner_id: str) -> Document:
        """Stop processing a document that has not reached a terminal status."""
        document = await self._owned(document_id, owner_id)
        if document.status.is_terminal:
            raise NotCancellableError()

        outcome = await self._state_machine.apply(document_id, DocumentStatus.CANCELLED)
        removed = await self._queue.remove_for_document(document_id)
        if outcome.changed:
            snapshot = self._notifier.snapshot(document_id)
            await self._notifier.publish(
                document_id,
                owner_id,
                DocumentStatus.CANCELLED,
                snapshot.progress if snapshot is not None else 0,
                "Processing cancelled",
                event="cancelled",
            )
        self._logger.info("document_cancelled", document_id=document_id, jobs_removed=removed)
        return outcome.document

    async def status(self, document_id: str, owner_id: str) -> DocumentProgress:
        document = await self._owned(document_id, owner_id)
        snapshot = self._notifier.snapshot(document_id)
        if snapshot is not None and snapshot.status is document.status:
            progress, message = snapshot.progress, snapshot.message
        else:
            progress, message = _STATUS_PROGRESS[document.status], ""
        return DocumentProgress(
            document_id=document.id,
            status=document.status,
            progress=progress,
            message=message,
            error=document.error_message,
        )

    async def subscribe(self, document_id: str, owner_id: str) -> AsyncIterator[ProgressEvent]:
        """Stream the document's progress events, ending with a terminal one.

        Ownership is checked before the first event; a document that is
        already terminal yields a single synthesised terminal event.
        """
        document = await self._owned(document_id, owner_id)
        snapshot = self._notifier.snapshot(document_id)
        if document.status.is_terminal and (snapshot is None or not snapshot.is_terminal):
            yield await self._terminal_event(document)
            return
        async for progress_event in self._notifier.stream(document_id):
            yield progress_event

    async def get_document(self, document_id: str, owner_id: str) -> Document:
        return await self._owned(document_id, owner_id)

    async def list_documents(self, owner_id: str) -> list[Document]:
        return await self._documents.list_for_owner(owner_id)

    async def get_questions(self, document_id: str, owner_id: str) -> list[Question]:
        document = await self._owned(document_id, owner_id)
        if document.status is not DocumentStatus.COMPLETED:
            raise DocumentNotReadyError()
        return await self._questions.list_by_document(document_id)

    async def delete_document(self, document_id: str, owner_id: str) -> None:
        """Delete a document with its chunks, questions, conversations and upload.

        An in-flight document is cancelled first so its workers stop at
        their next checkpoint.
        """
        document = await self._owned(document_id, owner_id)
        if not document.status.is_terminal:
            await self._state_machine.apply(document_id, DocumentStatus.CANCELLED)
        await self._queue.remove_for_document(document_id)

        chunks_removed = await self._chunks.delete_by_document(document_id)
        questions_removed = await self._questions.delete_by_document(document_id)
        conversations_removed = 0
        if self._conversations is not None:
            conversations_removed = await self._conversations.delete_by_document(document_id)
        if document.storage_key:
            await self._storage.delete(document.storage_key)
        await self._documents.delete(document_id)
        self._notifier.reset(document_id)
        self._logger.info(
            "document_deleted",
            document_id=document_id,
            chunks=chunks_removed,
            questions=questions_removed,
            conversations=conversations_removed,
        )

    def queue_stats(self) -> dict[str, int]:
        """Pending job counts per stage, plus ``total``."""
        stats = {stage.value: self._queue.pending_count(stage) for stage in PipelineStage}
        stats["total"] = self._queue.pending_count()
        return stats

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _owned(self, document_id: str, owner_id: str) -> Document:
        document = await self._documents.get_for_owner(document_id, owner_id)
        if document is None:
            raise DocumentNotFoundError()
        return document

    async def _terminal_event(self, document: Document) -> ProgressEvent:
        """Rebuild the terminal event of a finished document from its stored row."""
        if document.status is DocumentStatus.COMPLETED:
            event, message = "completed", "Processing complete"
            data = await self._completion_data(document)
        elif document.status is DocumentStatus.FAILED:
            event, message = "failed", "Processing failed"
            data = {"title": document.title, "error": document.error_message or ""}
        else:
            event, message, data = "cancelled", "Processing cancelled", {}
        return ProgressEvent(
            document_id=document.id,
            owner_id=document.owner_id,
            status=document.status,
            progress=_STATUS_PROGRESS[document.status],
            message=message,
            event=event,
            data=data,
        )
