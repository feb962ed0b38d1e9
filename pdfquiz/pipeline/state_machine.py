"""Authoritative document status transitions.

Every status write in the system goes through :class:`DocumentStateMachine`.
The rules:

- Forward moves follow ``UPLOADING < PROCESSING < EXTRACTING < CHUNKING <
  GENERATING_QUESTIONS < COMPLETED``.  A move may skip ahead (a retry that
  resumes at the embedding stage goes PROCESSING -> CHUNKING) but never back.
- FAILED and CANCELLED are reachable from any non-terminal status.
- COMPLETED, FAILED and CANCELLED are terminal, except FAILED -> PROCESSING,
  the explicit retry re-entry.
- Nothing moves past UPLOADING until the document has a storage key.
- Re-applying the status a document already has is a no-op, so duplicate
  job deliveries are harmless.

Within one process a per-document ``asyncio.Lock`` serialises transitions;
across processes the repository's compare-and-set (``WHERE status = ?``)
rejects a write based on a stale read, and the transition is re-evaluated.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.utils.errors import DocumentNotFoundError, InvalidTransitionError
from pdfquiz.utils.logging import get_logger

_FORWARD_ORDER = (
    DocumentStatus.UPLOADING,
    DocumentStatus.PROCESSING,
    DocumentStatus.EXTRACTING,
    DocumentStatus.CHUNKING,
    DocumentStatus.GENERATING_QUESTIONS,
    DocumentStatus.COMPLETED,
)
_RANK = {status: rank for rank, status in enumerate(_FORWARD_ORDER)}

_EXITS = frozenset({DocumentStatus.FAILED, DocumentStatus.CANCELLED})

# Compare-and-set losses tolerated before giving up.
_MAX_CAS_ATTEMPTS = 3


def status_rank(status: DocumentStatus) -> int | None:
    """Return the position of *status* on the forward path, or ``None`` for exits."""
    return _RANK.get(status)


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return ``True`` if *target* is reachable from *current* (same status included)."""
    if current is target:
        return True
    if current is DocumentStatus.FAILED:
        return target is DocumentStatus.PROCESSING
    if current.is_terminal:
        return False
    if target in _EXITS:
        return True
    return _RANK[target] > _RANK[current]


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of :meth:`DocumentStateMachine.apply`."""

    document: Document
    # False when the document already had the target status.
    changed: bool


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class DocumentStateMachine:
    """Validates and persists document status changes.

    Parameters
    ----------
    documents:
        Repository providing compare-and-set status updates.
    """

    def __init__(self, documents: IDocumentRepository) -> None:
        self._documents = documents
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def transition(
        self,
        document_id: str,
        target: DocumentStatus,
        error_detail: str | None = None,
    ) -> Document:
        """Move the document to *target* and return the updated document.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        InvalidTransitionError
            If *target* is not reachable from the current status.
        """
        outcome = await self.apply(document_id, target, error_detail)
        return outcome.document

    async def apply(
        self,
        document_id: str,
        target: DocumentStatus,
        error_detail: str | None = None,
    ) -> TransitionOutcome:
        """Like :meth:`transition`, but also reports whether anything changed."""
        lock = self._lock_for(document_id)
        async with lock:
            for _ in range(_MAX_CAS_ATTEMPTS):
                document = await self._documents.get(document_id)
                if document is None:
                    raise DocumentNotFoundError()

                current = document.status
                if current is target:
                    return TransitionOutcome(document, changed=False)
                self._check(document, target)

                updated = await self._documents.update_status(
                    document_id,
                    expected=current,
                    status=target,
                    fields=self._side_fields(current, target, error_detail),
                )
                if updated is not None:
                    self._logger.info(
                        "document_status_changed",
                        document_id=document_id,
                        from_status=current.value,
                        to_status=target.value,
                        error=error_detail,
                    )
                    return TransitionOutcome(updated, changed=True)

                self._logger.debug(
                    "document_status_cas_conflict",
                    document_id=document_id,
                    expected=current.value,
                    target=target.value,
                )

        raise InvalidTransitionError(
            f"Document {document_id} changed concurrently; could not apply {target.value}"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        return lock

    @staticmethod
    def _check(document: Document, target: DocumentStatus) -> None:
        current = document.status
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move document from {current.value} to {target.value}"
            )
        leaves_upload = target not in _EXITS and _RANK[target] > _RANK[DocumentStatus.UPLOADING]
        if leaves_upload and not document.storage_key:
            raise InvalidTransitionError(
                f"Document must be stored before moving to {target.value}"
            )

    @staticmethod
    def _side_fields(
        current: DocumentStatus,
        target: DocumentStatus,
        error_detail: str | None,
    ) -> dict[str, Any]:
        now = _utcnow()
        if target is DocumentStatus.FAILED:
            return {"error_message": error_detail or "Processing failed"}
        if target is DocumentStatus.PROCESSING:
            # First start and retry both (re)start the processing clock.
            return {"processing_started_at": now, "error_message": None, "completed_at": None}
        if target is DocumentStatus.COMPLETED:
            return {"completed_at": now}
        return {}
