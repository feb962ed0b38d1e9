"""Abstract base class for the pipeline job queue.

Delivery is at-least-once: a handler may see the same ``(document_id,
stage)`` twice and must tolerate it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pdfquiz.models.pipeline import PipelineJob, PipelineStage


# Concrete implementations:
#   InMemoryJobQueue -- per-stage delayed heaps in process memory
# Located in: pdfquiz/providers/queue/
class IJobQueue(ABC):
    """Contract for per-stage delayed job queues."""

    @abstractmethod
    async def enqueue(self, job: PipelineJob, delay_seconds: float = 0.0) -> bool:
        """Queue *job* for its stage, deliverable after *delay_seconds*.

        Returns
        -------
        bool
            ``False`` if an identical ``(document_id, stage)`` job was
            already pending and this one was dropped as a duplicate.
        """

    @abstractmethod
    async def dequeue(self, stage: PipelineStage) -> PipelineJob:
        """Wait for and return the next ready job of *stage*."""

    @abstractmethod
    async def remove_for_document(self, document_id: str) -> int:
        """Drop pending jobs of the document.  Returns how many were removed."""

    @abstractmethod
    def pending_count(self, stage: PipelineStage | None = None) -> int:
        """Return pending jobs for *stage*, or across all stages."""
