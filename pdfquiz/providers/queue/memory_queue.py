"""In-process delayed job queue, one heap per pipeline stage.

Jobs become deliverable at ``enqueue time + delay``; among ready jobs the
earliest-ready is delivered first, ties broken by enqueue order.  A job for
a ``(document_id, stage)`` pair that is already pending is dropped, which
absorbs duplicate submissions.

State lives in process memory: pending jobs are lost on restart.  A
broker-backed :class:`IJobQueue` is needed for durability across restarts.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from pdfquiz.interfaces.job_queue import IJobQueue
from pdfquiz.models.pipeline import PipelineJob, PipelineStage

logger = structlog.get_logger(logger_name=__name__)


@dataclass(order=True)
class _Entry:
    ready_at: float
    seq: int
    job: PipelineJob = field(compare=False)


class InMemoryJobQueue(IJobQueue):
    """Delayed per-stage job queue held in memory.

    Parameters
    ----------
    clock:
        Monotonic time source; injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._heaps: dict[PipelineStage, list[_Entry]] = {s: [] for s in PipelineStage}
        self._conditions: dict[PipelineStage, asyncio.Condition] = {
            s: asyncio.Condition() for s in PipelineStage
        }
        self._pending: set[tuple[str, PipelineStage]] = set()
        self._counter = itertools.count()

    async def enqueue(self, job: PipelineJob, delay_seconds: float = 0.0) -> bool:
        key = (job.document_id, job.stage)
        condition = self._conditions[job.stage]
        async with condition:
            if key in self._pending:
                logger.debug(
                    "job_duplicate_dropped",
                    document_id=job.document_id,
                    stage=job.stage.value,
                )
                return False
            self._pending.add(key)
            entry = _Entry(self._clock() + max(delay_seconds, 0.0), next(self._counter), job)
            heapq.heappush(self._heaps[job.stage], entry)
            condition.notify_all()
        logger.debug(
            "job_enqueued",
            document_id=job.document_id,
            stage=job.stage.value,
            attempt=job.attempt,
            delay_seconds=delay_seconds,
        )
        return True

    async def dequeue(self, stage: PipelineStage) -> PipelineJob:
        condition = self._conditions[stage]
        heap = self._heaps[stage]
        async with condition:
            while True:
                now = self._clock()
                if heap and heap[0].ready_at <= now:
                    entry = heapq.heappop(heap)
                    self._pending.discard((entry.job.document_id, stage))
                    return entry.job
                timeout = heap[0].ready_at - now if heap else None
                try:
                    await asyncio.wait_for(condition.wait(), timeout)
                except asyncio.TimeoutError:
                    pass

    async def remove_for_document(self, document_id: str) -> int:
        removed = 0
        for stage, heap in self._heaps.items():
            async with self._conditions[stage]:
                kept = [e for e in heap if e.job.document_id != document_id]
                if len(kept) != len(heap):
                    removed += len(heap) - len(kept)
                    heap[:] = kept
                    heapq.heapify(heap)
                    self._pending.discard((document_id, stage))
        if removed:
            logger.info("jobs_removed", document_id=document_id, removed=removed)
        return removed

    def pending_count(self, stage: PipelineStage | None = None) -> int:
        if stage is not None:
            return len(self._heaps[stage])
        return sum(len(h) for h in self._heaps.values())
