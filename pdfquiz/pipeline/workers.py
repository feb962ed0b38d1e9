"""Worker tasks that pull pipeline jobs off the queue.

Each stage gets ``concurrency`` worker tasks and one shared
:class:`~pdfquiz.utils.concurrency.RateLimiter`, so per stage at most
``concurrency`` jobs run at once and at most ``rate_limit`` jobs start per
``rate_window_seconds``.  Workers hand every job to
:meth:`DocumentPipeline.process_job`, which owns all failure handling; a
worker only logs what escapes it and moves on to the next job.
"""

from __future__ import annotations

import asyncio

import structlog

from pdfquiz.interfaces.job_queue import IJobQueue
from pdfquiz.models.pipeline import PipelineStage
from pdfquiz.pipeline.orchestrator import DocumentPipeline
from pdfquiz.utils.concurrency import RateLimiter
from pdfquiz.utils.logging import get_logger


class StageWorkerPool:
    """Runs per-stage worker tasks for a :class:`DocumentPipeline`.

    Parameters
    ----------
    pipeline:
        Processes each dequeued job.
    queue:
        Source of jobs.
    concurrency:
        Worker tasks per stage.
    rate_limit, rate_window_seconds:
        Job starts allowed per stage per window.
    stages:
        Stages to serve; all of them by default.
    """

    def __init__(
        self,
        pipeline: DocumentPipeline,
        queue: IJobQueue,
        concurrency: int = 5,
        rate_limit: int = 5,
        rate_window_seconds: float = 1.0,
        stages: tuple[PipelineStage, ...] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._pipeline = pipeline
        self._queue = queue
        self._concurrency = concurrency
        self._stages = stages or tuple(PipelineStage)
        self._limiters = {
            stage: RateLimiter(rate_limit, rate_window_seconds) for stage in self._stages
        }
        self._tasks: list[asyncio.Task[None]] = []
        self._active: dict[PipelineStage, int] = {stage: 0 for stage in self._stages}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def active_jobs(self) -> dict[str, int]:
        """Jobs currently executing, per stage."""
        return {stage.value: count for stage, count in self._active.items()}

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._work(stage, index), name=f"pdfquiz-{stage.value}-{index}")
            for stage in self._stages
            for index in range(self._concurrency)
        ]
        self._logger.info(
            "workers_started",
            stages=[s.value for s in self._stages],
            per_stage=self._concurrency,
        )

    async def stop(self) -> None:
        """Cancel all workers and wait for them to exit."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._logger.info("workers_stopped")

    async def _work(self, stage: PipelineStage, index: int) -> None:
        limiter = self._limiters[stage]
        while True:
            job = await self._queue.dequeue(stage)
            await limiter.acquire()
            self._active[stage] += 1
            try:
                await self._pipeline.process_job(job)
            except Exception as exc:
                self._logger.exception(
                    "worker_job_crashed",
                    stage=stage.value,
                    worker=index,
                    document_id=job.document_id,
                    error=str(exc),
                )
            finally:
                self._active[stage] -= 1
