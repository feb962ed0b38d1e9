"""Pipeline orchestration for pdfquiz document ingestion."""

from pdfquiz.pipeline.orchestrator import DocumentPipeline
from pdfquiz.pipeline.progress_notifier import ProgressNotifier
from pdfquiz.pipeline.state_machine import DocumentStateMachine
from pdfquiz.pipeline.workers import StageWorkerPool

__all__ = [
    "DocumentPipeline",
    "DocumentStateMachine",
    "ProgressNotifier",
    "StageWorkerPool",
]
