"""Static description of the ingestion pipeline.

Each :class:`StageDefinition` names the document status a stage runs under and
the slice of the 0-100 progress bar it owns.  The stages run strictly in
the order of :data:`PIPELINE`; the EMBED stage shares the CHUNKING status
with the CHUNK stage because the document status set has no separate
embedding state.
"""

from __future__ import annotations

from dataclasses import dataclass

from pdfquiz.models.document import DocumentStatus
from pdfquiz.models.pipeline import PipelineStage


@dataclass(frozen=True)
class StageDefinition:
    stage: PipelineStage
    entry_status: DocumentStatus
    progress_start: int
    progress_end: int
    message: str

    def progress_at(self, fraction: float) -> int:
        """Map a 0..1 completion fraction of this stage onto the overall bar."""
        fraction = max(0.0, min(1.0, fraction))
        span = self.progress_end - self.progress_start
        return self.progress_start + int(span * fraction)


PIPELINE: tuple[StageDefinition, ...] = (
    StageDefinition(PipelineStage.UPLOAD, DocumentStatus.UPLOADING, 0, 20, "Uploading document"),
    StageDefinition(PipelineStage.EXTRACT, DocumentStatus.EXTRACTING, 20, 40, "Extracting text"),
    StageDefinition(PipelineStage.CHUNK, DocumentStatus.CHUNKING, 40, 60, "Splitting text into chunks"),
    StageDefinition(PipelineStage.EMBED, DocumentStatus.CHUNKING, 60, 80, "Generating embeddings"),
    StageDefinition(
        PipelineStage.GENERATE_QUESTIONS,
        DocumentStatus.GENERATING_QUESTIONS,
        80,
        100,
        "Generating questions",
    ),
)

_BY_STAGE = {stage_def.stage: stage_def for stage_def in PIPELINE}


def definition_for(stage: PipelineStage) -> StageDefinition:
    return _BY_STAGE[stage]


def next_stage(stage: PipelineStage) -> PipelineStage | None:
    """Return the stage after *stage*, or ``None`` after the last one."""
    stages = [stage_def.stage for stage_def in PIPELINE]
    position = stages.index(stage)
    if position + 1 < len(stages):
        return stages[position + 1]
    return None
