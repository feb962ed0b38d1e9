"""pdfquiz domain models -- re-exports all public model classes.

    - document.py  -- Document aggregate, status enum, status snapshot
    - chunk.py     -- extracted text, page map, chunk candidates and rows
    - question.py  -- multiple-choice questions
    - pipeline.py  -- pipeline stages, jobs and progress events
    - conversation.py -- chat conversations and their messages
"""

from __future__ import annotations

from pdfquiz.models.chunk import (
    Chunk,
    ChunkCandidate,
    ExtractedText,
    PageRange,
    ScoredChunk,
)
from pdfquiz.models.conversation import ChatMessage, Conversation, MessageRole
from pdfquiz.models.document import Document, DocumentProgress, DocumentStatus
from pdfquiz.models.pipeline import PipelineJob, PipelineStage, ProgressEvent
from pdfquiz.models.question import Difficulty, Question

__all__ = [
    "ChatMessage",
    "Chunk",
    "ChunkCandidate",
    "Conversation",
    "Difficulty",
    "Document",
    "DocumentProgress",
    "DocumentStatus",
    "ExtractedText",
    "MessageRole",
    "PageRange",
    "PipelineJob",
    "PipelineStage",
    "ProgressEvent",
    "Question",
    "ScoredChunk",
]
