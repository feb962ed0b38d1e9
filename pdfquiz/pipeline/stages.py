"""Handlers for the five pipeline stages.

Each handler does the work of one stage for one document and returns the
payload the next stage's job should carry.  The surrounding bookkeeping
(entry status, progress, enqueueing the next stage, failure handling) lives
in :class:`~pdfquiz.pipeline.orchestrator.DocumentPipeline`.

Handlers are written to be safe under redelivery:

- UPLOAD skips the write if the object is already stored.
- CHUNK skips creation if the document already has chunks.
- EMBED only embeds chunks that have no embedding yet, and persists each
  batch as soon as it is embedded, so a retry resumes where it stopped.
- GENERATE_QUESTIONS replaces the document's questions wholesale.

Every handler awaits ``context.checkpoint()`` before and after its
expensive external calls; the checkpoint raises
:class:`~pdfquiz.utils.errors.JobCancelledError` once the document has
been cancelled or deleted.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.interfaces.question_repository import IQuestionRepository
from pdfquiz.interfaces.storage_provider import IStorageProvider
from pdfquiz.models.chunk import Chunk, ExtractedText
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.models.pipeline import PipelineJob, PipelineStage
from pdfquiz.pipeline.state_machine import DocumentStateMachine
from pdfquiz.services.chunker import TextChunker
from pdfquiz.services.pdf_extractor import PDFTextExtractor
from pdfquiz.services.question_generator import QuestionGenerator
from pdfquiz.utils.concurrency import throttled_gather
from pdfquiz.utils.errors import (
    DimensionMismatchError,
    NoChunksProducedError,
    StorageObjectNotFoundError,
)
from pdfquiz.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)


def storage_key_for(document_id: str) -> str:
    """Object key under which a document's upload is stored."""
    return f"documents/{document_id}.pdf"


@dataclass(frozen=True)
class StageContext:
    """What a handler gets besides its job.

    ``report`` takes a 0..1 fraction of the stage's own work and a message;
    the orchestrator maps it onto the stage's slice of the progress bar.
    """

    document: Document
    checkpoint: Callable[[], Awaitable[None]]
    report: Callable[[float, str], Awaitable[None]]


class StageHandler(ABC):
    stage: PipelineStage

    @abstractmethod
    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        """Do the stage's work.

        Returns
        -------
        dict
            Fields to set on the next stage's :class:`PipelineJob`.
        """


# ----------------------------------------------------------------------
# UPLOAD
# ----------------------------------------------------------------------

class UploadStage(StageHandler):
    """Stores the uploaded bytes and moves the document to PROCESSING."""

    stage = PipelineStage.UPLOAD

    def __init__(
        self,
        storage: IStorageProvider,
        documents: IDocumentRepository,
        state_machine: DocumentStateMachine,
    ) -> None:
        self._storage = storage
        self._documents = documents
        self._state_machine = state_machine

    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        document = context.document
        key = storage_key_for(document.id)

        if await self._storage.exists(key):
            logger.info("upload_already_stored", document_id=document.id, key=key)
        else:
            if not job.file_data:
                raise StorageObjectNotFoundError(
                    f"Upload payload for document {document.id} is missing",
                    provider_name=self._storage.get_provider_name(),
                )
            await self._storage.put(key, job.file_data, document.content_type)
            logger.info(
                "upload_stored",
                document_id=document.id,
                key=key,
                size_bytes=len(job.file_data),
            )

        await context.checkpoint()
        if document.storage_key != key:
            await self._documents.set_storage_key(document.id, key)
        await self._state_machine.transition(document.id, DocumentStatus.PROCESSING)
        return {}


# ----------------------------------------------------------------------
# EXTRACT
# ----------------------------------------------------------------------

class ExtractStage(StageHandler):
    """Reads the stored PDF and extracts cleaned text plus a page map."""

    stage = PipelineStage.EXTRACT

    def __init__(self, storage: IStorageProvider, extractor: PDFTextExtractor) -> None:
        self._storage = storage
        self._extractor = extractor

    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        extracted = await extract_document(self._storage, self._extractor, context.document)
        await context.checkpoint()
        return {"extracted": extracted}


async def extract_document(
    storage: IStorageProvider,
    extractor: PDFTextExtractor,
    document: Document,
) -> ExtractedText:
    if not document.storage_key:
        raise StorageObjectNotFoundError(
            f"Document {document.id} has no stored upload",
            provider_name=storage.get_provider_name(),
        )
    data = await storage.get(document.storage_key)
    return await extractor.extract(data)


# ----------------------------------------------------------------------
# CHUNK
# ----------------------------------------------------------------------

class ChunkStage(StageHandler):
    """Splits the extracted text into persisted chunks.

    The job normally carries the EXTRACT stage's output.  When it does not
    (a job recovered without its payload) the text is extracted again from
    storage.
    """

    stage = PipelineStage.CHUNK

    def __init__(
        self,
        chunker: TextChunker,
        chunks: IChunkRepository,
        storage: IStorageProvider,
        extractor: PDFTextExtractor,
    ) -> None:
        self._chunker = chunker
        self._chunks = chunks
        self._storage = storage
        self._extractor = extractor

    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        document = context.document
        existing = await self._chunks.count(document.id)
        if existing:
            logger.info("chunks_already_present", document_id=document.id, chunks=existing)
            return {}

        extracted = job.extracted
        if extracted is None:
            extracted = await extract_document(self._storage, self._extractor, document)

        candidates = self._chunker.chunk(extracted.text, extracted.page_map)
        chunks = [Chunk.from_candidate(document.id, c) for c in candidates]

        await context.checkpoint()
        await self._chunks.add_chunks(chunks)
        logger.info(
            "chunks_created",
            document_id=document.id,
            chunks=len(chunks),
            total_pages=extracted.total_pages,
        )
        return {}


# ----------------------------------------------------------------------
# EMBED
# ----------------------------------------------------------------------

class EmbedStage(StageHandler):
    """Embeds every chunk that does not have an embedding yet.

    Parameters
    ----------
    embedder:
        Embedding provider.
    chunks:
        Chunk repository; each batch's vectors are written as soon as they
        arrive.
    batch_size:
        Texts per provider call.
    max_parallel_batches:
        Provider calls in flight at once.
    """

    stage = PipelineStage.EMBED

    def __init__(
        self,
        embedder: IEmbeddingProvider,
        chunks: IChunkRepository,
        batch_size: int = 5,
        max_parallel_batches: int = 2,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._embedder = embedder
        self._chunks = chunks
        self._batch_size = batch_size
        self._max_parallel = max(1, max_parallel_batches)

    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        document = context.document
        chunks = await self._chunks.list_by_document(document.id)
        if not chunks:
            raise NoChunksProducedError(f"Document {document.id} has no chunks to embed")

        pending = [c for c in chunks if c.embedding is None]
        dimension = next((len(c.embedding) for c in chunks if c.embedding is not None), None)
        if not pending:
            logger.info("embeddings_already_present", document_id=document.id)
            return {}

        batches = [
            pending[i : i + self._batch_size]
            for i in range(0, len(pending), self._batch_size)
        ]
        done = 0
        failed = False
        progress_lock = asyncio.Lock()

        async def _embed_batch(batch: list[Chunk]) -> None:
            nonlocal failed
            if failed:
                return
            try:
                await context.checkpoint()
                vectors = await self._embedder.embed_batch([c.content for c in batch])
                if failed:
                    return
                await _store(batch, vectors)
            except BaseException:
                failed = True
                raise

        async def _store(batch: list[Chunk], vectors: list[list[float]]) -> None:
            nonlocal done, dimension
            if len(vectors) != len(batch):
                raise DimensionMismatchError(
                    f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
                )
            async with progress_lock:
                for vector in vectors:
                    if dimension is None:
                        dimension = len(vector)
                    elif len(vector) != dimension:
                        raise DimensionMismatchError(
                            f"Embedding has {len(vector)} dimensions, expected {dimension}"
                        )
                await self._chunks.set_embeddings(
                    {chunk.id: vector for chunk, vector in zip(batch, vectors)}
                )
                done += 1
                await context.report(done / len(batches), f"Embedded {done}/{len(batches)} batches")

        # Every batch settles before the stage returns or raises; batches still
        # waiting for a slot after a failure skip their provider call.
        semaphore = asyncio.Semaphore(self._max_parallel)
        results = await throttled_gather(
            [_embed_batch(b) for b in batches], semaphore, return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]

        logger.info(
            "chunks_embedded",
            document_id=document.id,
            embedded=len(pending),
            batches=len(batches),
            dimension=dimension,
        )
        return {}


# ----------------------------------------------------------------------
# GENERATE_QUESTIONS
# ----------------------------------------------------------------------

class GenerateQuestionsStage(StageHandler):
    """Generates questions from the embedded chunks and stores them."""

    stage = PipelineStage.GENERATE_QUESTIONS

    def __init__(
        self,
        generator: QuestionGenerator,
        chunks: IChunkRepository,
        questions: IQuestionRepository,
    ) -> None:
        self._generator = generator
        self._chunks = chunks
        self._questions = questions

    async def run(self, job: PipelineJob, context: StageContext) -> dict[str, Any]:
        document = context.document
        chunks = await self._chunks.list_by_document(document.id)
        if not chunks:
            raise NoChunksProducedError(f"Document {document.id} has no chunks")

        questions = await self._generator.generate(document.id, chunks, context.checkpoint)

        await context.checkpoint()
        await self._questions.replace_for_document(document.id, questions)
        return {"questions_count": len(questions)}
