"""pdfquiz FastAPI application entry point.

Wires every provider, service and the pipeline together by constructor
injection, loads configuration from ``.env`` and ``config/config.yaml``,
configures structured logging, and starts the stage workers for the
lifetime of the app.

:func:`build_components` is shared with the CLI so both run the same
object graph.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

import pdfquiz
from pdfquiz.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from pdfquiz.api.routes import router as api_router
from pdfquiz.api.websocket import websocket_progress
from pdfquiz.config.loader import load_config
from pdfquiz.config.settings import Settings
from pdfquiz.models.pipeline import PipelineStage
from pdfquiz.pipeline.orchestrator import DocumentPipeline
from pdfquiz.pipeline.progress_notifier import ProgressNotifier
from pdfquiz.pipeline.retry_policy import RetryPolicy
from pdfquiz.pipeline.stages import (
    ChunkStage,
    EmbedStage,
    ExtractStage,
    GenerateQuestionsStage,
    UploadStage,
)
from pdfquiz.pipeline.state_machine import DocumentStateMachine
from pdfquiz.pipeline.workers import StageWorkerPool
from pdfquiz.providers.cache.memory_cache import MemoryCacheProvider
from pdfquiz.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from pdfquiz.providers.identity.hmac_identity import HmacIdentityProvider
from pdfquiz.providers.llm.openai_provider import OpenAILLMProvider
from pdfquiz.providers.persistence.sqlite_repositories import (
    SQLiteChunkRepository,
    SQLiteConversationRepository,
    SQLiteDocumentRepository,
    SQLiteQuestionRepository,
    initialize_database,
)
from pdfquiz.providers.push.expo_push_provider import ExpoPushProvider
from pdfquiz.providers.push.sqlite_token_store import SQLitePushTokenStore
from pdfquiz.providers.queue.memory_queue import InMemoryJobQueue
from pdfquiz.providers.storage.local_storage import LocalFileStorageProvider
from pdfquiz.services.chunker import TextChunker
from pdfquiz.services.pdf_extractor import PDFTextExtractor
from pdfquiz.services.qa_service import DocumentQAService
from pdfquiz.services.question_generator import QuestionGenerator
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def build_components(
    app_settings: Settings,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service for the application.

    Returns a flat dict of named components stored on ``app.state`` (or
    used directly by the CLI).  Nothing here performs I/O; call
    :func:`initialize_components` before use.
    """
    config = config or {}
    http_client = httpx.AsyncClient(timeout=app_settings.external_call_timeout_seconds)

    documents = SQLiteDocumentRepository(app_settings.database_path)
    chunks = SQLiteChunkRepository(app_settings.database_path)
    questions = SQLiteQuestionRepository(app_settings.database_path)
    conversations = SQLiteConversationRepository(app_settings.database_path)
    token_store = SQLitePushTokenStore(app_settings.database_path)

    storage = LocalFileStorageProvider(settings=app_settings)
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    llm = OpenAILLMProvider(settings=app_settings)
    push_provider = ExpoPushProvider(
        settings=app_settings, token_store=token_store, http_client=http_client
    )
    identity_provider = HmacIdentityProvider(settings=app_settings)
    cache = MemoryCacheProvider(
        max_size=config.get("cache", {}).get("max_size", 1000),
        ttl=app_settings.chat_cache_ttl_seconds,
    )

    similarity_index = SimilarityIndex(chunk_repository=chunks)
    extractor = PDFTextExtractor()
    chunker = TextChunker(
        chunk_size=app_settings.chunk_size_tokens,
        overlap=app_settings.chunk_overlap_tokens,
        min_chunk_size=app_settings.min_chunk_tokens,
    )
    question_generator = QuestionGenerator(
        llm_provider=llm,
        similarity_index=similarity_index,
        chunks_per_group=app_settings.questions_chunks_per_group,
        temperature=app_settings.question_temperature,
        max_tokens=app_settings.question_max_tokens,
        grounding_top_k=app_settings.grounding_top_k,
        grounding_min_score=app_settings.grounding_min_score,
    )
    qa_service = DocumentQAService(
        documents=documents,
        embedding_provider=embedding_provider,
        similarity_index=similarity_index,
        llm=llm,
        cache=cache,
        conversations=conversations,
        top_k=app_settings.chat_top_k,
        min_score=app_settings.chat_min_score,
        cache_ttl=app_settings.chat_cache_ttl_seconds,
    )

    queue = InMemoryJobQueue()
    state_machine = DocumentStateMachine(documents)
    notifier = ProgressNotifier(push_provider=push_provider)
    handlers = {
        PipelineStage.UPLOAD: UploadStage(storage, documents, state_machine),
        PipelineStage.EXTRACT: ExtractStage(storage, extractor),
        PipelineStage.CHUNK: ChunkStage(chunker, chunks, storage, extractor),
        PipelineStage.EMBED: EmbedStage(
            embedding_provider,
            chunks,
            batch_size=app_settings.embedding_batch_size,
            max_parallel_batches=config.get("pipeline", {}).get("embedding_parallel_batches", 2),
        ),
        PipelineStage.GENERATE_QUESTIONS: GenerateQuestionsStage(
            question_generator, chunks, questions
        ),
    }
    pipeline = DocumentPipeline(
        documents=documents,
        chunks=chunks,
        questions=questions,
        storage=storage,
        queue=queue,
        state_machine=state_machine,
        notifier=notifier,
        handlers=handlers,
        retry_policy=RetryPolicy(
            max_attempts=app_settings.max_attempts,
            backoff_base_seconds=app_settings.backoff_base_seconds,
        ),
        max_upload_bytes=app_settings.max_upload_bytes,
        allowed_content_type=app_settings.allowed_content_type,
        conversations=conversations,
    )
    workers = StageWorkerPool(
        pipeline=pipeline,
        queue=queue,
        concurrency=app_settings.stage_concurrency,
        rate_limit=app_settings.stage_rate_limit,
        rate_window_seconds=app_settings.stage_rate_window_seconds,
    )

    return {
        "settings": app_settings,
        "http_client": http_client,
        "token_store": token_store,
        "pipeline": pipeline,
        "workers": workers,
        "notifier": notifier,
        "qa_service": qa_service,
        "push_provider": push_provider,
        "identity_provider": identity_provider,
    }


async def initialize_components(components: dict[str, Any]) -> None:
    """Create the SQLite schema (documents, chunks, questions, push tokens)."""
    app_settings: Settings = components["settings"]
    await initialize_database(app_settings.database_path)
    token_store: SQLitePushTokenStore | None = components.get("token_store")
    if token_store is not None:
        await token_store.initialize()


async def close_components(components: dict[str, Any]) -> None:
    workers: StageWorkerPool | None = components.get("workers")
    if workers is not None:
        await workers.stop()
    http_client: httpx.AsyncClient | None = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    app_settings:
        Settings to build from; read from the environment when omitted.
    components:
        Prebuilt components (tests inject fakes here).  When given, no
        database initialisation happens at startup.
    """
    resolved_settings = app_settings or Settings()
    config = load_config(settings=resolved_settings)
    configure_logging(
        log_level=resolved_settings.log_level,
        json_output=(resolved_settings.app_env == "production"),
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
        built = components or build_components(resolved_settings, config)
        if components is None:
            await initialize_components(built)
        for key, value in built.items():
            setattr(application.state, key, value)
        application.state.settings = built.get("settings", resolved_settings)

        workers: StageWorkerPool | None = built.get("workers")
        if workers is not None:
            workers.start()

        _logger.info(
            "app_startup",
            version=pdfquiz.__version__,
            environment=resolved_settings.app_env,
            providers=resolved_settings.get_available_providers(),
        )
        try:
            yield
        finally:
            await close_components(built)
            _logger.info("app_shutdown")

    application = FastAPI(
        title="pdfquiz API",
        version=pdfquiz.__version__,
        description=(
            "Upload a PDF, have it extracted, chunked and embedded, and get "
            "multiple-choice study questions generated from its content."
        ),
        lifespan=_lifespan,
    )

    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=config.get("app", {}).get("cors_origins"))

    application.include_router(api_router)

    @application.websocket("/ws/documents/{document_id}")
    async def ws_document_progress(websocket: WebSocket, document_id: str) -> None:
        await websocket_progress(websocket, document_id)

    return application


def main() -> None:
    app_settings = Settings()
    uvicorn.run(
        "pdfquiz.main:create_app",
        factory=True,
        host=app_settings.app_host,
        port=app_settings.app_port,
        reload=(app_settings.app_env == "development"),
    )


if __name__ == "__main__":
    main()
