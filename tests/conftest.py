"""Shared pytest fixtures and in-memory fakes for the pdfquiz test suite."""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
import re
import textwrap
from dataclasses import dataclass, field
from typing import Any

import fitz
import pytest
import structlog

from pdfquiz.config.settings import Settings
from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.interfaces.conversation_repository import IConversationRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.interfaces.push_provider import IPushProvider
from pdfquiz.interfaces.question_repository import IQuestionRepository
from pdfquiz.interfaces.storage_provider import IStorageProvider
from pdfquiz.models.chunk import Chunk
from pdfquiz.models.conversation import ChatMessage, Conversation
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.models.pipeline import PipelineStage
from pdfquiz.models.question import Question
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
from pdfquiz.providers.queue.memory_queue import InMemoryJobQueue
from pdfquiz.services.chunker import TextChunker
from pdfquiz.services.pdf_extractor import PDFTextExtractor
from pdfquiz.services.question_generator import QuestionGenerator
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.errors import ProviderError, StorageError, StorageObjectNotFoundError

# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------

PHOTOSYNTHESIS_PAGES = [
    "Photosynthesis is the process plants use to turn light into chemical energy. "
    "It takes place mainly in the chloroplasts of leaf cells. "
    "Chlorophyll absorbs red and blue light and reflects green light. "
    "The light reactions split water and release oxygen as a by-product.",
    "The Calvin cycle uses carbon dioxide from the air to build sugars. "
    "It runs in the stroma and depends on ATP and NADPH from the light reactions. "
    "The enzyme RuBisCO fixes carbon dioxide onto a five-carbon sugar. "
    "Plants store the resulting glucose as starch for later use.",
]


def make_pdf(pages: list[str]) -> bytes:
    """Build a small text PDF with one page per string."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            wrapped = "\n".join(textwrap.wrap(text, width=80))
            page.insert_text((72, 72), wrapped, fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def questions_json(count: int = 3, answer: str = "B") -> str:
    """A well-formed question-generation response."""
    return json.dumps(
        {
            "questions": [
                {
                    "question": f"Sample question {i + 1}?",
                    "options": ["A) first", "B) second", "C) third", "D) fourth"],
                    "correctAnswer": answer,
                    "explanation": "Because the text says so.",
                    "difficulty": ["easy", "medium", "hard"][i % 3],
                    "questionType": "multiple_choice",
                }
                for i in range(count)
            ]
        }
    )


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


class InMemoryStorage(IStorageProvider):
    """Dict-backed object storage; ``fail_puts`` makes the next N puts fail."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_puts = 0
        self.put_calls = 0

    async def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        self.put_calls += 1
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StorageError("storage unavailable", provider_name="memory")
        self.objects[key] = data
        return f"memory://{key}"

    async def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageObjectNotFoundError(f"No object {key}", provider_name="memory")
        return self.objects[key]

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    def get_provider_name(self) -> str:
        return "memory"


class HashingEmbeddingProvider(IEmbeddingProvider):
    """Deterministic bag-of-words embeddings: words hashed into buckets."""

    def __init__(self, dimension: int = 32) -> None:
        self._dimension = dimension
        self.batch_calls: list[list[str]] = []
        self.fail_batches = 0

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise ProviderError("embedding timeout", provider_name="hashing")
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "hashing"

    def is_available(self) -> bool:
        return True


class ScriptedLLM(ILLMProvider):
    """Returns queued responses (or raises queued exceptions), then ``default``."""

    def __init__(self, responses: list[str | Exception] | None = None, default: str | None = None) -> None:
        self.responses: list[str | Exception] = list(responses or [])
        self.default = default if default is not None else questions_json()
        self.calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {"system_prompt": system_prompt, "user_prompt": user_prompt, "json_mode": json_mode}
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default

    def get_provider_name(self) -> str:
        return "scripted"

    def is_available(self) -> bool:
        return True


class RecordingPushProvider(IPushProvider):
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.tokens: dict[str, set[str]] = {}

    async def send(
        self, owner_id: str, title: str, body: str, data: dict[str, Any] | None = None
    ) -> int:
        self.sent.append({"owner_id": owner_id, "title": title, "body": body, "data": data or {}})
        return 1

    async def register_token(self, owner_id: str, token: str, platform: str = "") -> None:
        if not token.startswith("ExponentPushToken["):
            raise ValueError("Not an Expo push token")
        self.tokens.setdefault(owner_id, set()).add(token)

    async def remove_token(self, owner_id: str, token: str) -> bool:
        tokens = self.tokens.get(owner_id, set())
        if token in tokens:
            tokens.discard(token)
            return True
        return False


class InMemoryDocumentRepository(IDocumentRepository):
    def __init__(self) -> None:
        self.rows: dict[str, Document] = {}

    async def get(self, document_id: str) -> Document | None:
        return self.rows.get(document_id)

    async def get_for_owner(self, document_id: str, owner_id: str) -> Document | None:
        document = self.rows.get(document_id)
        if document is None or document.owner_id != owner_id:
            return None
        return document

    async def list_for_owner(self, owner_id: str) -> list[Document]:
        return sorted(
            (d for d in self.rows.values() if d.owner_id == owner_id),
            key=lambda d: d.created_at,
            reverse=True,
        )

    async def save(self, document: Document) -> None:
        self.rows[document.id] = document

    async def update_status(
        self,
        document_id: str,
        expected: DocumentStatus,
        status: DocumentStatus,
        fields: dict[str, Any] | None = None,
    ) -> Document | None:
        document = self.rows.get(document_id)
        if document is None or document.status is not expected:
            return None
        updated = document.model_copy(update={"status": status, **(fields or {})})
        self.rows[document_id] = updated
        return updated

    async def set_storage_key(self, document_id: str, storage_key: str) -> Document | None:
        document = self.rows.get(document_id)
        if document is None:
            return None
        updated = document.model_copy(update={"storage_key": storage_key})
        self.rows[document_id] = updated
        return updated

    async def delete(self, document_id: str) -> bool:
        return self.rows.pop(document_id, None) is not None


class InMemoryChunkRepository(IChunkRepository):
    def __init__(self) -> None:
        self.rows: dict[str, Chunk] = {}

    async def add_chunks(self, chunks: list[Chunk]) -> None:
        for chunk in chunks:
            self.rows[chunk.id] = chunk

    async def list_by_document(self, document_id: str) -> list[Chunk]:
        return sorted(
            (c for c in self.rows.values() if c.document_id == document_id),
            key=lambda c: c.sequence,
        )

    async def set_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        updated = 0
        for chunk_id, vector in embeddings.items():
            if chunk_id in self.rows:
                self.rows[chunk_id] = self.rows[chunk_id].model_copy(update={"embedding": vector})
                updated += 1
        return updated

    async def delete_by_document(self, document_id: str) -> int:
        doomed = [cid for cid, c in self.rows.items() if c.document_id == document_id]
        for chunk_id in doomed:
            del self.rows[chunk_id]
        return len(doomed)

    async def count(self, document_id: str) -> int:
        return sum(1 for c in self.rows.values() if c.document_id == document_id)


class InMemoryQuestionRepository(IQuestionRepository):
    def __init__(self) -> None:
        self.by_document: dict[str, list[Question]] = {}

    async def replace_for_document(self, document_id: str, questions: list[Question]) -> None:
        self.by_document[document_id] = list(questions)

    async def list_by_document(self, document_id: str) -> list[Question]:
        return list(self.by_document.get(document_id, []))

    async def delete_by_document(self, document_id: str) -> int:
        return len(self.by_document.pop(document_id, []))

    async def count(self, document_id: str) -> int:
        return len(self.by_document.get(document_id, []))


class InMemoryConversationRepository(IConversationRepository):
    def __init__(self) -> None:
        self.rows: dict[str, Conversation] = {}
        self.messages: dict[str, list[ChatMessage]] = {}

    async def create(self, conversation: Conversation) -> Conversation:
        self.rows[conversation.id] = conversation
        self.messages[conversation.id] = []
        return conversation

    async def get_for_owner(self, conversation_id: str, owner_id: str) -> Conversation | None:
        conversation = self.rows.get(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            return None
        return conversation

    async def list_for_owner(
        self, owner_id: str, document_id: str | None = None
    ) -> list[Conversation]:
        return sorted(
            (
                c
                for c in self.rows.values()
                if c.owner_id == owner_id and document_id in (None, c.document_id)
            ),
            key=lambda c: c.updated_at,
            reverse=True,
        )

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        self.messages.setdefault(message.conversation_id, []).append(message)
        conversation = self.rows.get(message.conversation_id)
        if conversation is not None:
            self.rows[conversation.id] = conversation.model_copy(
                update={"updated_at": message.created_at}
            )
        return message

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> list[ChatMessage]:
        return list(self.messages.get(conversation_id, [])[-limit:]) if limit > 0 else []

    async def list_messages(self, conversation_id: str) -> list[ChatMessage]:
        return list(self.messages.get(conversation_id, []))

    async def delete(self, conversation_id: str) -> bool:
        self.messages.pop(conversation_id, None)
        return self.rows.pop(conversation_id, None) is not None

    async def delete_by_document(self, document_id: str) -> int:
        doomed = [cid for cid, c in self.rows.items() if c.document_id == document_id]
        for conversation_id in doomed:
            await self.delete(conversation_id)
        return len(doomed)


# ---------------------------------------------------------------------------
# Pipeline harness
# ---------------------------------------------------------------------------


@dataclass
class PipelineHarness:
    pipeline: DocumentPipeline
    queue: InMemoryJobQueue
    documents: InMemoryDocumentRepository
    chunks: InMemoryChunkRepository
    questions: InMemoryQuestionRepository
    conversations: InMemoryConversationRepository
    storage: InMemoryStorage
    embedder: HashingEmbeddingProvider
    llm: ScriptedLLM
    push: RecordingPushProvider
    notifier: ProgressNotifier
    state_machine: DocumentStateMachine
    events: list[Any] = field(default_factory=list)

    async def drain(self, max_jobs: int = 200) -> int:
        """Process queued jobs stage by stage until the queue is empty."""
        processed = 0
        while self.queue.pending_count() and processed < max_jobs:
            for stage in PipelineStage:
                if self.queue.pending_count(stage):
                    job = await asyncio.wait_for(self.queue.dequeue(stage), timeout=1.0)
                    await self.pipeline.process_job(job)
                    processed += 1
        return processed

    def events_for(self, document_id: str) -> list[Any]:
        return [e for e in self.events if e.document_id == document_id]


def build_harness(
    llm_responses: list[str | Exception] | None = None,
    max_attempts: int = 3,
    chunk_size: int = 60,
    overlap: int = 10,
    min_chunk_size: int = 5,
) -> PipelineHarness:
    documents = InMemoryDocumentRepository()
    chunks = InMemoryChunkRepository()
    questions = InMemoryQuestionRepository()
    conversations = InMemoryConversationRepository()
    storage = InMemoryStorage()
    embedder = HashingEmbeddingProvider()
    llm = ScriptedLLM(llm_responses)
    push = RecordingPushProvider()
    queue = InMemoryJobQueue()
    state_machine = DocumentStateMachine(documents)
    notifier = ProgressNotifier(push_provider=push)
    extractor = PDFTextExtractor()
    index = SimilarityIndex(chunks)

    handlers = {
        PipelineStage.UPLOAD: UploadStage(storage, documents, state_machine),
        PipelineStage.EXTRACT: ExtractStage(storage, extractor),
        PipelineStage.CHUNK: ChunkStage(
            TextChunker(chunk_size=chunk_size, overlap=overlap, min_chunk_size=min_chunk_size),
            chunks,
            storage,
            extractor,
        ),
        PipelineStage.EMBED: EmbedStage(embedder, chunks, batch_size=5),
        PipelineStage.GENERATE_QUESTIONS: GenerateQuestionsStage(
            QuestionGenerator(llm, index), chunks, questions
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
        retry_policy=RetryPolicy(max_attempts=max_attempts, backoff_base_seconds=0.0),
        conversations=conversations,
    )
    harness = PipelineHarness(
        pipeline=pipeline,
        queue=queue,
        documents=documents,
        chunks=chunks,
        questions=questions,
        conversations=conversations,
        storage=storage,
        embedder=embedder,
        llm=llm,
        push=push,
        notifier=notifier,
        state_machine=state_machine,
    )
    notifier.register_owner_listener("owner-1", harness.events.append)
    return harness


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Drop structlog config after each test so no logger keeps a closed capture stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        auth_secret="test-secret",
        storage_dir=str(tmp_path / "objects"),
        database_path=str(tmp_path / "pdfquiz.db"),
        openai_api_key="",
        push_enabled=False,
    )


@pytest.fixture()
def sample_pdf() -> bytes:
    return make_pdf(PHOTOSYNTHESIS_PAGES)


@pytest.fixture()
def harness() -> PipelineHarness:
    return build_harness()


@pytest.fixture()
def harness_factory():
    """Build a harness with custom LLM responses, attempt limit or chunk sizes."""
    return build_harness


@pytest.fixture()
def pdf_factory():
    return make_pdf


@pytest.fixture()
def questions_payload():
    return questions_json


@pytest.fixture()
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def document_repo() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def chunk_repo() -> InMemoryChunkRepository:
    return InMemoryChunkRepository()


@pytest.fixture()
def conversation_repo() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture()
def embedder() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture()
def push_recorder() -> RecordingPushProvider:
    return RecordingPushProvider()
