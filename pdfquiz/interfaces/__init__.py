"""Interfaces for every external collaborator of the pipeline.

Business logic depends only on these ABCs; concrete adapters in
``pdfquiz/providers/`` are wired in by ``pdfquiz/main.py``.  Tests inject
in-memory fakes through the same contracts.

    Interface              ->  Concrete implementation
    -----------------------------------------------------------
    IStorageProvider       ->  LocalFileStorageProvider
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider
    ILLMProvider           ->  OpenAILLMProvider
    IPushProvider          ->  ExpoPushProvider
    IIdentityProvider      ->  HmacIdentityProvider
    IDocumentRepository    ->  SQLiteDocumentRepository
    IChunkRepository       ->  SQLiteChunkRepository
    IQuestionRepository    ->  SQLiteQuestionRepository
    IConversationRepository -> SQLiteConversationRepository
    IJobQueue              ->  InMemoryJobQueue
    ICacheProvider         ->  MemoryCacheProvider
"""

from pdfquiz.interfaces.cache_provider import ICacheProvider
from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.interfaces.conversation_repository import IConversationRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.interfaces.identity_provider import IIdentityProvider
from pdfquiz.interfaces.job_queue import IJobQueue
from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.interfaces.push_provider import IPushProvider
from pdfquiz.interfaces.question_repository import IQuestionRepository
from pdfquiz.interfaces.storage_provider import IStorageProvider

__all__ = [
    "ICacheProvider",
    "IChunkRepository",
    "IConversationRepository",
    "IDocumentRepository",
    "IEmbeddingProvider",
    "IIdentityProvider",
    "IJobQueue",
    "ILLMProvider",
    "IPushProvider",
    "IQuestionRepository",
    "IStorageProvider",
]
