"""Retrieval-augmented chat over a processed document.

Flow for one question:

  1. ACCESS      -- the document must exist, belong to the caller and be
                    COMPLETED.
  2. HISTORY     -- when a conversation is given, its last ten turns are
                    loaded and the question is saved as a user turn.
  3. CACHE CHECK -- answers are cached by a hash of (document, question).
  4. RETRIEVE    -- the question is embedded and the document's chunks are
                    ranked by cosine similarity (``chat_top_k`` results at or
                    above ``chat_min_score``).
  5. SYNTHESISE  -- retrieved chunks, recent conversation turns and the
                    question go to the LLM.
  6. CACHE STORE -- the answer and its sources are cached.
  7. SAVE        -- the answer is saved as an assistant turn.

Only questions without prior turns read or write the cache.

Sources carry ``chunk_id``, ``page_number`` and ``similarity`` so clients
can show where an answer came from.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import structlog

from pdfquiz.interfaces.cache_provider import ICacheProvider
from pdfquiz.interfaces.conversation_repository import IConversationRepository
from pdfquiz.interfaces.document_repository import IDocumentRepository
from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.models.chunk import ScoredChunk
from pdfquiz.models.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    ChatMessage,
    Conversation,
    MessageRole,
)
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.errors import (
    ConfigurationError,
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentNotReadyError,
    ProviderError,
)
from pdfquiz.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

_HISTORY_TURNS = 10

_FALLBACK_ANSWER = "I wasn't able to answer that question right now. Please try again."


class QAResponse:
    """Answer text plus the chunks it was grounded on."""

    def __init__(
        self,
        answer: str,
        sources: list[dict[str, Any]],
        cached: bool = False,
        conversation_id: str | None = None,
    ) -> None:
        self._answer = answer
        self._sources = list(sources)
        self._cached = cached
        self._conversation_id = conversation_id

    @property
    def answer(self) -> str:
        return self._answer

    @property
    def sources(self) -> list[dict[str, Any]]:
        return list(self._sources)

    @property
    def cached(self) -> bool:
        return self._cached

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id


class DocumentQAService:
    """Answers questions about one completed document.

    Parameters
    ----------
    documents:
        Used for the ownership and readiness check.
    embedding_provider:
        Embeds the question.
    similarity_index:
        Ranks the document's chunks against the question.
    llm:
        Writes the answer.
    cache:
        Optional answer cache.
    conversations:
        Stores conversations and their turns.  Required for every
        conversation operation and for ``ask`` with a ``conversation_id``.
    top_k, min_score:
        Retrieval bounds.
    """

    _SYSTEM_PROMPT = (
        "You are a study assistant answering questions about one document. "
        "Use only the provided excerpts. If they do not contain the answer, "
        "say so plainly. Mention page numbers when they help. Answer in at "
        "most three short paragraphs."
    )

    def __init__(
        self,
        documents: IDocumentRepository,
        embedding_provider: IEmbeddingProvider,
        similarity_index: SimilarityIndex,
        llm: ILLMProvider,
        cache: ICacheProvider | None = None,
        conversations: IConversationRepository | None = None,
        top_k: int = 5,
        min_score: float = 0.7,
        cache_ttl: int = 3600,
    ) -> None:
        self._documents = documents
        self._embedder = embedding_provider
        self._index = similarity_index
        self._llm = llm
        self._cache = cache
        self._conversations = conversations
        self._top_k = top_k
        self._min_score = min_score
        self._cache_ttl = cache_ttl

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def start_conversation(
        self, document_id: str, owner_id: str, title: str | None = None
    ) -> Conversation:
        """Open a new conversation about a COMPLETED document."""
        repo = self._require_conversations()
        await self._completed_document(document_id, owner_id)
        conversation = await repo.create(
            Conversation(
                owner_id=owner_id,
                document_id=document_id,
                title=(title or "").strip() or DEFAULT_CONVERSATION_TITLE,
            )
        )
        logger.info(
            "conversation_started",
            conversation_id=conversation.id,
            document_id=document_id,
        )
        return conversation

    async def get_conversation(
        self, conversation_id: str, owner_id: str
    ) -> tuple[Conversation, list[ChatMessage]]:
        """Return the conversation and all of its turns, oldest first."""
        repo = self._require_conversations()
        conversation = await repo.get_for_owner(conversation_id, owner_id)
        if conversation is None:
            raise ConversationNotFoundError()
        return conversation, await repo.list_messages(conversation_id)

    async def list_conversations(
        self, owner_id: str, document_id: str | None = None
    ) -> list[Conversation]:
        return await self._require_conversations().list_for_owner(owner_id, document_id)

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> None:
        repo = self._require_conversations()
        if await repo.get_for_owner(conversation_id, owner_id) is None:
            raise ConversationNotFoundError()
        await repo.delete(conversation_id)
        logger.info("conversation_deleted", conversation_id=conversation_id)

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def ask(
        self,
        document_id: str,
        owner_id: str,
        question: str,
        conversation_id: str | None = None,
    ) -> QAResponse:
        """Answer *question* from the document's content.

        With a *conversation_id* the last ten turns of that conversation
        are sent as context, the question is saved as a user turn and a
        successful answer as an assistant turn.  The fallback answer given
        when a provider fails is not saved.

        Raises
        ------
        DocumentNotFoundError
            If the document is missing or owned by someone else.
        DocumentNotReadyError
            If processing has not completed.
        ConversationNotFoundError
            If the conversation is missing, not owned by the caller or
            about another document.
        """
        await self._completed_document(document_id, owner_id)

        history: list[dict[str, str]] = []
        if conversation_id is not None:
            repo = self._require_conversations()
            conversation = await repo.get_for_owner(conversation_id, owner_id)
            if conversation is None or conversation.document_id != document_id:
                raise ConversationNotFoundError()
            recent = await repo.recent_messages(conversation_id, limit=_HISTORY_TURNS)
            history = [message.as_turn() for message in recent]
            await repo.add_message(
                ChatMessage(
                    conversation_id=conversation_id,
                    role=MessageRole.USER,
                    content=question,
                )
            )

        cache_key = self._cache_key(document_id, question)
        if self._cache is not None and not history:
            cached = await self._cache.get(cache_key)
            if cached:
                logger.debug("qa_cache_hit", document_id=document_id)
                data = json.loads(cached)
                response = QAResponse(
                    data["answer"],
                    data.get("sources", []),
                    cached=True,
                    conversation_id=conversation_id,
                )
                await self._save_answer(response)
                return response

        try:
            query = await self._embedder.embed(question)
            results = await self._index.search(
                document_id, query, k=self._top_k, min_score=self._min_score
            )
            answer = await self._llm.complete(
                system_prompt=self._SYSTEM_PROMPT,
                user_prompt=self._build_user_prompt(question, results, history),
                temperature=0.3,
                max_tokens=1000,
            )
        except ProviderError as exc:
            logger.error("qa_llm_failed", document_id=document_id, error=str(exc))
            return QAResponse(_FALLBACK_ANSWER, [], conversation_id=conversation_id)

        sources = [
            {
                "chunk_id": r.chunk.id,
                "page_number": r.chunk.page_number,
                "similarity": round(r.score, 4),
            }
            for r in results
        ]
        response = QAResponse(answer.strip(), sources, conversation_id=conversation_id)

        if self._cache is not None and not history:
            await self._cache.set(
                cache_key,
                json.dumps({"answer": response.answer, "sources": sources}),
                ttl=self._cache_ttl,
            )
        await self._save_answer(response)

        logger.info(
            "qa_answered",
            document_id=document_id,
            conversation_id=conversation_id,
            sources=len(sources),
            history_turns=len(history),
        )
        return response

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _completed_document(self, document_id: str, owner_id: str) -> Document:
        document = await self._documents.get_for_owner(document_id, owner_id)
        if document is None:
            raise DocumentNotFoundError()
        if document.status is not DocumentStatus.COMPLETED:
            raise DocumentNotReadyError()
        return document

    async def _save_answer(self, response: QAResponse) -> None:
        if response.conversation_id is None or self._conversations is None:
            return
        await self._conversations.add_message(
            ChatMessage(
                conversation_id=response.conversation_id,
                role=MessageRole.ASSISTANT,
                content=response.answer,
            )
        )

    def _require_conversations(self) -> IConversationRepository:
        if self._conversations is None:
            raise ConfigurationError(
                "Conversation storage is not configured", provider_name="qa_service"
            )
        return self._conversations

    @staticmethod
    def _build_user_prompt(
        question: str,
        results: list[ScoredChunk],
        history: list[dict[str, str]],
    ) -> str:
        parts: list[str] = []
        if results:
            excerpts = "\n\n".join(
                f"[Page {r.chunk.page_number}] {r.chunk.content}" for r in results
            )
            parts.append(f"EXCERPTS:\n{excerpts}")
        else:
            parts.append("EXCERPTS:\n(no sufficiently relevant excerpts were found)")

        if history:
            turns = "\n".join(
                f"{turn.get('role', 'user')}: {turn.get('content', '')}"
                for turn in history[-_HISTORY_TURNS:]
            )
            parts.append(f"CONVERSATION SO FAR:\n{turns}")

        parts.append(f"QUESTION:\n{question}")
        return "\n\n".join(parts)

    @staticmethod
    def _cache_key(document_id: str, question: str) -> str:
        normalised = " ".join(question.lower().split())
        digest = hashlib.sha256(f"{document_id}:{normalised}".encode()).hexdigest()
        return f"qa:{digest}"
