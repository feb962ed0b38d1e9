"""Unit tests for DocumentQAService."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.models.chunk import Chunk
from pdfquiz.models.conversation import ChatMessage, MessageRole
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.providers.cache.memory_cache import MemoryCacheProvider
from pdfquiz.services.qa_service import DocumentQAService
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.errors import (
    ConfigurationError,
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentNotReadyError,
    ProviderError,
)


@pytest.fixture()
def query_embedder() -> MagicMock:
    embedder = MagicMock(spec=IEmbeddingProvider)
    embedder.embed = AsyncMock(return_value=[1.0, 0.0])
    return embedder


@pytest.fixture()
def answer_llm() -> MagicMock:
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(return_value="  The Calvin cycle runs in the stroma (page 2).  ")
    return llm


@pytest.fixture()
def cache() -> MemoryCacheProvider:
    return MemoryCacheProvider(max_size=10, ttl=60)


@pytest.fixture()
def service(
    document_repo, chunk_repo, conversation_repo, query_embedder, answer_llm, cache
) -> DocumentQAService:
    return DocumentQAService(
        documents=document_repo,
        embedding_provider=query_embedder,
        similarity_index=SimilarityIndex(chunk_repo),
        llm=answer_llm,
        cache=cache,
        conversations=conversation_repo,
        top_k=5,
        min_score=0.7,
    )


def _document(
    document_id: str = "d1", status: DocumentStatus = DocumentStatus.COMPLETED
) -> Document:
    return Document(
        id=document_id,
        owner_id="owner-1",
        title="Biology",
        original_filename="bio.pdf",
        status=status,
        storage_key=f"documents/{document_id}.pdf",
    )


async def _seed(document_repo, chunk_repo, status: DocumentStatus = DocumentStatus.COMPLETED) -> None:
    await document_repo.save(_document(status=status))
    await chunk_repo.add_chunks(
        [
            Chunk(
                id="relevant",
                document_id="d1",
                content="The Calvin cycle runs in the stroma.",
                page_number=2,
                sequence=0,
                token_count=8,
                embedding=[1.0, 0.0],
            ),
            Chunk(
                id="unrelated",
                document_id="d1",
                content="Chlorophyll reflects green light.",
                page_number=1,
                sequence=1,
                token_count=6,
                embedding=[0.0, 1.0],
            ),
        ]
    )


class TestDocumentQAService:
    @pytest.mark.asyncio
    async def test_answer_is_grounded_on_relevant_chunks(
        self, service, document_repo, chunk_repo, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)

        response = await service.ask("d1", "owner-1", "Where does the Calvin cycle run?")

        assert response.answer == "The Calvin cycle runs in the stroma (page 2)."
        assert response.sources == [{"chunk_id": "relevant", "page_number": 2, "similarity": 1.0}]
        assert response.cached is False
        prompt = answer_llm.complete.await_args.kwargs["user_prompt"]
        assert "[Page 2] The Calvin cycle runs in the stroma." in prompt
        assert "Chlorophyll" not in prompt

    @pytest.mark.asyncio
    async def test_repeat_question_is_served_from_cache(
        self, service, document_repo, chunk_repo, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)

        await service.ask("d1", "owner-1", "Where does the Calvin cycle run?")
        again = await service.ask("d1", "owner-1", "  where does the CALVIN cycle run? ")

        assert again.cached is True
        assert again.sources[0]["chunk_id"] == "relevant"
        assert answer_llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_follow_up_bypasses_cache_and_reaches_prompt(
        self, service, document_repo, chunk_repo, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)
        conversation = await service.start_conversation("d1", "owner-1")

        await service.ask("d1", "owner-1", "And the Calvin cycle?")
        first = await service.ask(
            "d1", "owner-1", "And the Calvin cycle?", conversation_id=conversation.id
        )
        second = await service.ask(
            "d1", "owner-1", "And the Calvin cycle?", conversation_id=conversation.id
        )

        # The first turn of a conversation has no history, so the cache applies.
        assert first.cached is True
        assert second.cached is False
        assert answer_llm.complete.await_count == 2
        prompt = answer_llm.complete.await_args.kwargs["user_prompt"]
        assert "user: And the Calvin cycle?" in prompt
        assert "assistant: The Calvin cycle runs in the stroma (page 2)." in prompt

    @pytest.mark.asyncio
    async def test_no_relevant_chunks_still_answers(
        self, service, document_repo, chunk_repo, query_embedder, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)
        query_embedder.embed.return_value = [0.6, -0.8]

        response = await service.ask("d1", "owner-1", "Unrelated question?")

        assert response.sources == []
        assert "no sufficiently relevant excerpts" in answer_llm.complete.await_args.kwargs["user_prompt"]

    @pytest.mark.asyncio
    async def test_provider_failure_returns_fallback(
        self, service, document_repo, chunk_repo, answer_llm, cache
    ) -> None:
        await _seed(document_repo, chunk_repo)
        answer_llm.complete.side_effect = ProviderError("timeout", provider_name="mock")

        response = await service.ask("d1", "owner-1", "Where does the Calvin cycle run?")

        assert "wasn't able to answer" in response.answer
        assert response.sources == []
        assert len(cache._cache) == 0

    @pytest.mark.asyncio
    async def test_other_owner_gets_not_found(self, service, document_repo, chunk_repo) -> None:
        await _seed(document_repo, chunk_repo)

        with pytest.raises(DocumentNotFoundError):
            await service.ask("d1", "intruder", "Anything?")

    @pytest.mark.asyncio
    async def test_unfinished_document_is_not_ready(
        self, service, document_repo, chunk_repo, query_embedder
    ) -> None:
        await _seed(document_repo, chunk_repo, status=DocumentStatus.CHUNKING)

        with pytest.raises(DocumentNotReadyError):
            await service.ask("d1", "owner-1", "Anything?")
        query_embedder.embed.assert_not_called()


class TestConversations:
    @pytest.mark.asyncio
    async def test_start_requires_a_completed_document(
        self, service, document_repo, chunk_repo
    ) -> None:
        await _seed(document_repo, chunk_repo, status=DocumentStatus.CHUNKING)

        with pytest.raises(DocumentNotReadyError):
            await service.start_conversation("d1", "owner-1")
        with pytest.raises(DocumentNotFoundError):
            await service.start_conversation("d1", "intruder")

    @pytest.mark.asyncio
    async def test_start_uses_default_title(self, service, document_repo, chunk_repo) -> None:
        await _seed(document_repo, chunk_repo)

        untitled = await service.start_conversation("d1", "owner-1", title="   ")
        titled = await service.start_conversation("d1", "owner-1", title="Chapter 2")

        assert untitled.title == "New conversation"
        assert titled.title == "Chapter 2"
        assert untitled.document_id == "d1"

    @pytest.mark.asyncio
    async def test_ask_saves_both_turns(
        self, service, document_repo, chunk_repo, conversation_repo
    ) -> None:
        await _seed(document_repo, chunk_repo)
        conversation = await service.start_conversation("d1", "owner-1")

        response = await service.ask(
            "d1", "owner-1", "Where does the Calvin cycle run?", conversation_id=conversation.id
        )

        assert response.conversation_id == conversation.id
        _, messages = await service.get_conversation(conversation.id, "owner-1")
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "Where does the Calvin cycle run?"),
            (MessageRole.ASSISTANT, "The Calvin cycle runs in the stroma (page 2)."),
        ]
        stored = await conversation_repo.get_for_owner(conversation.id, "owner-1")
        assert stored.updated_at == messages[-1].created_at

    @pytest.mark.asyncio
    async def test_only_the_last_ten_turns_are_sent(
        self, service, document_repo, chunk_repo, conversation_repo, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)
        conversation = await service.start_conversation("d1", "owner-1")
        for i in range(12):
            role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
            await conversation_repo.add_message(
                ChatMessage(conversation_id=conversation.id, role=role, content=f"turn-{i:02d}")
            )

        await service.ask("d1", "owner-1", "Next?", conversation_id=conversation.id)

        prompt = answer_llm.complete.await_args.kwargs["user_prompt"]
        assert "turn-00" not in prompt
        assert "turn-01" not in prompt
        assert "user: turn-02" in prompt
        assert "assistant: turn-11" in prompt
        assert prompt.index("turn-02") < prompt.index("turn-11")
        assert len(await conversation_repo.list_messages(conversation.id)) == 14

    @pytest.mark.asyncio
    async def test_conversation_of_another_document_is_not_found(
        self, service, document_repo, chunk_repo, conversation_repo
    ) -> None:
        await _seed(document_repo, chunk_repo)
        await document_repo.save(_document("d2"))
        conversation = await service.start_conversation("d2", "owner-1")

        with pytest.raises(ConversationNotFoundError):
            await service.ask("d1", "owner-1", "Anything?", conversation_id=conversation.id)
        assert await conversation_repo.list_messages(conversation.id) == []

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_not_found(
        self, service, document_repo, chunk_repo
    ) -> None:
        await _seed(document_repo, chunk_repo)

        with pytest.raises(ConversationNotFoundError):
            await service.ask("d1", "owner-1", "Anything?", conversation_id="missing")
        with pytest.raises(ConversationNotFoundError):
            await service.get_conversation("missing", "owner-1")

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_only_the_question(
        self, service, document_repo, chunk_repo, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)
        conversation = await service.start_conversation("d1", "owner-1")
        answer_llm.complete.side_effect = ProviderError("timeout", provider_name="mock")

        response = await service.ask(
            "d1", "owner-1", "Where does the Calvin cycle run?", conversation_id=conversation.id
        )

        assert "wasn't able to answer" in response.answer
        _, messages = await service.get_conversation(conversation.id, "owner-1")
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_list_and_delete_are_scoped_to_owner(
        self, service, document_repo, chunk_repo, conversation_repo
    ) -> None:
        await _seed(document_repo, chunk_repo)
        await document_repo.save(_document("d2"))
        older = await service.start_conversation("d1", "owner-1")
        newer = await service.start_conversation("d2", "owner-1")
        await conversation_repo.add_message(
            ChatMessage(
                conversation_id=newer.id,
                role=MessageRole.USER,
                content="Hello",
                created_at=older.updated_at + timedelta(seconds=1),
            )
        )

        assert [c.id for c in await service.list_conversations("owner-1")] == [newer.id, older.id]
        assert [c.id for c in await service.list_conversations("owner-1", "d1")] == [older.id]
        assert await service.list_conversations("intruder") == []

        with pytest.raises(ConversationNotFoundError):
            await service.delete_conversation(older.id, "intruder")
        await service.delete_conversation(older.id, "owner-1")

        with pytest.raises(ConversationNotFoundError):
            await service.get_conversation(older.id, "owner-1")

    @pytest.mark.asyncio
    async def test_conversations_need_a_repository(
        self, document_repo, chunk_repo, query_embedder, answer_llm
    ) -> None:
        await _seed(document_repo, chunk_repo)
        service = DocumentQAService(
            documents=document_repo,
            embedding_provider=query_embedder,
            similarity_index=SimilarityIndex(chunk_repo),
            llm=answer_llm,
        )

        with pytest.raises(ConfigurationError):
            await service.start_conversation("d1", "owner-1")
        with pytest.raises(ConfigurationError):
            await service.ask("d1", "owner-1", "Anything?", conversation_id="c1")
