"""Unit tests for QuestionGenerator."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from pdfquiz.interfaces.llm_provider import ILLMProvider
from pdfquiz.models.chunk import Chunk
from pdfquiz.models.question import Difficulty
from pdfquiz.services.question_generator import QuestionGenerator, page_reference
from pdfquiz.services.similarity_index import SimilarityIndex
from pdfquiz.utils.errors import JobCancelledError, LLMResponseError, ProviderError


def _chunks(count: int, document_id: str = "doc-1") -> list[Chunk]:
    return [
        Chunk(
            id=f"c{i}",
            document_id=document_id,
            content=f"Content of chunk {i}.",
            page_number=i + 1,
            sequence=i,
            token_count=5,
            embedding=[1.0, float(i)],
        )
        for i in range(count)
    ]


def _question(answer: object = "B", options: list[str] | None = None, **extra: object) -> dict:
    item = {
        "question": "Which option is right?",
        "options": options or ["A) one", "B) two", "C) three", "D) four"],
        "correctAnswer": answer,
        "explanation": "Two is right.",
        "difficulty": "hard",
        "questionType": "multiple_choice",
    }
    item.update(extra)
    return item


def _payload(*items: dict) -> str:
    return json.dumps({"questions": list(items)})


@pytest.fixture()
def mock_llm() -> MagicMock:
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(return_value=_payload(_question()))
    llm.get_provider_name.return_value = "mock-llm"
    return llm


@pytest.fixture()
def mock_index() -> MagicMock:
    index = MagicMock(spec=SimilarityIndex)
    index.search = AsyncMock(return_value=[])
    return index


# ======================================================================
# page_reference
# ======================================================================


class TestPageReference:
    def test_single_page(self) -> None:
        assert page_reference(_chunks(1)) == "Page 1"

    def test_page_range(self) -> None:
        assert page_reference(_chunks(3)) == "Pages 1-3"

    def test_no_chunks(self) -> None:
        assert page_reference([]) == ""


# ======================================================================
# QuestionGenerator
# ======================================================================


class TestQuestionGenerator:
    @pytest.fixture()
    def generator(self, mock_llm, mock_index) -> QuestionGenerator:
        return QuestionGenerator(mock_llm, mock_index, chunks_per_group=2)

    def test_group_size_must_be_positive(self, mock_llm, mock_index) -> None:
        with pytest.raises(ValueError):
            QuestionGenerator(mock_llm, mock_index, chunks_per_group=0)

    @pytest.mark.asyncio
    async def test_one_llm_call_per_group(self, generator, mock_llm) -> None:
        questions = await generator.generate("doc-1", _chunks(5))

        assert mock_llm.complete.await_count == 3
        assert len(questions) == 3
        assert all(call.kwargs["json_mode"] for call in mock_llm.complete.await_args_list)

    @pytest.mark.asyncio
    async def test_questions_carry_source_chunks_and_pages(self, generator) -> None:
        questions = await generator.generate("doc-1", _chunks(2))

        question = questions[0]
        assert question.document_id == "doc-1"
        assert question.source_chunk_ids == ["c0", "c1"]
        assert question.page_reference == "Pages 1-2"
        assert question.options == ["one", "two", "three", "four"]
        assert question.correct_option_index == 1
        assert question.difficulty is Difficulty.HARD
        assert question.explanation == "Two is right."

    @pytest.mark.asyncio
    async def test_chunks_are_grouped_in_sequence_order(self, generator, mock_llm) -> None:
        chunks = list(reversed(_chunks(2)))

        await generator.generate("doc-1", chunks)

        prompt = mock_llm.complete.await_args.kwargs["user_prompt"]
        assert prompt.index("chunk 0") < prompt.index("chunk 1")

    @pytest.mark.asyncio
    async def test_related_context_excludes_group_chunks(self, generator, mock_index) -> None:
        await generator.generate("doc-1", _chunks(2))

        kwargs = mock_index.search.await_args.kwargs
        assert kwargs["exclude_ids"] == {"c0", "c1"}
        assert kwargs["k"] == 3

    @pytest.mark.asyncio
    async def test_fenced_json_is_accepted(self, generator, mock_llm) -> None:
        mock_llm.complete.return_value = f"Here you go:\n```json\n{_payload(_question())}\n```"

        questions = await generator.generate("doc-1", _chunks(1))

        assert len(questions) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("answer", "expected"),
        [("C", 2), ("d)", 3), (0, 0), ("1", 1), ("C) three", 2), ("four", 3)],
    )
    async def test_answer_formats(self, generator, mock_llm, answer, expected) -> None:
        mock_llm.complete.return_value = _payload(_question(answer=answer))

        questions = await generator.generate("doc-1", _chunks(1))

        assert questions[0].correct_option_index == expected

    @pytest.mark.asyncio
    async def test_unknown_difficulty_defaults_to_medium(self, generator, mock_llm) -> None:
        mock_llm.complete.return_value = _payload(_question(difficulty="impossible"))

        questions = await generator.generate("doc-1", _chunks(1))

        assert questions[0].difficulty is Difficulty.MEDIUM

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            "not json at all",
            json.dumps([1, 2, 3]),
            json.dumps({"items": []}),
            _payload(_question(options=["A) one", "B) two", "C) three"])),
            _payload(_question(answer="Z")),
            _payload(_question(answer=9)),
        ],
    )
    async def test_malformed_response_raises_llm_response_error(
        self, generator, mock_llm, response
    ) -> None:
        mock_llm.complete.return_value = response

        with pytest.raises(LLMResponseError):
            await generator.generate("doc-1", _chunks(1))

    @pytest.mark.asyncio
    async def test_empty_question_list_raises(self, generator, mock_llm) -> None:
        mock_llm.complete.return_value = _payload()

        with pytest.raises(LLMResponseError, match="no questions"):
            await generator.generate("doc-1", _chunks(1))

    @pytest.mark.asyncio
    async def test_provider_errors_propagate_unchanged(self, generator, mock_llm) -> None:
        mock_llm.complete.side_effect = ProviderError("timeout", provider_name="mock-llm")

        with pytest.raises(ProviderError):
            await generator.generate("doc-1", _chunks(1))

    @pytest.mark.asyncio
    async def test_checkpoint_runs_before_each_group(self, generator, mock_llm) -> None:
        checkpoint = AsyncMock(side_effect=[None, JobCancelledError()])

        with pytest.raises(JobCancelledError):
            await generator.generate("doc-1", _chunks(4), checkpoint=checkpoint)

        assert mock_llm.complete.await_count == 1
