"""Unit tests for the Pydantic domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pdfquiz.models.chunk import Chunk, ChunkCandidate, PageRange
from pdfquiz.models.conversation import ChatMessage, Conversation, MessageRole
from pdfquiz.models.document import Document, DocumentStatus
from pdfquiz.models.pipeline import PipelineJob, PipelineStage, ProgressEvent
from pdfquiz.models.question import Question


# ======================================================================
# Document
# ======================================================================


class TestDocument:
    def test_defaults(self) -> None:
        document = Document(owner_id="o1", title="Notes", original_filename="notes.pdf")

        assert document.status is DocumentStatus.UPLOADING
        assert document.storage_key is None
        assert document.id

    def test_is_frozen(self) -> None:
        document = Document(owner_id="o1", title="Notes", original_filename="notes.pdf")

        with pytest.raises(ValidationError):
            document.status = DocumentStatus.COMPLETED  # type: ignore[misc]

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [
            (DocumentStatus.UPLOADING, False),
            (DocumentStatus.GENERATING_QUESTIONS, False),
            (DocumentStatus.COMPLETED, True),
            (DocumentStatus.FAILED, True),
            (DocumentStatus.CANCELLED, True),
        ],
    )
    def test_terminal_statuses(self, status: DocumentStatus, terminal: bool) -> None:
        assert status.is_terminal is terminal
        assert status.is_in_flight is not terminal


# ======================================================================
# Chunks
# ======================================================================


class TestChunkModels:
    def test_page_range_is_half_open(self) -> None:
        page = PageRange(page_number=1, start_index=0, end_index=10)

        assert page.contains(0)
        assert page.contains(9)
        assert not page.contains(10)

    def test_chunk_from_candidate(self) -> None:
        candidate = ChunkCandidate(content="Some text.", page_number=3, sequence=4, token_count=3)

        chunk = Chunk.from_candidate("d1", candidate)

        assert chunk.document_id == "d1"
        assert (chunk.page_number, chunk.sequence, chunk.token_count) == (3, 4, 3)
        assert chunk.embedding is None

    def test_page_numbers_are_one_based(self) -> None:
        with pytest.raises(ValidationError):
            ChunkCandidate(content="x", page_number=0, sequence=0, token_count=1)


# ======================================================================
# Question
# ======================================================================


class TestQuestion:
    def test_generated_question_needs_four_options(self) -> None:
        with pytest.raises(ValidationError):
            Question(document_id="d1", question="Q?", options=["a", "b"], correct_option_index=0)

    def test_answer_index_must_be_in_range(self) -> None:
        with pytest.raises(ValidationError):
            Question(
                document_id="d1", question="Q?", options=["a", "b", "c", "d"], correct_option_index=4
            )

    def test_manual_question_may_have_other_option_counts(self) -> None:
        question = Question(
            document_id="d1",
            question="True or false?",
            options=["True", "False"],
            correct_option_index=1,
            ai_generated=False,
        )

        assert question.options == ["True", "False"]


# ======================================================================
# Pipeline models
# ======================================================================


class TestPipelineModels:
    def test_next_attempt_increments_and_keeps_identity(self) -> None:
        job = PipelineJob(document_id="d1", owner_id="o1", stage=PipelineStage.EMBED)

        retried = job.next_attempt("timeout")

        assert retried.attempt == 2
        assert retried.last_error == "timeout"
        assert retried.correlation_id == job.correlation_id
        assert job.attempt == 1

    def test_progress_event_wire_format(self) -> None:
        progress_event = ProgressEvent(
            document_id="d1",
            owner_id="o1",
            status=DocumentStatus.COMPLETED,
            progress=100,
            message="Processing complete",
            event="completed",
            data={"questions_count": 6},
        )

        wire = progress_event.to_wire()

        assert wire["type"] == "completed"
        assert wire["status"] == "completed"
        assert wire["progress"] == 100
        assert wire["questions_count"] == 6
        assert "owner_id" not in wire
        assert progress_event.is_terminal

    def test_progress_is_bounded(self) -> None:
        with pytest.raises(ValidationError):
            ProgressEvent(
                document_id="d1", owner_id="o1", status=DocumentStatus.CHUNKING, progress=101
            )


# ======================================================================
# Conversation models
# ======================================================================


class TestConversationModels:
    def test_conversation_defaults(self) -> None:
        conversation = Conversation(owner_id="o1", document_id="d1")

        assert conversation.title == "New conversation"
        assert conversation.id

    def test_message_role_is_validated(self) -> None:
        with pytest.raises(ValidationError):
            ChatMessage(conversation_id="c1", role="system", content="Be terse.")

    def test_message_as_prompt_turn(self) -> None:
        message = ChatMessage(conversation_id="c1", role="assistant", content="Chloroplasts.")

        assert message.role is MessageRole.ASSISTANT
        assert message.as_turn() == {"role": "assistant", "content": "Chloroplasts."}
