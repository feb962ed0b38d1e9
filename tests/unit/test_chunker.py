"""Unit tests for the sentence-based TextChunker."""

from __future__ import annotations

import pytest

from pdfquiz.models.chunk import PageRange
from pdfquiz.services.chunker import TextChunker, estimate_tokens
from pdfquiz.utils.errors import EmptyInputError


def _sentences(count: int) -> str:
    return " ".join(f"Sentence number {i} is here." for i in range(1, count + 1))


# ======================================================================
# estimate_tokens
# ======================================================================


class TestEstimateTokens:
    def test_blank_text_is_zero(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("   \n ") == 0

    def test_grows_with_text_length(self) -> None:
        short = estimate_tokens("One two three.")
        longer = estimate_tokens("One two three four five six seven eight.")
        assert 0 < short < longer

    def test_blends_characters_and_words(self) -> None:
        # 20 chars / 4 = 5, 3 words * 1.3 = 3.9 -> ceil(8.9 / 2) = 5
        assert estimate_tokens("Alpha sentence here.") == 5


# ======================================================================
# TextChunker
# ======================================================================


class TestTextChunker:
    @pytest.fixture()
    def chunker(self) -> TextChunker:
        return TextChunker()

    def test_rejects_empty_text(self, chunker: TextChunker) -> None:
        with pytest.raises(EmptyInputError):
            chunker.chunk("")

    def test_rejects_whitespace_only_text(self, chunker: TextChunker) -> None:
        with pytest.raises(EmptyInputError):
            chunker.chunk("  \n\t  ")

    def test_overlap_must_be_smaller_than_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            TextChunker(chunk_size=100, overlap=100)

    def test_chunk_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            TextChunker(chunk_size=0, overlap=0)

    def test_three_short_sentences_make_one_chunk_on_page_one(self, chunker: TextChunker) -> None:
        text = "Sentence one. Sentence two. Sentence three."
        page_map = [
            PageRange(page_number=1, start_index=0, end_index=len(text)),
            PageRange(page_number=2, start_index=len(text), end_index=len(text)),
        ]

        chunks = chunker.chunk(text, page_map)

        assert len(chunks) == 1
        assert chunks[0].sequence == 0
        assert chunks[0].page_number == 1
        assert chunks[0].content == text

    def test_small_input_below_minimum_is_still_emitted(self) -> None:
        chunker = TextChunker(chunk_size=1000, overlap=200, min_chunk_size=100)
        chunks = chunker.chunk("Tiny. Text.")
        assert [c.content for c in chunks] == ["Tiny. Text."]

    def test_sequences_are_contiguous_from_zero(self) -> None:
        chunker = TextChunker(chunk_size=30, overlap=15, min_chunk_size=1)
        chunks = chunker.chunk(_sentences(20))
        assert len(chunks) > 1
        assert [c.sequence for c in chunks] == list(range(len(chunks)))

    def test_chunks_stay_within_budget(self) -> None:
        chunker = TextChunker(chunk_size=30, overlap=15, min_chunk_size=1)
        for chunk in chunker.chunk(_sentences(20)):
            assert chunk.token_count <= 30

    def test_without_overlap_contents_reproduce_the_input(self) -> None:
        text = _sentences(12)
        chunker = TextChunker(chunk_size=30, overlap=0, min_chunk_size=1)

        chunks = chunker.chunk(text)

        assert len(chunks) > 1
        assert " ".join(c.content for c in chunks) == text

    def test_next_chunk_starts_with_trailing_sentences(self) -> None:
        chunker = TextChunker(chunk_size=30, overlap=15, min_chunk_size=1)

        chunks = chunker.chunk(_sentences(12))

        assert chunks[0].content.endswith("Sentence number 4 is here.")
        assert chunks[1].content.startswith("Sentence number 3 is here. Sentence number 4 is here.")

    def test_oversized_sentence_is_split_on_words(self) -> None:
        long_sentence = " ".join(f"word{i}" for i in range(60)) + "."
        chunker = TextChunker(chunk_size=10, overlap=0, min_chunk_size=1)

        chunks = chunker.chunk(f"Short opener. {long_sentence}")

        assert len(chunks) > 2
        assert all(c.token_count <= 10 for c in chunks)
        assert " ".join(c.content for c in chunks) == f"Short opener. {long_sentence}"

    def test_small_trailing_buffer_is_merged_into_previous_chunk(self) -> None:
        text = _sentences(5) + " End."
        chunker = TextChunker(chunk_size=30, overlap=0, min_chunk_size=20)

        chunks = chunker.chunk(text)

        assert len(chunks) == 1
        assert chunks[0].content.endswith("Sentence number 5 is here. End.")

    def test_falls_back_to_paragraphs_without_sentence_punctuation(
        self, chunker: TextChunker
    ) -> None:
        text = "Heading one\n\nSome   words\nhere\n\nMore words"

        chunks = chunker.chunk(text)

        assert [c.content for c in chunks] == ["Heading one Some words here More words"]


# ======================================================================
# Page stamping
# ======================================================================


class TestPageStamping:
    @pytest.fixture()
    def chunker(self) -> TextChunker:
        return TextChunker(chunk_size=5, overlap=0, min_chunk_size=1)

    def test_chunk_gets_page_containing_its_start(self, chunker: TextChunker) -> None:
        text = "Alpha sentence here. Beta sentence here."
        page_map = [
            PageRange(page_number=1, start_index=0, end_index=20),
            PageRange(page_number=2, start_index=20, end_index=len(text)),
        ]

        chunks = chunker.chunk(text, page_map)

        assert [c.page_number for c in chunks] == [1, 2]
        assert chunks[1].start_offset == 21

    def test_no_page_map_defaults_to_page_one(self, chunker: TextChunker) -> None:
        chunks = chunker.chunk("Alpha sentence here. Beta sentence here.")
        assert {c.page_number for c in chunks} == {1}

    def test_offset_outside_map_uses_last_page(self, chunker: TextChunker) -> None:
        text = "Alpha sentence here. Beta sentence here."
        page_map = [
            PageRange(page_number=1, start_index=0, end_index=5),
            PageRange(page_number=2, start_index=5, end_index=10),
        ]

        chunks = chunker.chunk(text, page_map)

        assert chunks[-1].page_number == 2
