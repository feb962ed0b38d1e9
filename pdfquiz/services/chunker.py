"""Sentence-based text chunking with bounded overlap and page provenance.

Splits extracted document text into :class:`~pdfquiz.models.chunk.ChunkCandidate`
objects sized for embedding (~1000 estimated tokens each) and stamps each one
with the page its first sentence starts on.

The strategy:

1. **Sentence units** -- text is split after ``.``, ``!`` or ``?`` followed
   by whitespace.  Text with fewer than two sentences falls back to
   blank-line paragraph boundaries (with whitespace normalised).

2. **Greedy accumulation** -- sentences are packed into a buffer until the
   next one would push it past ``chunk_size`` tokens, then the buffer is
   emitted.

3. **Sentence overlap** -- the next buffer is seeded with up to two
   trailing sentences of the emitted chunk, as long as they fit within
   ``overlap`` tokens, so concepts that straddle a boundary are retrievable
   from either side.

4. **Oversized sentences** -- a single sentence larger than ``chunk_size``
   is split on word boundaries under the same budget, with no overlap.

A final buffer smaller than ``min_chunk_size`` is folded into the previous
chunk instead of being emitted on its own.  If it is the only buffer it is
emitted regardless, so non-empty input always yields at least one chunk.

Token counts are estimates (character length / 4 blended with a
word-weighted count), not tokenizer-exact; they only need to be stable and
monotonic in text length.

No I/O happens here; the chunker is a pure function of its input.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

import structlog

from pdfquiz.models.chunk import ChunkCandidate, PageRange
from pdfquiz.utils.errors import EmptyInputError, NoChunksProducedError, NoSentencesError

logger = structlog.get_logger(logger_name=__name__)

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_BOUNDARY_RE = re.compile(r"\n\s*\n")
_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\S+")

_MAX_OVERLAP_SENTENCES = 2


def estimate_tokens(text: str) -> int:
    """Estimate the token count of *text*.

    Averages ``chars / 4`` with ``words * 1.3`` and rounds up.  Blank text
    is zero tokens.
    """
    if not text.strip():
        return 0
    return math.ceil((len(text) / 4 + len(text.split()) * 1.3) / 2)


@dataclass(frozen=True)
class _Sentence:
    text: str
    offset: int
    tokens: int


class TextChunker:
    """Splits text into overlapping, page-stamped chunks.

    Parameters
    ----------
    chunk_size:
        Maximum estimated tokens per chunk (default 1000).
    overlap:
        Maximum estimated tokens carried into the next chunk (default 200).
    min_chunk_size:
        Trailing buffers below this many tokens are merged into the
        previous chunk (default 100).
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        min_chunk_size: int = 100,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_chunk_size = min_chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, page_map: list[PageRange] | None = None) -> list[ChunkCandidate]:
        """Split *text* into ordered chunk candidates.

        Parameters
        ----------
        text:
            Full document text.
        page_map:
            Character ranges per page.  An empty map stamps every chunk
            with page 1.

        Returns
        -------
        list[ChunkCandidate]
            Chunks with contiguous ``sequence`` values starting at 0.

        Raises
        ------
        EmptyInputError
            If *text* is empty or whitespace.
        NoSentencesError
            If neither sentence nor paragraph boundaries yield any unit.
        NoChunksProducedError
            If accumulation produced nothing.
        """
        if not text or not text.strip():
            raise EmptyInputError()

        sentences = self._split_sentences(text)
        if not sentences:
            raise NoSentencesError()

        pieces = self._accumulate(sentences)
        if not pieces:
            raise NoChunksProducedError()

        page_map = page_map or []
        candidates = [
            ChunkCandidate(
                content=content,
                page_number=self._find_page_number(offset, page_map),
                sequence=sequence,
                token_count=estimate_tokens(content),
                start_offset=offset,
            )
            for sequence, (content, offset) in enumerate(pieces)
        ]

        logger.debug(
            "chunking_complete",
            num_chunks=len(candidates),
            num_sentences=len(sentences),
            text_length=len(text),
        )
        return candidates

    # ------------------------------------------------------------------
    # Sentence / paragraph splitting
    # ------------------------------------------------------------------

    def _split_sentences(self, text: str) -> list[_Sentence]:
        sentences = self._split_on(text, _SENTENCE_BOUNDARY_RE, normalise=False)
        if len(sentences) <= 1:
            return self._split_on(text, _PARAGRAPH_BOUNDARY_RE, normalise=True)
        return sentences

    @staticmethod
    def _split_on(text: str, boundary: re.Pattern[str], normalise: bool) -> list[_Sentence]:
        """Split *text* on *boundary*, keeping each piece's start offset."""
        units: list[_Sentence] = []
        start = 0
        bounds = [(m.start(), m.end()) for m in boundary.finditer(text)]
        bounds.append((len(text), len(text)))
        for end, next_start in bounds:
            piece = text[start:end]
            stripped = piece.strip()
            if stripped:
                if normalise:
                    stripped = _WHITESPACE_RE.sub(" ", stripped)
                offset = start + (len(piece) - len(piece.lstrip()))
                units.append(_Sentence(stripped, offset, estimate_tokens(stripped)))
            start = next_start
        return units

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def _accumulate(self, sentences: list[_Sentence]) -> list[tuple[str, int]]:
        """Pack sentences into ``(content, start_offset)`` pieces."""
        pieces: list[tuple[str, int]] = []
        buffer: list[_Sentence] = []
        buffer_tokens = 0
        # Number of leading buffer entries that are overlap from the previous piece.
        carried = 0

        for sentence in sentences:
            if sentence.tokens > self._chunk_size:
                if len(buffer) > carried:
                    pieces.append(self._join(buffer))
                pieces.extend(self._split_words(sentence))
                buffer, buffer_tokens, carried = [], 0, 0
                continue

            if buffer_tokens + sentence.tokens > self._chunk_size and len(buffer) > carried:
                pieces.append(self._join(buffer))
                buffer = self._build_overlap(buffer)
                buffer_tokens = sum(s.tokens for s in buffer)
                carried = len(buffer)
                # The overlap may not leave room for the incoming sentence.
                while buffer and buffer_tokens + sentence.tokens > self._chunk_size:
                    buffer_tokens -= buffer.pop(0).tokens
                    carried -= 1

            buffer.append(sentence)
            buffer_tokens += sentence.tokens

        fresh = buffer[carried:]
        if fresh:
            if buffer_tokens >= self._min_chunk_size or not pieces:
                pieces.append(self._join(buffer))
            else:
                content, offset = pieces[-1]
                tail = " ".join(s.text for s in fresh)
                pieces[-1] = (f"{content} {tail}", offset)

        return pieces

    def _split_words(self, sentence: _Sentence) -> list[tuple[str, int]]:
        """Split an oversized sentence on word boundaries."""
        pieces: list[tuple[str, int]] = []
        current = ""
        current_offset = sentence.offset
        for match in _WORD_RE.finditer(sentence.text):
            word = match.group()
            candidate = f"{current} {word}" if current else word
            if current and estimate_tokens(candidate) > self._chunk_size:
                pieces.append((current, current_offset))
                current = word
                current_offset = sentence.offset + match.start()
            else:
                current = candidate
        if current:
            pieces.append((current, current_offset))
        return pieces

    def _build_overlap(self, buffer: list[_Sentence]) -> list[_Sentence]:
        """Return up to two trailing sentences that fit the overlap budget."""
        tail = buffer[-_MAX_OVERLAP_SENTENCES:]
        while tail and estimate_tokens(" ".join(s.text for s in tail)) > self._overlap:
            tail = tail[1:]
        return list(tail)

    @staticmethod
    def _join(buffer: list[_Sentence]) -> tuple[str, int]:
        return " ".join(s.text for s in buffer), buffer[0].offset

    # ------------------------------------------------------------------
    # Page lookup
    # ------------------------------------------------------------------

    @staticmethod
    def _find_page_number(offset: int, page_map: list[PageRange]) -> int:
        """Return the page whose range contains *offset*.

        Falls back to the last mapped page, or 1 with no map at all.
        """
        if not page_map:
            return 1
        for page in page_map:
            if page.contains(offset):
                return page.page_number
        return page_map[-1].page_number
