"""Text extraction and chunk models.

:class:`ExtractedText` is what the PDF extractor hands to the chunker: the
cleaned document text plus a page map of character ranges.  The chunker
returns :class:`ChunkCandidate` objects, which the chunk stage persists as
:class:`Chunk` rows.  ``Chunk.embedding`` stays ``None`` until the embedding
stage fills it.
"""

from __future__ import annotations

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class PageRange(BaseModel):
    """Half-open character range ``[start_index, end_index)`` of one page."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)

    def contains(self, offset: int) -> bool:
        return self.start_index <= offset < self.end_index


class ExtractedText(BaseModel):
    """Cleaned document text with per-page character ranges."""

    model_config = ConfigDict(frozen=True)

    text: str
    total_pages: int = Field(ge=0)
    page_map: list[PageRange] = Field(default_factory=list)


class ChunkCandidate(BaseModel):
    """A chunk as produced by the chunker, before it is persisted."""

    model_config = ConfigDict(frozen=True)

    content: str
    page_number: int = Field(ge=1)
    sequence: int = Field(ge=0)
    token_count: int = Field(ge=0)
    # Offset of the chunk's first sentence in the source text.
    start_offset: int = Field(default=0, ge=0)


class Chunk(BaseModel):
    """A persisted chunk of a document, the unit of embedding and retrieval."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    document_id: str
    content: str
    page_number: int = Field(ge=1)
    sequence: int = Field(ge=0)
    token_count: int = Field(ge=0)
    embedding: list[float] | None = None

    @classmethod
    def from_candidate(cls, document_id: str, candidate: ChunkCandidate) -> Chunk:
        return cls(
            document_id=document_id,
            content=candidate.content,
            page_number=candidate.page_number,
            sequence=candidate.sequence,
            token_count=candidate.token_count,
        )


class ScoredChunk(BaseModel):
    """A chunk paired with its cosine similarity to a query."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(ge=-1.0, le=1.0)
