"""Cosine-similarity retrieval over a document's stored chunk embeddings.

There is no persistent index: every query loads the document's chunk rows
and scores all of them with one numpy matrix-vector product.  That full
scan is fine at per-document scale (hundreds of chunks); an
approximate-nearest-neighbour structure would be needed for corpus-wide
search and is not provided.

Ordering is deterministic: score descending, then ``sequence`` ascending.
"""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np
import structlog

from pdfquiz.interfaces.chunk_repository import IChunkRepository
from pdfquiz.models.chunk import Chunk, ScoredChunk
from pdfquiz.utils.errors import DimensionMismatchError

logger = structlog.get_logger(logger_name=__name__)


def rank_chunks(
    chunks: Iterable[Chunk],
    query_embedding: list[float],
    k: int,
    min_score: float = -1.0,
    exclude_ids: frozenset[str] | set[str] = frozenset(),
) -> list[ScoredChunk]:
    """Rank *chunks* by cosine similarity to *query_embedding*.

    Parameters
    ----------
    chunks:
        Candidate chunks.  Chunks without an embedding are skipped.
    query_embedding:
        The query vector.
    k:
        Maximum number of results.
    min_score:
        Results scoring below this are dropped.
    exclude_ids:
        Chunk ids to leave out (e.g. the chunks a query was built from).

    Returns
    -------
    list[ScoredChunk]
        At most *k* results, score descending, ties by ascending sequence.

    Raises
    ------
    DimensionMismatchError
        If any stored embedding's length differs from the query's.
    """
    if k <= 0:
        return []

    candidates = [
        c for c in chunks if c.embedding is not None and c.id not in exclude_ids
    ]
    if not candidates:
        return []

    query = np.asarray(query_embedding, dtype=np.float64)
    for chunk in candidates:
        if len(chunk.embedding) != query.shape[0]:  # type: ignore[arg-type]
            raise DimensionMismatchError(
                f"Query has {query.shape[0]} dimensions, chunk {chunk.id} "
                f"has {len(chunk.embedding)}"  # type: ignore[arg-type]
            )

    matrix = np.asarray([c.embedding for c in candidates], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    # A zero vector has no direction; score it as orthogonal.
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    scores = np.clip(scores, -1.0, 1.0)

    scored = [
        (float(score), chunk)
        for score, chunk in zip(scores, candidates)
        if score >= min_score
    ]
    scored.sort(key=lambda pair: (-pair[0], pair[1].sequence))

    return [ScoredChunk(chunk=chunk, score=score) for score, chunk in scored[:k]]


class SimilarityIndex:
    """On-demand cosine search over one document's chunks.

    Parameters
    ----------
    chunk_repository:
        Source of chunk rows (with embeddings).
    """

    def __init__(self, chunk_repository: IChunkRepository) -> None:
        self._chunks = chunk_repository

    async def search(
        self,
        document_id: str,
        query_embedding: list[float],
        k: int = 5,
        min_score: float = 0.0,
        exclude_ids: frozenset[str] | set[str] = frozenset(),
    ) -> list[ScoredChunk]:
        """Return the *k* chunks of *document_id* most similar to the query.

        See :func:`rank_chunks` for ordering and filtering rules.
        """
        chunks = await self._chunks.list_by_document(document_id)
        results = rank_chunks(chunks, query_embedding, k, min_score, exclude_ids)
        logger.debug(
            "similarity_search",
            document_id=document_id,
            candidates=len(chunks),
            results=len(results),
            top_score=results[0].score if results else None,
        )
        return results
