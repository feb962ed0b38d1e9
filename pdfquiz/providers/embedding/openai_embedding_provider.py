"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Works against real OpenAI or any OpenAI-compatible endpoint via
``openai_base_url``.  Every request is bounded by
``external_call_timeout_seconds``; timeouts, rate limits and API errors are
re-raised as :class:`ProviderError` / :class:`RateLimitError`, which the
pipeline treats as retryable.
"""

from __future__ import annotations

import asyncio

import openai
import structlog

from pdfquiz.config.settings import Settings
from pdfquiz.interfaces.embedding_provider import IEmbeddingProvider
from pdfquiz.utils.errors import ProviderError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key or "unset"}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)
        self._timeout = settings.external_call_timeout_seconds
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        result = await self.embed_batch([text])
        return result[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, splitting into API-sized batches when needed."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
            batch = texts[start : start + _OPENAI_BATCH_LIMIT]
            try:
                response = await asyncio.wait_for(
                    self._client.embeddings.create(input=batch, model=self._model),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderError(
                    message=f"{self._provider_label} timed out after {self._timeout:g}s",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.RateLimitError as exc:
                raise RateLimitError(
                    message=f"{self._provider_label} rate limited: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.APIError as exc:
                raise ProviderError(
                    message=f"{self._provider_label} API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

            ordered = sorted(response.data, key=lambda item: item.index)
            all_embeddings.extend(item.embedding for item in ordered)
            logger.info(
                "openai_embedding_batch",
                model=self._model,
                provider=self._provider_label,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return all_embeddings

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
