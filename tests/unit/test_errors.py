"""Unit tests for the error hierarchy and its HTTP mapping."""

from __future__ import annotations

import pytest

from pdfquiz.api.middleware import status_for
from pdfquiz.api.routes import bearer_token
from pdfquiz.utils.errors import (
    AuthenticationError,
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentNotReadyError,
    EmptyDocumentError,
    InvalidTransitionError,
    InvalidUploadError,
    LLMResponseError,
    NotCancellableError,
    NotRetryableError,
    PdfQuizError,
    ProviderError,
    RateLimitError,
    StorageError,
    StorageObjectNotFoundError,
)


class TestErrorHierarchy:
    def test_message_and_provider_name(self) -> None:
        error = ProviderError("timed out", provider_name="openai")

        assert error.message == "timed out"
        assert error.provider_name == "openai"
        assert "timed out" in str(error)

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (ProviderError(), True),
            (RateLimitError(), True),
            (StorageError(), True),
            (StorageObjectNotFoundError(), False),
            (LLMResponseError(), False),
            (EmptyDocumentError(), False),
        ],
    )
    def test_retryable_flag(self, error: PdfQuizError, retryable: bool) -> None:
        assert error.retryable is retryable


class TestStatusFor:
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (DocumentNotFoundError(), 404),
            (ConversationNotFoundError(), 404),
            (AuthenticationError(), 401),
            (InvalidTransitionError(), 409),
            (NotRetryableError(), 409),
            (NotCancellableError(), 409),
            (DocumentNotReadyError(), 409),
            (ProviderError(), 502),
            (RateLimitError(), 502),
            (StorageObjectNotFoundError(), 502),
            (LLMResponseError(), 400),
            (InvalidUploadError("too big", status_code=413), 413),
            (InvalidUploadError("not a pdf", status_code=415), 415),
        ],
    )
    def test_mapping(self, error: PdfQuizError, status: int) -> None:
        assert status_for(error) == status


class TestBearerToken:
    def test_extracts_token(self) -> None:
        assert bearer_token("Bearer abc.123.def") == "abc.123.def"
        assert bearer_token("bearer   abc ") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer   "])
    def test_rejects_missing_or_wrong_scheme(self, header) -> None:
        with pytest.raises(AuthenticationError):
            bearer_token(header)
