"""API middleware: CORS, request logging and error mapping.

Starlette runs middleware last-added-first, so ``main.py`` adds
:class:`ErrorHandlingMiddleware` before :class:`RequestLoggingMiddleware`
and the request log sees the final (mapped) status code.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from pdfquiz.api.schemas import ErrorResponse
from pdfquiz.utils.errors import (
    AuthenticationError,
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentNotReadyError,
    InvalidTransitionError,
    InvalidUploadError,
    NotCancellableError,
    NotRetryableError,
    PdfQuizError,
    ProviderError,
    StorageError,
)
from pdfquiz.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Checked in order; the first matching class wins.
_STATUS_BY_ERROR: tuple[tuple[type[PdfQuizError], int], ...] = (
    (DocumentNotFoundError, 404),
    (ConversationNotFoundError, 404),
    (AuthenticationError, 401),
    (InvalidTransitionError, 409),
    (NotRetryableError, 409),
    (NotCancellableError, 409),
    (DocumentNotReadyError, 409),
    (ProviderError, 502),
    (StorageError, 502),
)


def status_for(exc: PdfQuizError) -> int:
    """HTTP status code for an application error."""
    if isinstance(exc, InvalidUploadError):
        return exc.status_code
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; all origins unless *allowed_origins* is given."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn :class:`PdfQuizError` subclasses into JSON :class:`ErrorResponse` bodies.

    Collaborator failures (5xx) are logged at error level with the provider
    name; client errors at info.  Stack traces never reach the client.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except PdfQuizError as exc:
            status_code = status_for(exc)
            log = _logger.error if status_code >= 500 else _logger.info
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
