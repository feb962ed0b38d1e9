"""FastAPI routes for pdfquiz.

Endpoint                                  Method  Description
-----------------------------------------------------------------------
/api/v1/documents                         POST    Upload a PDF and start processing
/api/v1/documents                         GET     List the caller's documents
/api/v1/documents/{id}/status             GET     Poll processing progress
/api/v1/documents/{id}/questions          GET     Generated questions (COMPLETED only)
/api/v1/documents/{id}/retry              POST    Restart a FAILED document
/api/v1/documents/{id}/cancel             POST    Stop an in-flight document
/api/v1/documents/{id}                    DELETE  Delete a document and its data
/api/v1/documents/{id}/ask                POST    Chat over a COMPLETED document
/api/v1/documents/{id}/conversations      POST    Start a conversation about a document
/api/v1/conversations                     GET     List the caller's conversations
/api/v1/conversations/{id}                GET     A conversation with its messages
/api/v1/conversations/{id}                DELETE  Delete a conversation
/api/v1/notifications/tokens              POST    Register a push token
/api/v1/notifications/tokens/{token}      DELETE  Remove a push token
/api/v1/queue/stats                       GET     Pending and running jobs
/api/v1/health                            GET     Health check

Every document route authenticates with ``Authorization: Bearer <token>``;
the owner id from the token scopes every lookup.  Services come from
``app.state`` through ``Annotated[..., Depends(...)]`` aliases.
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, File, Form, Header, Request, UploadFile

import pdfquiz
from pdfquiz.api.schemas import (
    AskQuestionRequest,
    AskQuestionResponse,
    ConversationListResponse,
    ConversationResponse,
    CreateConversationRequest,
    DocumentListResponse,
    DocumentResponse,
    DocumentStatusResponse,
    ErrorResponse,
    HealthResponse,
    PushTokenRequest,
    PushTokenResponse,
    QuestionListResponse,
    QuestionResponse,
    QueueStatsResponse,
)
from pdfquiz.interfaces.identity_provider import IIdentityProvider
from pdfquiz.interfaces.push_provider import IPushProvider
from pdfquiz.pipeline.orchestrator import DocumentPipeline
from pdfquiz.services.qa_service import DocumentQAService
from pdfquiz.utils.errors import AuthenticationError, InvalidUploadError
from pdfquiz.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_UPLOAD_CHUNK_SIZE = 64 * 1024

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_pipeline(request: Request) -> DocumentPipeline:
    return request.app.state.pipeline


def _get_qa_service(request: Request) -> DocumentQAService:
    return request.app.state.qa_service


def _get_push_provider(request: Request) -> IPushProvider:
    return request.app.state.push_provider


def _get_identity(request: Request) -> IIdentityProvider:
    return request.app.state.identity_provider


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header value."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")
    return token.strip()


def _get_owner_id(
    identity: Annotated[IIdentityProvider, Depends(_get_identity)],
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    return identity.verify(bearer_token(authorization))


PipelineDep = Annotated[DocumentPipeline, Depends(_get_pipeline)]
QAServiceDep = Annotated[DocumentQAService, Depends(_get_qa_service)]
PushDep = Annotated[IPushProvider, Depends(_get_push_provider)]
OwnerDep = Annotated[str, Depends(_get_owner_id)]

_ERRORS: dict[int | str, dict[str, Any]] = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=202,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
    },
    summary="Upload a PDF and start processing",
)
async def upload_document(
    request: Request,
    pipeline: PipelineDep,
    owner_id: OwnerDep,
    file: Annotated[UploadFile | None, File()] = None,
    title: Annotated[str | None, Form()] = None,
) -> DocumentResponse:
    if file is None:
        raise InvalidUploadError("No file uploaded", status_code=400)

    # Read in chunks so an oversized upload is rejected without buffering all of it.
    limit = request.app.state.settings.max_upload_bytes
    parts: list[bytes] = []
    total = 0
    while True:
        part = await file.read(_UPLOAD_CHUNK_SIZE)
        if not part:
            break
        total += len(part)
        if total > limit:
            raise InvalidUploadError(
                f"File exceeds the {limit // (1024 * 1024)} MB limit", status_code=413
            )
        parts.append(part)

    document = await pipeline.create_document(
        owner_id=owner_id,
        filename=file.filename or "document.pdf",
        content_type=file.content_type,
        data=b"".join(parts),
        title=title,
    )
    return DocumentResponse.from_document(document)


@router.get(
    "/documents",
    response_model=DocumentListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List the caller's documents",
)
async def list_documents(pipeline: PipelineDep, owner_id: OwnerDep) -> DocumentListResponse:
    documents = await pipeline.list_documents(owner_id)
    return DocumentListResponse(
        documents=[DocumentResponse.from_document(d) for d in documents],
        total=len(documents),
    )


@router.get(
    "/documents/{document_id}/status",
    response_model=DocumentStatusResponse,
    responses=_ERRORS,
    summary="Poll document processing progress",
)
async def get_status(
    document_id: str, pipeline: PipelineDep, owner_id: OwnerDep
) -> DocumentStatusResponse:
    progress = await pipeline.status(document_id, owner_id)
    return DocumentStatusResponse.from_progress(progress)


@router.get(
    "/documents/{document_id}/questions",
    response_model=QuestionListResponse,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Questions generated for a completed document",
)
async def get_questions(
    document_id: str, pipeline: PipelineDep, owner_id: OwnerDep
) -> QuestionListResponse:
    questions = await pipeline.get_questions(document_id, owner_id)
    return QuestionListResponse(
        document_id=document_id,
        questions=[QuestionResponse.from_question(q) for q in questions],
        total=len(questions),
    )


@router.post(
    "/documents/{document_id}/retry",
    response_model=DocumentResponse,
    status_code=202,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Restart processing of a failed document",
)
async def retry_document(
    document_id: str, pipeline: PipelineDep, owner_id: OwnerDep
) -> DocumentResponse:
    document = await pipeline.retry(document_id, owner_id)
    return DocumentResponse.from_document(document)


@router.post(
    "/documents/{document_id}/cancel",
    response_model=DocumentResponse,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Cancel processing of a document",
)
async def cancel_document(
    document_id: str, pipeline: PipelineDep, owner_id: OwnerDep
) -> DocumentResponse:
    document = await pipeline.cancel(document_id, owner_id)
    return DocumentResponse.from_document(document)


@router.delete(
    "/documents/{document_id}",
    status_code=204,
    responses=_ERRORS,
    summary="Delete a document with its chunks, questions and file",
)
async def delete_document(document_id: str, pipeline: PipelineDep, owner_id: OwnerDep) -> None:
    await pipeline.delete_document(document_id, owner_id)


@router.post(
    "/documents/{document_id}/ask",
    response_model=AskQuestionResponse,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Ask a question about a completed document",
)
async def ask_document(
    document_id: str,
    body: AskQuestionRequest,
    qa_service: QAServiceDep,
    owner_id: OwnerDep,
) -> AskQuestionResponse:
    response = await qa_service.ask(
        document_id,
        owner_id,
        body.question,
        conversation_id=body.conversation_id,
    )
    return AskQuestionResponse(
        answer=response.answer,
        sources=response.sources,
        cached=response.cached,
        conversation_id=response.conversation_id,
    )


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.post(
    "/documents/{document_id}/conversations",
    response_model=ConversationResponse,
    status_code=201,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Start a conversation about a completed document",
)
async def create_conversation(
    document_id: str,
    qa_service: QAServiceDep,
    owner_id: OwnerDep,
    body: CreateConversationRequest | None = None,
) -> ConversationResponse:
    conversation = await qa_service.start_conversation(
        document_id, owner_id, title=body.title if body is not None else None
    )
    return ConversationResponse.from_conversation(conversation)


@router.get(
    "/conversations",
    response_model=ConversationListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List the caller's conversations, most recent first",
)
async def list_conversations(
    qa_service: QAServiceDep,
    owner_id: OwnerDep,
    document_id: str | None = None,
) -> ConversationListResponse:
    conversations = await qa_service.list_conversations(owner_id, document_id)
    return ConversationListResponse(
        conversations=[ConversationResponse.from_conversation(c) for c in conversations],
        total=len(conversations),
    )


@router.get(
    "/conversations/{conversation_id}",
    response_model=ConversationResponse,
    responses=_ERRORS,
    summary="A conversation with all of its messages",
)
async def get_conversation(
    conversation_id: str, qa_service: QAServiceDep, owner_id: OwnerDep
) -> ConversationResponse:
    conversation, messages = await qa_service.get_conversation(conversation_id, owner_id)
    return ConversationResponse.from_conversation(conversation, messages)


@router.delete(
    "/conversations/{conversation_id}",
    status_code=204,
    responses=_ERRORS,
    summary="Delete a conversation and its messages",
)
async def delete_conversation(
    conversation_id: str, qa_service: QAServiceDep, owner_id: OwnerDep
) -> None:
    await qa_service.delete_conversation(conversation_id, owner_id)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.post(
    "/notifications/tokens",
    response_model=PushTokenResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Register a device push token",
)
async def register_push_token(
    body: PushTokenRequest, push: PushDep, owner_id: OwnerDep
) -> PushTokenResponse:
    try:
        await push.register_token(owner_id, body.token, body.platform)
    except ValueError as exc:
        raise InvalidUploadError(str(exc), status_code=400) from exc
    return PushTokenResponse(registered=True)


@router.delete(
    "/notifications/tokens/{token}",
    response_model=PushTokenResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Remove a device push token",
)
async def remove_push_token(token: str, push: PushDep, owner_id: OwnerDep) -> PushTokenResponse:
    removed = await push.remove_token(owner_id, token)
    return PushTokenResponse(removed=removed)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.get(
    "/queue/stats",
    response_model=QueueStatsResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Pending jobs per stage and worker activity",
)
async def queue_stats(
    request: Request, pipeline: PipelineDep, owner_id: OwnerDep
) -> QueueStatsResponse:
    workers = getattr(request.app.state, "workers", None)
    return QueueStatsResponse(
        pending=pipeline.queue_stats(),
        active=workers.active_jobs() if workers is not None else {},
        workers_running=workers.running if workers is not None else False,
    )


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=pdfquiz.__version__,
        providers=settings.get_available_providers(),
    )
