"""Custom exception hierarchy for pdfquiz.

All application exceptions inherit from :class:`PdfQuizError`, which
carries an optional ``provider_name`` so error handlers can identify which
external collaborator (e.g. "openai", "storage", "expo") caused the failure,
and a class-level ``retryable`` flag consumed by the pipeline's retry policy.

The hierarchy is organized by where the error originates:

    PdfQuizError  (base -- catch-all for any pdfquiz error)
    +-- InvalidUploadError         (input: missing / oversized / wrong type)
    +-- EmptyInputError            (chunker: blank text)
    +-- NoSentencesError           (chunker: no sentence or paragraph boundaries)
    +-- NoChunksProducedError      (chunker: nothing viable to emit)
    +-- DimensionMismatchError     (similarity index: query vs stored length)
    +-- InvalidTransitionError     (state machine: target not reachable)
    +-- NotRetryableError          (retry on a non-FAILED document)
    +-- NotCancellableError        (cancel on a terminal document)
    +-- DocumentNotFoundError      (missing OR not owned -- never distinguished)
    +-- ConversationNotFoundError  (conversation missing, not owned, or on another document)
    +-- DocumentNotReadyError      (results requested before COMPLETED)
    +-- PDFExtractionError         (unparsable PDF)
    +-- EmptyDocumentError         (no extractable text)
    +-- LLMResponseError           (malformed / non-JSON LLM output)
    +-- StorageError               (object storage failure, transient)
    |   +-- StorageObjectNotFoundError
    +-- ProviderError              (embedding / LLM / push provider failure, transient)
    |   +-- RateLimitError
    +-- AuthenticationError        (bearer token rejected)
    +-- ConfigurationError         (startup / missing config)
    +-- JobCancelledError          (a stage checkpoint observed CANCELLED)

Transient errors set ``retryable = True``; the pipeline redelivers them with
exponential backoff.  Everything else is fatal and fails the document.
"""


class PdfQuizError(Exception):
    """Base exception for all pdfquiz errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Input errors -- rejected before anything enters the queue
# ---------------------------------------------------------------------------

class InvalidUploadError(PdfQuizError):
    """Raised when an upload is missing, oversized, or not a PDF.

    ``status_code`` lets the HTTP layer answer 400, 413 or 415 without
    re-inspecting the upload.
    """

    def __init__(
        self,
        message: str = "Invalid upload",
        status_code: int = 400,
    ) -> None:
        super().__init__(message=message)
        self._status_code = status_code

    @property
    def status_code(self) -> int:
        return self._status_code


# ---------------------------------------------------------------------------
# Chunker errors
# ---------------------------------------------------------------------------

class EmptyInputError(PdfQuizError):
    """Raised when the text handed to the chunker is blank."""

    def __init__(self, message: str = "Text is empty or blank") -> None:
        super().__init__(message=message)


class NoSentencesError(PdfQuizError):
    """Raised when neither sentence nor paragraph boundaries can be found."""

    def __init__(self, message: str = "No sentences found in text") -> None:
        super().__init__(message=message)


class NoChunksProducedError(PdfQuizError):
    """Raised when chunking finishes without a single viable chunk."""

    def __init__(self, message: str = "No valid chunks were created from the text") -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# Retrieval errors
# ---------------------------------------------------------------------------

class DimensionMismatchError(PdfQuizError):
    """Raised when a query embedding's length differs from the stored vectors."""

    def __init__(
        self,
        message: str = "Query embedding dimension does not match stored embeddings",
    ) -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# State errors -- rejected at the API boundary, no mutation happens
# ---------------------------------------------------------------------------

class InvalidTransitionError(PdfQuizError):
    """Raised when a document status change is not allowed from its current state."""

    def __init__(self, message: str = "Invalid document status transition") -> None:
        super().__init__(message=message)


class NotRetryableError(PdfQuizError):
    """Raised when retry is requested for a document that cannot be retried."""

    def __init__(self, message: str = "Only failed documents with a stored upload can be retried") -> None:
        super().__init__(message=message)


class NotCancellableError(PdfQuizError):
    """Raised when cancel is requested for a document that already finished."""

    def __init__(self, message: str = "Only in-flight documents can be cancelled") -> None:
        super().__init__(message=message)


class DocumentNotFoundError(PdfQuizError):
    """Raised when a document does not exist *or* belongs to another owner.

    The two cases share one error so callers cannot learn whether other
    users' documents exist.
    """

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message=message)


class ConversationNotFoundError(PdfQuizError):
    """Raised when a conversation does not exist, belongs to another owner,
    or is attached to a different document than the one asked about.
    """

    def __init__(self, message: str = "Conversation not found") -> None:
        super().__init__(message=message)


class DocumentNotReadyError(PdfQuizError):
    """Raised when questions or chat are requested before processing completed."""

    def __init__(self, message: str = "Document has not finished processing") -> None:
        super().__init__(message=message)


# ---------------------------------------------------------------------------
# Content errors -- fatal, never retried automatically
# ---------------------------------------------------------------------------

class PDFExtractionError(PdfQuizError):
    """Raised when the uploaded bytes cannot be parsed as a PDF."""

    def __init__(
        self,
        message: str = "Failed to process PDF",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyDocumentError(PdfQuizError):
    """Raised when a PDF parses but yields no extractable text."""

    def __init__(self, message: str = "Failed to extract text from PDF") -> None:
        super().__init__(message=message)


class LLMResponseError(PdfQuizError):
    """Raised when the LLM returns non-JSON or structurally invalid JSON."""

    def __init__(
        self,
        message: str = "LLM returned an unparseable response",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------

class StorageError(PdfQuizError):
    """Raised when object storage cannot complete a request."""

    retryable = True

    def __init__(
        self,
        message: str = "Object storage request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageObjectNotFoundError(StorageError):
    """Raised when a storage key does not exist.  Not transient."""

    retryable = False

    def __init__(
        self,
        message: str = "Stored object not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderError(PdfQuizError):
    """Raised when an embedding, LLM or push provider call fails.

    Treated as transient: the pipeline redelivers the stage with backoff.
    """

    retryable = True

    def __init__(
        self,
        message: str = "External provider request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(ProviderError):
    """Raised when a provider rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class AuthenticationError(PdfQuizError):
    """Raised when a bearer token is missing, malformed, forged or expired."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message=message)


class ConfigurationError(PdfQuizError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Flow control
# ---------------------------------------------------------------------------

class JobCancelledError(PdfQuizError):
    """Raised at a stage checkpoint when the document was cancelled or deleted."""

    def __init__(self, message: str = "Document processing was cancelled") -> None:
        super().__init__(message=message)
