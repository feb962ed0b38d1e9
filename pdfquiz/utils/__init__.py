"""Utility modules for pdfquiz.

- **errors** -- exception hierarchy rooted at ``PdfQuizError``; the
  ``retryable`` flag drives the pipeline's retry policy and the API maps
  each class to an HTTP status.
- **logging** -- structlog configuration, ``get_logger`` and the
  ``job_context`` correlation binder.
- **concurrency** -- semaphore-bounded gather and a sliding-window rate
  limiter for the stage workers.
"""
