"""Failure classification and backoff for pipeline stages.

A failed stage is either redelivered after an exponential delay
(``base * 2 ** (attempt - 1)``) or, once ``max_attempts`` deliveries have
failed or the error is not transient, fails the document.

Classification:

- :class:`PdfQuizError` subclasses decide via their ``retryable`` flag
  (storage and provider errors are transient; malformed input, unparsable
  PDFs and bad LLM JSON are not).
- Anything else (timeouts, ``httpx`` or ``openai`` network errors that
  escaped a provider wrapper, unexpected bugs) is treated as transient and
  gets ``max_attempts`` deliveries before the document fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pdfquiz.utils.errors import PdfQuizError


class Disposition(str, Enum):  # noqa: UP042
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify(exc: BaseException) -> Disposition:
    """Return whether *exc* is worth another delivery."""
    if isinstance(exc, PdfQuizError):
        return Disposition.RETRYABLE if exc.retryable else Disposition.FATAL
    return Disposition.RETRYABLE


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay before redelivering after the *attempt*-th failure (1-based)."""
    return base_seconds * 2 ** (max(attempt, 1) - 1)


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float
    disposition: Disposition


@dataclass(frozen=True)
class RetryPolicy:
    """Combines classification with the attempt limit.

    Parameters
    ----------
    max_attempts:
        Total deliveries allowed per stage, the first one included.
    backoff_base_seconds:
        Delay after the first failure; doubles on each subsequent one.
    """

    max_attempts: int = 3
    backoff_base_seconds: float = 5.0

    def decide(self, exc: BaseException, attempt: int) -> RetryDecision:
        disposition = classify(exc)
        if disposition is Disposition.FATAL or attempt >= self.max_attempts:
            return RetryDecision(retry=False, delay_seconds=0.0, disposition=disposition)
        return RetryDecision(
            retry=True,
            delay_seconds=backoff_delay(attempt, self.backoff_base_seconds),
            disposition=disposition,
        )
