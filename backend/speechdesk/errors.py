"""Error taxonomy for transcription processing.

Every processing failure is one of these.  The synchronous API maps them to
HTTP status codes; the Celery worker decides from the class whether an attempt
is worth retrying.
"""

from __future__ import annotations

from typing import Optional


class TranscriptionError(Exception):
    """Base class for all processing failures."""

    #: Whether the queued path should schedule another attempt.
    retryable = True


class ValidationError(TranscriptionError):
    """A required input for the record's type is missing."""

    retryable = False


class ProviderError(TranscriptionError):
    """The external STT/TTS service answered with a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StorageError(TranscriptionError):
    """Reading the source blob or writing the output blob failed."""


class ProcessingTimeoutError(TranscriptionError):
    """An attempt (or a provider call inside it) exceeded its time bound."""


class AlreadyProcessingError(TranscriptionError):
    """Another attempt currently owns the record."""

    retryable = False


class TranscriptionNotFoundError(TranscriptionError):
    retryable = False
