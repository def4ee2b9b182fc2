from __future__ import annotations

from typing import Optional


class SemanticAnalysisError(Exception):
    """Base class for every error raised by the pipeline."""


class FatalInputError(SemanticAnalysisError):
    """
    Malformed or missing input document, empty text, or a rejected credential.
    Never retried; aborts the run.
    """


class TransientServiceError(SemanticAnalysisError):
    """
    Remote embedding call failed for a recoverable reason
    (rate limit, timeout, connection reset, 5xx).
    """


class RejectedInputError(SemanticAnalysisError):
    """
    The service refused one unit's text (e.g. over the context length).
    Never retried; only that unit is lost.
    """


class MalformedRecordError(SemanticAnalysisError):
    """A persisted embedding row could not be parsed as a numeric vector."""

    def __init__(self, message: str, line_no: Optional[int] = None) -> None:
        self.line_no = line_no
        if line_no is not None:
            message = f"line {line_no}: {message}"
        super().__init__(message)


class DimensionMismatchError(SemanticAnalysisError):
    """Vectors of unequal length were compared, or a store mixes dimensions."""


class EmptyStoreError(SemanticAnalysisError):
    """A vector store has no usable records."""
