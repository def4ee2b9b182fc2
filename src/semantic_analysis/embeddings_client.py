from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
import openai
from openai import OpenAI
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from semantic_analysis.config import Settings, get_settings
from semantic_analysis.errors import FatalInputError, RejectedInputError, TransientServiceError
from semantic_analysis.models import EmbeddingVector

log = logging.getLogger("semantic_analysis.embeddings")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_S = 1.0

# Recoverable on a later attempt
_TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

# Retrying cannot help, and no other unit will fare better
_FATAL_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
)


def _snippet(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class EmbeddingsClient:
    """
    Thin, retry-safe wrapper for generating embeddings.

    Only TransientServiceError is retried: up to ``max_attempts`` calls in
    total with a fixed ``retry_delay_s`` pause between them. The last
    failure is re-raised unchanged.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        model: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_delay_s: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if client is None or model is None:
            settings = settings or get_settings()

        if client is None:
            api_key = settings.openai_api_key
            if not api_key or len(api_key) < 10:
                raise FatalInputError("OPENAI_API_KEY is not set (or too short to be a valid key)")
            # Retries are owned by this wrapper, not the SDK
            client = OpenAI(
                api_key=api_key,
                max_retries=0,
                timeout=httpx.Timeout(settings.request_timeout_s),
            )

        if max_attempts is None:
            max_attempts = settings.embed_max_attempts if settings else DEFAULT_MAX_ATTEMPTS
        if retry_delay_s is None:
            retry_delay_s = settings.embed_retry_delay_s if settings else DEFAULT_RETRY_DELAY_S
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if retry_delay_s < 0:
            raise ValueError("retry_delay_s must be >= 0")

        self._client = client
        self._model = model or settings.openai_embedding_model
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s

    @property
    def model(self) -> str:
        return self._model

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "Attempt %d/%d failed for text %r: %s. Retrying in %.1fs",
            state.attempt_number,
            self.max_attempts,
            _snippet(str(state.args[0]) if state.args else ""),
            exc,
            self.retry_delay_s,
        )

    def embed(self, text: str) -> EmbeddingVector:
        """
        Generate a single embedding vector for the given text.
        """
        if not text or not text.strip():
            raise FatalInputError("Cannot embed empty text")

        retrying = Retrying(
            retry=retry_if_exception_type(TransientServiceError),
            wait=wait_fixed(self.retry_delay_s),
            stop=stop_after_attempt(self.max_attempts),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._embed_once, text)

    def _embed_once(self, text: str) -> EmbeddingVector:
        log.debug("Embedding text (%d chars)", len(text))

        try:
            resp = self._client.embeddings.create(model=self._model, input=text)
        except _FATAL_ERRORS as e:
            raise FatalInputError(f"Embedding request rejected: {e}") from e
        except openai.BadRequestError as e:
            raise RejectedInputError(f"Text refused by the service: {e}") from e
        except _TRANSIENT_ERRORS as e:
            raise TransientServiceError(f"{type(e).__name__}: {e}") from e

        try:
            return EmbeddingVector(values=resp.data[0].embedding)
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            raise TransientServiceError("Invalid embedding response") from e
