from __future__ import annotations

import csv
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, List, Sequence, Union

import httpx
import openai
import pytest

from semantic_analysis.embeddings_client import EmbeddingsClient
from semantic_analysis.models import EmbeddingVector
from semantic_analysis.vector_store import VectorStore

API_URL = "https://api.openai.com/v1/embeddings"

Responder = Callable[[str, int], Union[Sequence[float], BaseException]]


def text_vector(text: str) -> List[float]:
    """Cheap deterministic 3-d 'embedding' for a text."""
    return [float(len(text)), float(sum(map(ord, text)) % 97 + 1), float(text.count(" ") + 1)]


class FakeEmbeddings:
    def __init__(self, responder: Responder) -> None:
        self._responder = responder
        self.calls: List[str] = []

    def create(self, *, model: str, input: str):
        self.calls.append(input)
        result = self._responder(input, len(self.calls))
        if isinstance(result, BaseException):
            raise result
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(result))])


class FakeOpenAI:
    """Stands in for openai.OpenAI: only client.embeddings.create() is used."""

    def __init__(self, responder: Responder = lambda text, n: text_vector(text)) -> None:
        self.embeddings = FakeEmbeddings(responder)


def timeout_error() -> openai.APITimeoutError:
    return openai.APITimeoutError(request=httpx.Request("POST", API_URL))


def rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", API_URL)
    return openai.RateLimitError("rate limited", response=httpx.Response(429, request=request), body=None)


def auth_error() -> openai.AuthenticationError:
    request = httpx.Request("POST", API_URL)
    return openai.AuthenticationError("invalid api key", response=httpx.Response(401, request=request), body=None)


def context_length_error() -> openai.BadRequestError:
    request = httpx.Request("POST", API_URL)
    return openai.BadRequestError(
        "maximum context length exceeded", response=httpx.Response(400, request=request), body=None
    )


def make_client(responder: Responder = lambda text, n: text_vector(text), max_attempts: int = 3) -> EmbeddingsClient:
    return EmbeddingsClient(
        FakeOpenAI(responder),
        model="test-embedding",
        max_attempts=max_attempts,
        retry_delay_s=0,
    )


def make_store(items, name: str = "") -> VectorStore:
    """items: iterable of (key, values)."""
    return VectorStore(
        ((key, key, EmbeddingVector(values=values)) for key, values in items),
        name=name,
    )


def read_csv_rows(path: Path) -> List[List[str]]:
    with path.open("r", encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()
