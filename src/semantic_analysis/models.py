from __future__ import annotations

import math
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TextUnit(BaseModel):
    """
    One addressable piece of text extracted from a document.
    The key is unique within its document.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    text: str


class EmbeddingVector(BaseModel):
    """
    Fixed-length embedding returned by the embedding service.
    """

    model_config = ConfigDict(frozen=True)

    values: Tuple[float, ...]

    @field_validator("values")
    @classmethod
    def values_finite(cls, v: Tuple[float, ...]) -> Tuple[float, ...]:
        if not v:
            raise ValueError("embedding vector must not be empty")
        for x in v:
            if not math.isfinite(x):
                raise ValueError(f"embedding vector contains non-finite value {x!r}")
        return v

    @property
    def dimension(self) -> int:
        return len(self.values)

    def __len__(self) -> int:
        return len(self.values)


class EmbeddingRecord(BaseModel):
    """
    Unit of persistence: one per successfully embedded TextUnit.
    """

    model_config = ConfigDict(frozen=True)

    unit_key: str
    unit_text: str
    vector: EmbeddingVector


class SimilarityRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    key_a: str
    text_a: str
    key_b: str
    text_b: str
    score: float = Field(..., ge=-1.0, le=1.0)


class SimilarityReport(BaseModel):
    """
    Result of comparing two vector stores: the full pair matrix plus
    the document-level aggregate.
    """

    rows: List[SimilarityRow] = Field(default_factory=list)
    document_similarity: float = Field(..., ge=-1.0, le=1.0)
    size_a: int = 0
    size_b: int = 0
