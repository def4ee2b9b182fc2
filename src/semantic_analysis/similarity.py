from __future__ import annotations

import logging
import math
from concurrent.futures import ProcessPoolExecutor
from typing import List, Sequence, Tuple

from semantic_analysis.errors import DimensionMismatchError
from semantic_analysis.models import SimilarityReport, SimilarityRow
from semantic_analysis.vector_store import VectorStore

log = logging.getLogger("semantic_analysis.similarity")

# Surfaced scores are rounded so output is stable across platforms
SCORE_PRECISION = 10

Vector = Sequence[float]


def validate_vectors(u: Vector, v: Vector) -> None:
    if len(u) != len(v):
        raise DimensionMismatchError(f"Vectors must be of the same length ({len(u)} != {len(v)})")
    if not u:
        raise DimensionMismatchError("Vectors must not be empty")


def dot(u: Vector, v: Vector) -> float:
    validate_vectors(u, v)
    return math.fsum(a * b for a, b in zip(u, v))


def magnitude(u: Vector) -> float:
    return math.sqrt(math.fsum(x * x for x in u))


def cosine_similarity(u: Vector, v: Vector) -> float:
    """
    dot(u, v) / (|u| * |v|), or 0.0 when either vector has zero magnitude.
    """
    validate_vectors(u, v)

    mag_u = magnitude(u)
    mag_v = magnitude(v)
    if mag_u == 0 or mag_v == 0:
        return 0.0

    score = dot(u, v) / (mag_u * mag_v)
    return max(-1.0, min(1.0, score))


def rounded(score: float) -> float:
    # + 0.0 folds -0.0 into 0.0
    return round(score, SCORE_PRECISION) + 0.0


def _score_block(
    start: int,
    block: Sequence[Vector],
    others: Sequence[Vector],
) -> Tuple[int, List[List[float]]]:
    """
    Scores for a contiguous run of store-A vectors against all of store B.
    Runs in a worker process; returns its own results tagged with ``start``.
    """
    return start, [[rounded(cosine_similarity(a, b)) for b in others] for a in block]


def _check_compatible(store_a: VectorStore, store_b: VectorStore) -> None:
    if store_a.dimension != store_b.dimension:
        raise DimensionMismatchError(
            f"Cannot compare {store_a.name or 'store A'} (dimension {store_a.dimension}) "
            f"with {store_b.name or 'store B'} (dimension {store_b.dimension}); "
            "were they embedded with different models?"
        )


def pairwise_similarity(
    store_a: VectorStore,
    store_b: VectorStore,
    *,
    max_workers: int = 1,
) -> List[SimilarityRow]:
    """
    Cosine similarity for every (unit of A, unit of B) pair.

    Rows come back in store A order, then store B order, however the work
    was scheduled.
    """
    _check_compatible(store_a, store_b)

    keys_a = list(store_a)
    keys_b = list(store_b)
    vectors_a = [store_a.vector(k) for k in keys_a]
    vectors_b = [store_b.vector(k) for k in keys_b]

    if max_workers <= 1 or len(keys_a) < 2:
        blocks = [_score_block(0, vectors_a, vectors_b)]
    else:
        chunk = max(1, math.ceil(len(keys_a) / (max_workers * 4)))
        log.info(
            "Scoring %d x %d pairs with %d workers (%d rows per task)",
            len(keys_a),
            len(keys_b),
            max_workers,
            chunk,
        )
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            futures = [
                pool.submit(_score_block, start, vectors_a[start:start + chunk], vectors_b)
                for start in range(0, len(keys_a), chunk)
            ]
            blocks = [f.result() for f in futures]

    # completion order is irrelevant: blocks are placed by their start index
    blocks.sort(key=lambda b: b[0])

    rows: List[SimilarityRow] = []
    for start, scores in blocks:
        for offset, line in enumerate(scores):
            key_a = keys_a[start + offset]
            text_a = store_a.text(key_a)
            for key_b, score in zip(keys_b, line):
                rows.append(
                    SimilarityRow(
                        key_a=key_a,
                        text_a=text_a,
                        key_b=key_b,
                        text_b=store_b.text(key_b),
                        score=score,
                    )
                )
    return rows


def centroid(store: VectorStore) -> List[float]:
    """
    Element-wise mean of every vector in the store.
    """
    vectors = [store.vector(k) for k in store]
    n = len(vectors)
    return [math.fsum(column) / n for column in zip(*vectors)]


def document_similarity(store_a: VectorStore, store_b: VectorStore) -> float:
    """
    Cosine similarity between the two stores' centroid vectors.
    """
    _check_compatible(store_a, store_b)
    return rounded(cosine_similarity(centroid(store_a), centroid(store_b)))


def compare_stores(
    store_a: VectorStore,
    store_b: VectorStore,
    *,
    max_workers: int = 1,
) -> SimilarityReport:
    rows = pairwise_similarity(store_a, store_b, max_workers=max_workers)
    doc_score = document_similarity(store_a, store_b)
    log.info(
        "Compared %d x %d units, overall document similarity %.4f",
        len(store_a),
        len(store_b),
        doc_score,
    )
    return SimilarityReport(
        rows=rows,
        document_similarity=doc_score,
        size_a=len(store_a),
        size_b=len(store_b),
    )


def top_pairs(rows: Sequence[SimilarityRow], n: int = 10) -> List[SimilarityRow]:
    """
    The n highest-scoring rows; ties keep their original order.
    """
    return sorted(rows, key=lambda r: -r.score)[:max(0, n)]
