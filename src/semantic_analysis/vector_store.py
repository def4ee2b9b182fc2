from __future__ import annotations

import csv
import logging
import math
from collections.abc import Mapping
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from semantic_analysis.embedding_store import EMBEDDING_HEADER
from semantic_analysis.errors import DimensionMismatchError, EmptyStoreError, FatalInputError, MalformedRecordError
from semantic_analysis.models import EmbeddingVector

log = logging.getLogger("semantic_analysis.vector_store")

StoreEntry = Tuple[str, EmbeddingVector]


class VectorStore(Mapping):
    """
    Read-only, insertion-ordered mapping: unit key -> (unit text, vector).

    Never empty and never mixes dimensions; both are checked on construction.
    """

    def __init__(self, entries: Iterable[Tuple[str, str, EmbeddingVector]], *, name: str = "") -> None:
        data: Dict[str, StoreEntry] = {}
        for key, text, vector in entries:
            if key in data:
                raise FatalInputError(f"Duplicate key in vector store: {key!r}")
            data[key] = (text, vector)

        label = f" '{name}'" if name else ""
        if not data:
            raise EmptyStoreError(f"Vector store{label} has no valid records")

        dims = {vector.dimension for _, vector in data.values()}
        if len(dims) > 1:
            raise DimensionMismatchError(
                f"Vector store{label} mixes dimensions: {sorted(dims)}"
            )

        self._data = data
        self.name = name
        self.dimension = dims.pop()

    def __getitem__(self, key: str) -> StoreEntry:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"VectorStore(name={self.name!r}, size={len(self)}, dimension={self.dimension})"

    def text(self, key: str) -> str:
        return self._data[key][0]

    def vector(self, key: str) -> Tuple[float, ...]:
        return self._data[key][1].values


def display_text(key: str) -> str:
    """
    Human-facing label for a key: path-labelled units ("a: [0]: b: value")
    show only their leaf value.
    """
    if ": " in key:
        tail = key.rsplit(": ", 1)[1].strip()
        if tail:
            return tail
    return key


def parse_vector_tokens(fields: Sequence[str], line_no: int) -> List[float]:
    values: List[float] = []
    for field in fields:
        for token in field.split(","):
            token = token.strip().strip('"')
            if not token:
                continue
            try:
                value = float(token)
            except ValueError:
                raise MalformedRecordError(f"non-numeric value {token!r}", line_no) from None
            if not math.isfinite(value):
                raise MalformedRecordError(f"non-finite value {token!r}", line_no)
            values.append(value)

    if not values:
        raise MalformedRecordError("row has no vector values", line_no)
    return values


def parse_row(fields: Sequence[str], line_no: int) -> Tuple[str, str, List[float]]:
    """
    Split one CSV row into (key, display text, values).
    First field is the key, every following field contributes numbers.
    """
    if len(fields) < 2:
        raise MalformedRecordError("row has no vector column", line_no)

    key = fields[0].strip()
    if not key:
        raise MalformedRecordError("row has an empty key", line_no)

    values = parse_vector_tokens(fields[1:], line_no)
    return key, display_text(key), values


def normalize(values: Sequence[float]) -> List[float]:
    mag = math.sqrt(math.fsum(v * v for v in values))
    if mag == 0:
        return list(values)
    return [v / mag for v in values]


def _is_header(fields: Sequence[str]) -> bool:
    return tuple(f.strip().lower() for f in fields) == tuple(h.lower() for h in EMBEDDING_HEADER)


def load_vector_store(path: Path, *, normalize_vectors: bool = False) -> VectorStore:
    """
    Parse a persisted embedding CSV into a VectorStore.

    Malformed rows and repeated keys are logged and skipped; the load only
    fails when nothing usable remains or the surviving rows disagree on
    dimension.
    """
    path = Path(path)
    if not path.exists():
        raise FatalInputError(f"Embedding file not found: {path}")

    entries: List[Tuple[str, str, EmbeddingVector]] = []
    seen = set()
    skipped = 0

    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        for fields in reader:
            line_no = reader.line_num
            if not fields or not any(x.strip() for x in fields):
                continue
            if line_no == 1 and _is_header(fields):
                continue

            try:
                key, text, values = parse_row(fields, line_no)
            except MalformedRecordError as e:
                skipped += 1
                log.warning("Skipping malformed row in %s: %s", path.name, e)
                continue

            if key in seen:
                skipped += 1
                log.warning("Skipping duplicate key in %s line %d: %r", path.name, line_no, key)
                continue
            seen.add(key)

            if normalize_vectors:
                values = normalize(values)
            entries.append((key, text, EmbeddingVector(values=values)))

    store = VectorStore(entries, name=path.name)
    log.info(
        "Loaded %d vectors (dimension %d) from %s, skipped %d rows",
        len(store),
        store.dimension,
        path.name,
        skipped,
    )
    return store
