from __future__ import annotations

import csv
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Set

from semantic_analysis.embeddings_client import EmbeddingsClient
from semantic_analysis.errors import FatalInputError, RejectedInputError, TransientServiceError
from semantic_analysis.models import EmbeddingRecord, TextUnit

log = logging.getLogger("semantic_analysis.embedding_store")

EMBEDDING_HEADER = ("Description", "Embedding")
DEFAULT_SAVE_INTERVAL = 10


def format_vector(values: Iterable[float]) -> str:
    """
    Comma-join floats. repr() is locale-independent and round-trips exactly.
    """
    return ",".join(repr(float(v)) for v in values)


def format_row(record: EmbeddingRecord) -> List[str]:
    return [record.unit_text, format_vector(record.vector.values)]


class EmbeddingStoreWriter:
    """
    Streams EmbeddingRecords to a CSV file.

    Rows are held in memory until ``save_interval`` of them have accumulated,
    then written, flushed and fsync'ed together. A crash therefore loses at
    most ``save_interval - 1`` rows; everything before the last checkpoint
    is on disk.
    """

    def __init__(self, path: Path, save_interval: int = DEFAULT_SAVE_INTERVAL) -> None:
        if save_interval < 1:
            raise ValueError("save_interval must be >= 1")
        self.path = Path(path)
        self.save_interval = save_interval
        self.rows_written = 0
        self.checkpoints = 0
        self._pending: List[List[str]] = []
        self._fh = None
        self._writer = None

    def __enter__(self) -> "EmbeddingStoreWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._fh, quoting=csv.QUOTE_ALL, lineterminator="\n")
        self._writer.writerow(EMBEDDING_HEADER)
        self._sync()

    def append(self, record: EmbeddingRecord) -> None:
        if self._writer is None:
            raise RuntimeError("EmbeddingStoreWriter is not open")
        self._pending.append(format_row(record))
        if len(self._pending) >= self.save_interval:
            self.checkpoint()

    def checkpoint(self) -> None:
        """
        Write buffered rows and force them to durable storage.
        """
        if not self._pending:
            return
        self._writer.writerows(self._pending)
        self.rows_written += len(self._pending)
        self._pending = []
        self._sync()
        self.checkpoints += 1
        log.info("Checkpoint reached: %d embeddings saved to %s", self.rows_written, self.path.name)

    def close(self) -> None:
        if self._fh is None:
            return
        try:
            self.checkpoint()
        finally:
            self._fh.close()
            self._fh = None
            self._writer = None

    def _sync(self) -> None:
        self._fh.flush()
        os.fsync(self._fh.fileno())


def write_embeddings(
    units: Iterable[TextUnit],
    client: EmbeddingsClient,
    out_file: Path,
    save_interval: Optional[int] = None,
    stop: Optional[threading.Event] = None,
) -> dict:
    """
    Embed units one at a time, in input order, streaming each success to out_file.

    - blank units are skipped
    - a unit whose retries are exhausted, or whose text the service refuses,
      is logged and skipped
    - FatalInputError aborts the batch; rows embedded so far are kept
    - setting ``stop`` (e.g. from a sibling batch that failed) ends the batch
      before the next unit; the summary is returned with ``stopped=True``
    """
    if save_interval is None:
        save_interval = DEFAULT_SAVE_INTERVAL

    seen: Set[str] = set()
    total = 0
    embedded = 0
    skipped = 0
    failed = 0
    stopped = False

    with EmbeddingStoreWriter(out_file, save_interval=save_interval) as writer:
        for idx, unit in enumerate(units, start=1):
            if stop is not None and stop.is_set():
                stopped = True
                log.warning("Stop requested; leaving %s after %d units", out_file, total)
                break

            total += 1

            if unit.key in seen:
                raise FatalInputError(f"Duplicate text unit key: {unit.key!r}")
            seen.add(unit.key)

            if not unit.text.strip():
                skipped += 1
                log.warning("(%d) Skipping blank unit %r", idx, unit.key)
                continue

            log.info("(%d) Embedding %s", idx, unit.key)

            try:
                vector = client.embed(unit.text)
            except TransientServiceError as e:
                failed += 1
                log.error("(%d) Giving up on unit %r after retries: %s", idx, unit.key, e)
                continue
            except RejectedInputError as e:
                failed += 1
                log.error("(%d) Unit %r refused: %s", idx, unit.key, e)
                continue

            writer.append(EmbeddingRecord(unit_key=unit.key, unit_text=unit.text, vector=vector))
            embedded += 1

    # counted after close(), which checkpoints the tail
    checkpoints = writer.checkpoints

    summary = {
        "total": total,
        "embedded": embedded,
        "skipped": skipped,
        "failed": failed,
        "checkpoints": checkpoints,
        "stopped": stopped,
        "out_file": str(out_file),
    }
    log.info("Embedding finished: %s", summary)
    return summary
