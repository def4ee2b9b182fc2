from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from semantic_analysis.errors import MalformedRecordError
from semantic_analysis.models import SimilarityReport, SimilarityRow
from semantic_analysis.similarity import SCORE_PRECISION
from semantic_analysis.vector_store import display_text

log = logging.getLogger("semantic_analysis.results")

RESULT_HEADER = ("Word/Document", "Word/Document", "Cosine_Similarity")
DOCUMENT_SIMILARITY_PREFIX = "Overall Document Similarity -->"


def format_score(score: float) -> str:
    return f"{score:.{SCORE_PRECISION}f}"


def write_similarity_csv(report: SimilarityReport, path: Path) -> Path:
    """
    Write pair rows, then one trailing aggregate row.
    Goes through a temp file + rename so readers never see a half-written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")

    with tmp.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(RESULT_HEADER)
        for row in report.rows:
            writer.writerow([row.key_a, row.key_b, format_score(row.score)])
        writer.writerow([f"{DOCUMENT_SIMILARITY_PREFIX} {format_score(report.document_similarity)}"])
        f.flush()
        os.fsync(f.fileno())

    os.replace(tmp, path)
    log.info("Results saved to %s (%d pairs)", path, len(report.rows))
    return path


def _parse_score(token: str, line_no: int) -> float:
    try:
        score = float(token.strip())
    except ValueError as e:
        raise MalformedRecordError(f"score {token!r} is not a number", line_no) from e
    if not -1.0 <= score <= 1.0:
        raise MalformedRecordError(f"score {token!r} is outside [-1, 1]", line_no)
    return score


def read_similarity_csv(path: Path) -> Tuple[List[SimilarityRow], Optional[float]]:
    """
    Read a results file back, separating pair rows from the aggregate row.
    """
    path = Path(path)
    rows: List[SimilarityRow] = []
    doc_score: Optional[float] = None

    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        for fields in reader:
            if not fields:
                continue
            if tuple(fields) == RESULT_HEADER:
                continue
            if fields[0].startswith(DOCUMENT_SIMILARITY_PREFIX):
                doc_score = _parse_score(fields[0][len(DOCUMENT_SIMILARITY_PREFIX):], reader.line_num)
                continue
            if len(fields) != 3:
                raise MalformedRecordError(f"expected 3 columns, got {len(fields)}", reader.line_num)

            key_a, key_b, score = fields
            rows.append(
                SimilarityRow(
                    key_a=key_a,
                    text_a=display_text(key_a),
                    key_b=key_b,
                    text_b=display_text(key_b),
                    score=_parse_score(score, reader.line_num),
                )
            )

    return rows, doc_score
