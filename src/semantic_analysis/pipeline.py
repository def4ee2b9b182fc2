from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from semantic_analysis.config import Settings, ensure_dirs, get_settings
from semantic_analysis.embedding_store import write_embeddings
from semantic_analysis.embeddings_client import EmbeddingsClient
from semantic_analysis.errors import SemanticAnalysisError
from semantic_analysis.extract import ExtractMode, extract_document, load_text_units
from semantic_analysis.models import SimilarityReport, TextUnit
from semantic_analysis.results import write_similarity_csv
from semantic_analysis.similarity import compare_stores
from semantic_analysis.vector_store import load_vector_store

log = logging.getLogger("semantic_analysis.pipeline")


class Stage(str, Enum):
    EXTRACT = "extract"
    EMBED = "embed"
    PERSIST_EMBEDDINGS = "persist_embeddings"
    LOAD_VECTORS = "load_vectors"
    COMPUTE_SIMILARITY = "compute_similarity"
    PERSIST_RESULTS = "persist_results"
    DONE = "done"


def prepare_units(doc: Path, extracted_dir: Path, mode: ExtractMode = "elements") -> List[TextUnit]:
    """
    JSON documents are used as-is; any other supported format is extracted
    to a JSON sentence list first.
    """
    if doc.suffix.lower() != ".json":
        json_file = extracted_dir / f"{doc.stem}.json"
        extract_document(doc, json_file)
        doc = json_file
    return load_text_units(doc, mode=mode)


def embed_document(
    units: List[TextUnit],
    out_file: Path,
    client: EmbeddingsClient,
    save_interval: int,
    stop: Optional[threading.Event] = None,
) -> dict:
    log.info("Embedding %d units -> %s", len(units), out_file)
    return write_embeddings(units, client, out_file, save_interval=save_interval, stop=stop)


def embed_documents(
    units_a: List[TextUnit],
    units_b: List[TextUnit],
    out_a: Path,
    out_b: Path,
    client: EmbeddingsClient,
    save_interval: int,
) -> List[dict]:
    """
    Embed both documents concurrently; each one stays strictly sequential.

    If either batch raises, the other is told to stop before its next unit
    and the first error is re-raised.
    """
    stop = threading.Event()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="embed") as pool:
        futures = [
            pool.submit(embed_document, units_a, out_a, client, save_interval, stop),
            pool.submit(embed_document, units_b, out_b, client, save_interval, stop),
        ]
        finished, _ = wait(futures, return_when=FIRST_EXCEPTION)
        failed = [f for f in futures if f in finished and f.exception() is not None]
        if failed:
            stop.set()
            raise failed[0].exception()
        return [f.result() for f in futures]


def compute_similarity(
    embeddings_a: Path,
    embeddings_b: Path,
    out_file: Optional[Path] = None,
    *,
    max_workers: int = 1,
    normalize_vectors: bool = False,
) -> SimilarityReport:
    store_a = load_vector_store(embeddings_a, normalize_vectors=normalize_vectors)
    store_b = load_vector_store(embeddings_b, normalize_vectors=normalize_vectors)
    report = compare_stores(store_a, store_b, max_workers=max_workers)
    if out_file is not None:
        write_similarity_csv(report, out_file)
    return report


def run_pipeline(
    doc_a: Path,
    doc_b: Path,
    *,
    client: Optional[EmbeddingsClient] = None,
    settings: Optional[Settings] = None,
    mode: ExtractMode = "elements",
    output_file: Optional[Path] = None,
    save_interval: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Extract -> Embed/Persist -> Load -> Compare -> Persist results.

    Any SemanticAnalysisError stops the run; the returned dict names the
    stage that failed and lists the stages that completed. There is no
    stage-level retry.
    """
    settings = settings or get_settings()
    ensure_dirs(settings)

    if save_interval is None:
        save_interval = settings.save_interval
    if max_workers is None:
        max_workers = settings.similarity_workers

    emb_a = settings.embeddings_dir / f"{doc_a.stem}_embeddings.csv"
    emb_b = settings.embeddings_dir / f"{doc_b.stem}_embeddings.csv"
    if emb_a == emb_b:
        emb_b = settings.embeddings_dir / f"{doc_b.stem}_b_embeddings.csv"
    if output_file is None:
        output_file = settings.output_dir / f"similarity_{doc_a.stem}_vs_{doc_b.stem}.csv"

    result: Dict[str, Any] = {"status": "ok", "completed": []}
    stage = Stage.EXTRACT

    def done(s: Stage) -> None:
        result["completed"].append(s.value)
        log.info("Stage complete: %s", s.value)

    try:
        units_a = prepare_units(doc_a, settings.data_extracted_dir, mode)
        units_b = prepare_units(doc_b, settings.data_extracted_dir, mode)
        result["extract"] = {"units_a": len(units_a), "units_b": len(units_b)}
        done(stage)

        stage = Stage.EMBED
        if client is None:
            client = EmbeddingsClient(settings=settings)
        summaries = embed_documents(units_a, units_b, emb_a, emb_b, client, save_interval)
        result["embed"] = {"a": summaries[0], "b": summaries[1]}
        done(stage)
        # rows are persisted as they are embedded
        done(Stage.PERSIST_EMBEDDINGS)

        stage = Stage.LOAD_VECTORS
        store_a = load_vector_store(emb_a)
        store_b = load_vector_store(emb_b)
        done(stage)

        stage = Stage.COMPUTE_SIMILARITY
        report = compare_stores(store_a, store_b, max_workers=max_workers)
        done(stage)

        stage = Stage.PERSIST_RESULTS
        write_similarity_csv(report, output_file)
        done(stage)

    except SemanticAnalysisError as e:
        log.error("Pipeline failed at stage %s: %s", stage.value, e)
        result.update({"status": "failed", "stage": stage.value, "detail": str(e)})
        return result

    done(Stage.DONE)
    result.update(
        {
            "pairs": len(report.rows),
            "document_similarity": report.document_similarity,
            "out_file": str(output_file),
        }
    )
    return result
