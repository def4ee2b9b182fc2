from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from semantic_analysis import __version__
from semantic_analysis.config import ensure_dirs, get_settings
from semantic_analysis.embedding_store import write_embeddings
from semantic_analysis.embeddings_client import EmbeddingsClient
from semantic_analysis.errors import SemanticAnalysisError
from semantic_analysis.extract import extract_document, find_input_documents, load_text_units
from semantic_analysis.logging_utils import setup_logging
from semantic_analysis.pipeline import compute_similarity, run_pipeline
from semantic_analysis.similarity import top_pairs

app = typer.Typer(add_completion=False, help="Semantic similarity between two documents")


def _fail(message: str) -> None:
    typer.secho(f"FAILED {message}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command()
def health() -> None:
    """Health check to verify config + logging works."""
    settings = get_settings()
    setup_logging(settings.log_level)
    log = logging.getLogger("semantic_analysis.health")

    log.info("Health check OK.")
    log.info("Embedding model: %s", settings.openai_embedding_model)
    log.info("API key configured: %s", "yes" if settings.openai_api_key else "no")
    log.info("Retry policy: %d attempts, %.1fs delay", settings.embed_max_attempts, settings.embed_retry_delay_s)
    log.info("Raw data dir: %s", settings.data_raw_dir)
    log.info("Extracted data dir: %s", settings.data_extracted_dir)
    log.info("Embeddings dir: %s", settings.embeddings_dir)
    log.info("Output dir: %s", settings.output_dir)

    typer.echo("OK")


@app.command()
def version() -> None:
    """Print version and exit."""
    typer.echo(f"semantic-analysis {__version__}")


@app.command()
def extract(
    raw_dir: Optional[Path] = typer.Option(None, "--raw", help="Folder with the two raw documents (default: data/raw)"),
    out_dir: Optional[Path] = typer.Option(None, "--out", help="Output folder (default: data/extracted)"),
) -> None:
    """
    Extract and clean the two raw documents into JSON sentence lists.
    """
    settings = get_settings()
    setup_logging(settings.log_level)
    ensure_dirs(settings)

    raw_dir = raw_dir or settings.data_raw_dir
    out_dir = out_dir or settings.data_extracted_dir

    try:
        docs = find_input_documents(raw_dir, settings.supported_extensions)
        if len(docs) != 2:
            _fail(f"stage=extract expected exactly two documents in {raw_dir}, found {len(docs)}")
        for doc in docs:
            typer.echo(extract_document(doc, out_dir / f"{doc.stem}.json"))
    except SemanticAnalysisError as e:
        _fail(f"stage=extract {e}")


@app.command()
def embed(
    json_file: Path = typer.Argument(..., help="Extracted JSON document"),
    out_file: Optional[Path] = typer.Option(None, "--out", help="Output CSV (default: data/embeddings/<name>_embeddings.csv)"),
    mode: str = typer.Option("elements", "--mode", help="elements: one unit per JSON leaf; whole: one unit"),
    save_interval: Optional[int] = typer.Option(None, "--save-interval", help="Rows between checkpoint flushes"),
) -> None:
    """
    Generate embeddings for one document and stream them to CSV.
    """
    settings = get_settings()
    setup_logging(settings.log_level)
    ensure_dirs(settings)

    if mode not in ("elements", "whole"):
        raise typer.BadParameter("mode must be 'elements' or 'whole'")
    if out_file is None:
        out_file = settings.embeddings_dir / f"{json_file.stem}_embeddings.csv"

    try:
        units = load_text_units(json_file, mode=mode)
        client = EmbeddingsClient(settings=settings)
        summary = write_embeddings(
            units,
            client,
            out_file,
            save_interval=save_interval or settings.save_interval,
        )
    except SemanticAnalysisError as e:
        _fail(f"stage=embed {e}")

    typer.echo(summary)


@app.command()
def similarity(
    embeddings_a: Path = typer.Argument(..., help="Embedding CSV of document A"),
    embeddings_b: Path = typer.Argument(..., help="Embedding CSV of document B"),
    out_file: Optional[Path] = typer.Option(None, "--out", help="Output CSV (default: data/output/similarity.csv)"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Worker processes for the pair matrix"),
    normalize: bool = typer.Option(False, "--normalize", help="Scale vectors to unit length on load"),
    top: int = typer.Option(5, "--top", help="Show the N most similar pairs"),
) -> None:
    """
    Compare two embedding files: every pair plus the overall document score.
    """
    settings = get_settings()
    setup_logging(settings.log_level)
    ensure_dirs(settings)

    if out_file is None:
        out_file = settings.output_dir / "similarity.csv"

    try:
        report = compute_similarity(
            embeddings_a,
            embeddings_b,
            out_file,
            max_workers=workers or settings.similarity_workers,
            normalize_vectors=normalize,
        )
    except SemanticAnalysisError as e:
        _fail(f"stage=similarity {e}")

    for row in top_pairs(report.rows, top):
        typer.echo(f"{row.score:.4f} | {row.text_a} <-> {row.text_b}")
    typer.echo(f"Overall document similarity: {report.document_similarity:.4f}")
    typer.echo(f"Results: {out_file}")


@app.command()
def run(
    doc_a: Path = typer.Argument(..., help="First document"),
    doc_b: Path = typer.Argument(..., help="Second document"),
    mode: str = typer.Option("elements", "--mode", help="elements: one unit per JSON leaf; whole: one unit"),
    out_file: Optional[Path] = typer.Option(None, "--out", help="Output similarity CSV"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Worker processes for the pair matrix"),
) -> None:
    """
    Run the whole workflow: extract -> embed -> load -> compare -> save.
    """
    settings = get_settings()
    setup_logging(settings.log_level)

    if mode not in ("elements", "whole"):
        raise typer.BadParameter("mode must be 'elements' or 'whole'")

    res = run_pipeline(doc_a, doc_b, settings=settings, mode=mode, output_file=out_file, max_workers=workers)

    if res["status"] != "ok":
        typer.echo(f"Completed stages: {', '.join(res['completed']) or '-'}")
        _fail(f"stage={res['stage']} {res['detail']}")

    typer.secho("OK", fg=typer.colors.GREEN)
    typer.echo(f"Embed: {res['embed']}")
    typer.echo(f"Pairs: {res['pairs']}")
    typer.echo(f"Overall document similarity: {res['document_similarity']:.4f}")
    typer.echo(f"Results: {res['out_file']}")
