from __future__ import annotations

import threading

import pytest

from conftest import auth_error, context_length_error, make_client, read_csv_rows, text_vector, timeout_error
from semantic_analysis.embedding_store import EMBEDDING_HEADER, EmbeddingStoreWriter, format_row, write_embeddings
from semantic_analysis.errors import FatalInputError
from semantic_analysis.models import EmbeddingRecord, EmbeddingVector, TextUnit


class SimulatedCrash(RuntimeError):
    pass


def units(n: int):
    return [TextUnit(key=f"k{i}", text=f"unit number {i}") for i in range(1, n + 1)]


def test_format_row_quotes_vector_as_one_field():
    record = EmbeddingRecord(unit_key="k", unit_text="hello", vector=EmbeddingVector(values=[0.5, -1.25, 3.0]))
    assert format_row(record) == ["hello", "0.5,-1.25,3.0"]


def test_output_layout(tmp_path):
    out = tmp_path / "emb.csv"

    write_embeddings(units(2), make_client(), out, save_interval=10)

    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == '"Description","Embedding"'
    v = text_vector("unit number 1")
    assert lines[1] == '"unit number 1","' + ",".join(repr(x) for x in v) + '"'
    assert len(lines) == 3


def test_all_successes_are_persisted(tmp_path):
    out = tmp_path / "emb.csv"

    summary = write_embeddings(units(25), make_client(), out, save_interval=10)

    rows = read_csv_rows(out)
    assert tuple(rows[0]) == EMBEDDING_HEADER
    assert len(rows) - 1 == 25
    assert summary["embedded"] == 25
    # 10, 20, then the tail of 5 on close
    assert summary["checkpoints"] == 3


def test_crash_keeps_rows_up_to_last_checkpoint(tmp_path):
    """Crash while embedding unit 24: the flushes at 10 and 20 survive, nothing else."""
    out = tmp_path / "emb.csv"
    on_disk = {}

    def responder(text, n):
        if n == 24:
            on_disk["rows"] = len(read_csv_rows(out)) - 1
            return SimulatedCrash("power cut")
        return text_vector(text)

    with pytest.raises(SimulatedCrash):
        write_embeddings(units(30), make_client(responder), out, save_interval=10)

    assert on_disk["rows"] == 20


def test_checkpoint_at_every_interval(tmp_path):
    out = tmp_path / "emb.csv"
    seen = []

    def responder(text, n):
        seen.append(len(read_csv_rows(out)) - 1)
        return text_vector(text)

    write_embeddings(units(7), make_client(responder), out, save_interval=3)

    # rows on disk when each unit was requested
    assert seen == [0, 0, 0, 3, 3, 3, 6]
    assert len(read_csv_rows(out)) - 1 == 7


def test_failed_unit_is_skipped_and_batch_continues(tmp_path):
    out = tmp_path / "emb.csv"

    def responder(text, n):
        if text == "unit number 2":
            return timeout_error()
        return text_vector(text)

    summary = write_embeddings(units(4), make_client(responder, max_attempts=2), out)

    descriptions = [r[0] for r in read_csv_rows(out)[1:]]
    assert descriptions == ["unit number 1", "unit number 3", "unit number 4"]
    assert summary["failed"] == 1
    assert summary["embedded"] == 3


def test_refused_unit_is_skipped_and_batch_continues(tmp_path):
    """A 400 for one over-long unit must not cost the remaining units."""
    out = tmp_path / "emb.csv"
    client = make_client(lambda text, n: context_length_error() if n == 1 else text_vector(text))

    summary = write_embeddings(units(5), client, out)

    assert len(client._client.embeddings.calls) == 5
    assert summary["failed"] == 1
    assert summary["embedded"] == 4
    assert [r[0] for r in read_csv_rows(out)[1:]] == [f"unit number {i}" for i in range(2, 6)]


def test_stop_event_ends_batch_before_next_unit(tmp_path):
    out = tmp_path / "emb.csv"
    stop = threading.Event()

    def responder(text, n):
        if n == 2:
            stop.set()
        return text_vector(text)

    client = make_client(responder)
    summary = write_embeddings(units(10), client, out, save_interval=4, stop=stop)

    assert len(client._client.embeddings.calls) == 2
    assert summary["stopped"] is True
    assert summary["embedded"] == 2
    assert len(read_csv_rows(out)) - 1 == 2


def test_blank_unit_is_skipped(tmp_path):
    out = tmp_path / "emb.csv"
    batch = [TextUnit(key="a", text="alpha"), TextUnit(key="b", text="  "), TextUnit(key="c", text="gamma")]

    summary = write_embeddings(batch, make_client(), out)

    assert summary["skipped"] == 1
    assert [r[0] for r in read_csv_rows(out)[1:]] == ["alpha", "gamma"]


def test_fatal_error_aborts_but_keeps_partial_output(tmp_path):
    out = tmp_path / "emb.csv"

    def responder(text, n):
        return auth_error() if n == 3 else text_vector(text)

    with pytest.raises(FatalInputError):
        write_embeddings(units(5), make_client(responder), out, save_interval=10)

    assert len(read_csv_rows(out)) - 1 == 2


def test_duplicate_keys_are_rejected(tmp_path):
    batch = [TextUnit(key="same", text="one"), TextUnit(key="same", text="two")]
    with pytest.raises(FatalInputError):
        write_embeddings(batch, make_client(), tmp_path / "emb.csv")


def test_writer_rejects_bad_interval(tmp_path):
    with pytest.raises(ValueError):
        EmbeddingStoreWriter(tmp_path / "x.csv", save_interval=0)


def test_overwrites_previous_run(tmp_path):
    out = tmp_path / "emb.csv"
    out.write_text("stale\n", encoding="utf-8")

    write_embeddings(units(1), make_client(), out)

    assert read_csv_rows(out)[0] == list(EMBEDDING_HEADER)
    assert len(read_csv_rows(out)) == 2
