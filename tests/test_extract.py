from __future__ import annotations

import json

import fitz
import pytest

from semantic_analysis.errors import FatalInputError
from semantic_analysis.extract import (
    clean_lines,
    extract_document,
    extract_file_lines,
    find_input_documents,
    iter_json_units,
    load_text_units,
    units_from_json,
)


def test_json_walk_yields_path_labelled_leaves():
    doc = {"title": "Report", "authors": [{"name": "Ada"}, {"name": "Alan"}], "draft": False, "notes": None}

    units = list(iter_json_units(doc))

    assert [u.key for u in units] == [
        "title",
        "authors: [0]: name",
        "authors: [1]: name",
        "draft",
        "notes",
    ]
    assert units[1].text == "authors: [0]: name: Ada"
    assert units[3].text == "draft: false"
    assert units[4].text == "notes: "


def test_json_walk_is_lazy():
    walker = iter_json_units({"a": 1, "b": 2})
    assert next(walker).key == "a"


def test_member_names_containing_separator_stay_distinct():
    units = list(iter_json_units({"a: b": 1, "a": {"b": 2}}))

    assert [u.key for u in units] == ["a\\: b", "a: b"]
    assert len({u.text for u in units}) == 2


def test_scalar_document_is_single_unit():
    (unit,) = units_from_json('"just text"')
    assert unit.key == "document"
    assert unit.text == "just text"


def test_whole_mode_returns_one_unit():
    content = '{"a": [1, 2, 3]}'
    (unit,) = units_from_json(content, mode="whole")
    assert unit.text == content


@pytest.mark.parametrize("content", ["{not json", "", "null", "{}", "[]"])
def test_bad_json_is_fatal(content):
    with pytest.raises(FatalInputError):
        units_from_json(content)


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        units_from_json("[1]", mode="chunks")


def test_load_text_units_missing_file(tmp_path):
    with pytest.raises(FatalInputError):
        load_text_units(tmp_path / "missing.json")


def test_clean_lines_splits_and_normalizes():
    lines = ["Hello, World! How are you?  Fine.", "", "   ", "Über-cool #1"]
    assert clean_lines(lines) == ["hello world", "how are you", "fine", "bercool 1"]


def test_text_and_markdown_extraction(tmp_path):
    txt = tmp_path / "a.txt"
    txt.write_text("first line\nsecond line\n", encoding="utf-8")
    md = tmp_path / "b.md"
    md.write_text("# Title\n* item one\n* item two\n", encoding="utf-8")

    assert extract_file_lines(txt) == ["first line", "second line"]
    (flat,) = extract_file_lines(md)
    assert "Title" in flat and "item two" in flat and "#" not in flat


def test_html_extraction_drops_markup_and_scripts(tmp_path):
    html = tmp_path / "page.html"
    html.write_text(
        "<html><head><script>var x = 1;</script></head><body><h1>Heading</h1><p>Body text.</p></body></html>",
        encoding="utf-8",
    )

    (text,) = extract_file_lines(html)

    assert "Heading" in text and "Body text." in text
    assert "var x" not in text


def test_xml_extraction(tmp_path):
    xml = tmp_path / "data.xml"
    xml.write_text("<root><item>alpha</item><item>beta</item></root>", encoding="utf-8")

    lines = extract_file_lines(xml)

    assert "item: alpha" in lines
    assert "item: beta" in lines


def test_json_list_of_strings(tmp_path):
    f = tmp_path / "s.json"
    f.write_text(json.dumps(["one sentence", "two sentence"]), encoding="utf-8")
    assert extract_file_lines(f) == ["one sentence", "two sentence"]


def test_pdf_extraction(tmp_path):
    pdf = tmp_path / "doc.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Hello from a PDF page.")
    doc.save(str(pdf))
    doc.close()

    (text,) = extract_file_lines(pdf)

    assert "Hello from a PDF page." in text


def test_unknown_extension_falls_back_to_bytes(tmp_path):
    f = tmp_path / "blob.bin"
    f.write_bytes(b"\x00\x01\xff")
    assert extract_file_lines(f) == ["Raw Content (first 100 bytes): 00-01-FF"]


def test_corrupt_json_file_is_fatal(tmp_path):
    f = tmp_path / "bad.json"
    f.write_text("{", encoding="utf-8")
    with pytest.raises(FatalInputError):
        extract_file_lines(f)


def test_extract_document_writes_sentence_list(tmp_path):
    src = tmp_path / "raw.txt"
    src.write_text("The cat sat. The dog ran!\n", encoding="utf-8")
    out = tmp_path / "out" / "raw.json"

    summary = extract_document(src, out)

    assert summary["sentences"] == 2
    assert json.loads(out.read_text(encoding="utf-8")) == ["the cat sat", "the dog ran"]


def test_find_input_documents_filters_by_extension(tmp_path):
    for name in ("b.txt", "a.pdf", "c.exe", "d.JSON"):
        (tmp_path / name).write_text("x", encoding="utf-8")

    found = find_input_documents(tmp_path, [".txt", ".pdf", ".json"])

    assert [p.name for p in found] == ["a.pdf", "b.txt", "d.JSON"]
