from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Literal, Sequence

import fitz  # PyMuPDF
from bs4 import BeautifulSoup

from semantic_analysis.errors import FatalInputError
from semantic_analysis.models import TextUnit

log = logging.getLogger("semantic_analysis.extract")

ExtractMode = Literal["elements", "whole"]

WHOLE_DOCUMENT_KEY = "document"

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")
_MARKDOWN_MARKS = re.compile(r"[#*\-]\s?")


# --- JSON -> text units ---

PATH_SEPARATOR = ": "


def _path_label(name: Any) -> str:
    """
    Escape the separator inside an object member name so that
    {"a: b": 1} and {"a": {"b": 1}} get different keys.
    """
    return str(name).replace("\\", "\\\\").replace(PATH_SEPARATOR, "\\" + PATH_SEPARATOR)


def _render_leaf(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def iter_json_units(node: Any, path: Sequence[str] = ()) -> Iterator[TextUnit]:
    """
    Depth-first walk over parsed JSON, yielding one TextUnit per leaf.

    The key is the path label ("employees: [0]: name"); the text is the
    path plus the leaf ("employees: [0]: name: Ada") so the embedded text
    keeps its context.
    """
    if isinstance(node, dict):
        for name, child in node.items():
            yield from iter_json_units(child, (*path, _path_label(name)))
    elif isinstance(node, list):
        for i, child in enumerate(node):
            yield from iter_json_units(child, (*path, f"[{i}]"))
    else:
        leaf = _render_leaf(node)
        if not path:
            yield TextUnit(key=WHOLE_DOCUMENT_KEY, text=leaf)
            return
        key = PATH_SEPARATOR.join(path)
        yield TextUnit(key=key, text=f"{key}: {leaf}")


def units_from_json(content: str, mode: ExtractMode = "elements") -> List[TextUnit]:
    """
    Turn JSON content into text units, either one per leaf or the whole
    document as a single unit.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise FatalInputError(f"The provided JSON content is malformed: {e}") from e

    if parsed is None or parsed == {} or parsed == []:
        raise FatalInputError("The provided JSON content is empty")

    if mode == "whole":
        return [TextUnit(key=WHOLE_DOCUMENT_KEY, text=content.strip())]
    if mode != "elements":
        raise ValueError(f"Unknown extraction mode: {mode!r}")

    return list(iter_json_units(parsed))


def load_text_units(json_file: Path, mode: ExtractMode = "elements") -> List[TextUnit]:
    if not json_file.exists():
        raise FatalInputError(f"The specified JSON file does not exist: {json_file}")
    units = units_from_json(json_file.read_text(encoding="utf-8"), mode=mode)
    log.info("Extracted %d units from %s (mode=%s)", len(units), json_file.name, mode)
    return units


# --- raw files -> lines ---

def _lines_from_json(path: Path) -> List[str]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list) and all(isinstance(x, str) for x in data):
        return data
    return [u.text for u in iter_json_units(data)]


def _lines_from_xml(path: Path) -> List[str]:
    soup = BeautifulSoup(path.read_text(encoding="utf-8"), "xml")
    lines = []
    for element in soup.find_all(True):
        text = element.get_text(" ", strip=True)
        if text:
            lines.append(f"{element.name}: {text}")
    return lines


def _lines_from_html(path: Path) -> List[str]:
    soup = BeautifulSoup(path.read_text(encoding="utf-8"), "lxml")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)
    return [text] if text else []


def _lines_from_markdown(path: Path) -> List[str]:
    text = _MARKDOWN_MARKS.sub(" ", path.read_text(encoding="utf-8")).replace("\n", " ").strip()
    return [text] if text else []


def _lines_from_pdf(path: Path) -> List[str]:
    with fitz.open(path) as doc:
        return [page.get_text() for page in doc]


def _raw_bytes(path: Path) -> List[str]:
    head = path.read_bytes()[:100]
    return [f"Raw Content (first 100 bytes): {head.hex('-').upper()}"]


def extract_file_lines(path: Path) -> List[str]:
    """
    Extract plain text lines from a document, dispatching on extension.
    """
    if not path.exists():
        raise FatalInputError(f"Input document not found: {path}")

    ext = path.suffix.lower()
    try:
        if ext in (".txt", ".csv"):
            return path.read_text(encoding="utf-8").splitlines()
        if ext == ".json":
            return _lines_from_json(path)
        if ext == ".xml":
            return _lines_from_xml(path)
        if ext in (".html", ".htm"):
            return _lines_from_html(path)
        if ext == ".md":
            return _lines_from_markdown(path)
        if ext == ".pdf":
            return _lines_from_pdf(path)
        return _raw_bytes(path)
    except (OSError, UnicodeDecodeError, ValueError, RuntimeError) as e:
        # json.JSONDecodeError is a ValueError; PyMuPDF raises RuntimeError subclasses
        raise FatalInputError(f"Error reading file {path}: {e}") from e


def clean_lines(lines: Iterable[str]) -> List[str]:
    """
    Split into sentences, lowercase, drop everything but letters, digits and spaces.
    """
    cleaned: List[str] = []
    for line in lines:
        for sentence in _SENTENCE_SPLIT.split(line):
            sentence = _NON_ALNUM.sub("", sentence.strip().lower()).strip()
            if sentence:
                cleaned.append(sentence)
    return cleaned


def find_input_documents(folder: Path, extensions: Iterable[str]) -> List[Path]:
    if not folder.is_dir():
        raise FatalInputError(f"Input folder not found: {folder}")
    allowed = {e.lower() for e in extensions}
    return sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in allowed)


def extract_document(path: Path, out_file: Path) -> dict:
    """
    Extract + clean one raw document and save the sentences as a JSON array.
    """
    sentences = clean_lines(extract_file_lines(path))
    if not sentences:
        raise FatalInputError(f"No text could be extracted from {path}")

    out_file.parent.mkdir(parents=True, exist_ok=True)
    out_file.write_text(json.dumps(sentences, ensure_ascii=False, indent=2), encoding="utf-8")

    summary = {"source": str(path), "sentences": len(sentences), "out_file": str(out_file)}
    log.info("Extraction finished: %s", summary)
    return summary
