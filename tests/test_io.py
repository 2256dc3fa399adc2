from __future__ import annotations

from pathlib import Path

import fitz
import pytest

from notebatch.io import LoadedDocument, extract_pdf_text, load_syllabus


@pytest.fixture
def markdown_file(tmp_path: Path) -> Path:
    path = tmp_path / "syllabus.md"
    path.write_text("# Physiology\n\n- Cardiac cycle\n- Renal clearance\n", encoding="utf-8")
    return path


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "syllabus.pdf"
    doc = fitz.open()
    for text in ("Week 1: Cell membranes", "Week 2: Action potentials"):
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(path)
    doc.close()
    return path


def test_load_syllabus_markdown(markdown_file: Path) -> None:
    document = load_syllabus(markdown_file)
    assert isinstance(document, LoadedDocument)
    assert document.metadata["kind"] == "text"
    assert document.metadata["length"] == len(document.content)
    assert document.metadata["path"].endswith("syllabus.md")
    assert "Cardiac cycle" in document.content


def test_load_syllabus_json_kind(tmp_path: Path) -> None:
    path = tmp_path / "topics.json"
    path.write_text('["Glycolysis", "Krebs cycle"]', encoding="utf-8")

    document = load_syllabus(path)
    assert document.metadata["kind"] == "json"
    assert document.to_dict()["source"] == str(path)


def test_load_syllabus_pdf_joins_pages(pdf_file: Path) -> None:
    document = load_syllabus(pdf_file)

    assert document.metadata["kind"] == "pdf"
    assert document.metadata["pages"] == 2
    assert "--- Page 1 ---" in document.content
    assert "--- Page 2 ---" in document.content
    assert document.content.index("Cell membranes") < document.content.index("Action potentials")


def test_extract_pdf_text_returns_one_entry_per_page(pdf_file: Path) -> None:
    pages = extract_pdf_text(pdf_file)
    assert len(pages) == 2
    assert "Week 1" in pages[0]


def test_extract_pdf_text_rejects_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"not a pdf at all")

    with pytest.raises(ValueError):
        extract_pdf_text(path)


def test_load_syllabus_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_syllabus(tmp_path / "missing.md")


def test_load_syllabus_unsupported(tmp_path: Path) -> None:
    path = tmp_path / "slides.pptx"
    path.write_bytes(b"binary")

    with pytest.raises(ValueError):
        load_syllabus(path)
