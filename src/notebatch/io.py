"""Syllabus loading utilities for topic intake."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import fitz  # PyMuPDF

__all__ = ["LoadedDocument", "extract_pdf_text", "load_syllabus"]

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".md", ".markdown", ".txt", ".json"}
PDF_SUFFIXES = {".pdf"}


@dataclass(slots=True)
class LoadedDocument:
    """Container for syllabus text and metadata."""

    content: str
    source: Path
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "source": str(self.source),
            "metadata": self.metadata,
        }


def extract_pdf_text(pdf_path: Path | str) -> list[str]:
    """Return the plain text of each page of a text-based PDF."""

    pdf_path = Path(pdf_path).expanduser()
    try:
        with fitz.open(pdf_path) as doc:
            return [page.get_text("text") for page in doc]
    except (RuntimeError, ValueError) as exc:
        raise ValueError(
            f"Failed to extract text from {pdf_path}. Ensure it is a valid text-based PDF."
        ) from exc


def load_syllabus(source: Path | str, *, encoding: str = "utf-8") -> LoadedDocument:
    """Load a Markdown, text, JSON or PDF syllabus and return its text."""

    source_path = Path(source).expanduser()
    if not source_path.exists():
        raise FileNotFoundError(f"Syllabus not found: {source_path}")

    suffix = source_path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        text = source_path.read_text(encoding=encoding)
        metadata = {
            "kind": "json" if suffix == ".json" else "text",
            "length": len(text),
            "path": str(source_path),
        }
        return LoadedDocument(content=text, source=source_path, metadata=metadata)

    if suffix in PDF_SUFFIXES:
        pages = extract_pdf_text(source_path)
        combined = "\n\n".join(
            f"--- Page {index} ---\n{text.strip()}" for index, text in enumerate(pages, start=1)
        )
        logger.debug("Extracted %d page(s) from %s", len(pages), source_path)
        metadata = {
            "kind": "pdf",
            "pages": len(pages),
            "length": len(combined),
            "path": str(source_path),
        }
        return LoadedDocument(content=combined, source=source_path, metadata=metadata)

    raise ValueError(f"Unsupported syllabus format for {source_path}; use PDF, Markdown, text or JSON.")
