"""Tests for text extractors."""

from __future__ import annotations

import io

import fitz
import pytest
from docx import Document

from ragqueue.core.errors import ExtractionFailed, UnsupportedType
from ragqueue.ingest.extractors import BaseExtractor, ExtractorRegistry, extract
from ragqueue.ingest.types import ExtractedText


def test_plain_text_strips_bom_and_normalises_newlines() -> None:
    result = extract("\ufeffline one\r\nline two\rline three".encode("utf-8"), "notes.txt")
    assert result.text == "line one\nline two\nline three"
    assert result.metadata["file_type"] == "txt"
    assert result.metadata["word_count"] == 6
    assert result.metadata["file_name"] == "notes.txt"


def test_invalid_utf8_is_extraction_failure() -> None:
    with pytest.raises(ExtractionFailed):
        extract(b"\xff\xfe\xfa not text", "broken.txt")


def test_markdown_front_matter_and_blocks() -> None:
    raw = "---\ntitle: Guide\n---\n# Heading\n\nSome *bold* text.\n\n```\ncode here\n```\n"
    result = extract(raw.encode("utf-8"), "guide.md")
    assert result.metadata["title"] == "Guide"
    assert "Heading" in result.text
    assert "code here" in result.text
    assert "title: Guide" not in result.text


def test_csv_rows_render_as_header_value_lines() -> None:
    data = b"name,age\nAlice,30\nBob,25\n"
    result = extract(data, "people.csv")
    assert result.text.startswith("Headers: name, age")
    assert "Row 1:\n  name: Alice\n  age: 30" in result.text
    assert "Row 2:\n  name: Bob\n  age: 25" in result.text
    assert result.metadata["row_count"] == 2
    assert result.metadata["columns"] == ["name", "age"]


def test_tsv_uses_tab_delimiter() -> None:
    result = extract(b"city\tcountry\nLyon\tFrance\n", "places.tsv")
    assert "  city: Lyon" in result.text
    assert "  country: France" in result.text


def test_pdf_pages_are_extracted() -> None:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Hello PDF world")
    data = doc.tobytes()
    doc.close()

    result = extract(data, "report.pdf")
    assert "Hello PDF world" in result.text
    assert result.metadata["page_count"] == 1
    assert result.metadata["file_type"] == "pdf"


def test_corrupt_pdf_is_extraction_failure() -> None:
    with pytest.raises(ExtractionFailed):
        extract(b"this is not a pdf", "broken.pdf")


def test_docx_paragraphs_and_title() -> None:
    document = Document()
    document.add_paragraph("First paragraph.")
    document.add_paragraph("")
    document.add_paragraph("Second.")
    document.core_properties.title = "Doc Title"
    buffer = io.BytesIO()
    document.save(buffer)

    result = extract(buffer.getvalue(), "letter.docx")
    assert result.text == "First paragraph.\n\nSecond."
    assert result.metadata["title"] == "Doc Title"


def test_declared_content_type_is_used_without_extension() -> None:
    result = extract(b"# Title\n\nBody", "upload", "text/markdown; charset=utf-8")
    assert result.metadata["file_type"] == "md"
    generic = extract(b"plain body", "upload", "text/x-custom")
    assert generic.metadata["file_type"] == "txt"


def test_unsupported_type_is_not_retryable() -> None:
    with pytest.raises(UnsupportedType) as excinfo:
        extract(b"MZ\x90\x00", "setup.exe", "application/octet-stream")
    assert excinfo.value.retryable is False


def test_registry_accepts_custom_extractor() -> None:
    class UpperExtractor(BaseExtractor):
        file_type = "shout"
        suffixes = (".shout",)

        def extract(self, data: bytes, filename: str) -> ExtractedText:
            return ExtractedText(text=data.decode().upper(), metadata={"file_type": self.file_type})

    registry = ExtractorRegistry()
    registry.register(UpperExtractor())
    result = registry.extract(b"hello", "x.shout")
    assert result.text == "HELLO"


def test_unexpected_extractor_error_is_wrapped() -> None:
    class BrokenExtractor(BaseExtractor):
        file_type = "broken"
        suffixes = (".brk",)

        def extract(self, data: bytes, filename: str) -> ExtractedText:
            raise KeyError("boom")

    registry = ExtractorRegistry()
    registry.register(BrokenExtractor())
    with pytest.raises(ExtractionFailed, match="boom"):
        registry.extract(b"", "x.brk")
