"""Text extractors for supported document formats."""

from __future__ import annotations

import csv
import io
from pathlib import PurePosixPath
from typing import Any

import fitz
import langid
import yaml
from docx import Document
from markdown_it import MarkdownIt

from ragqueue.core.errors import ExtractionFailed, RagQueueError, UnsupportedType
from ragqueue.core.logging import get_logger
from ragqueue.ingest.types import ExtractedText

logger = get_logger(__name__)

_MD = MarkdownIt()


class BaseExtractor:
    """Common extractor interface."""

    file_type: str = "unknown"
    suffixes: tuple[str, ...] = ()
    content_types: tuple[str, ...] = ()

    def matches_suffix(self, suffix: str) -> bool:
        return suffix in self.suffixes

    def matches_content_type(self, content_type: str) -> bool:
        return content_type in self.content_types

    def extract(self, data: bytes, filename: str) -> ExtractedText:  # pragma: no cover - interface
        raise NotImplementedError


class TextExtractor(BaseExtractor):
    file_type = "txt"
    suffixes = (".txt", ".text", ".log")
    content_types = ("text/plain",)

    def extract(self, data: bytes, filename: str) -> ExtractedText:
        text = _decode_utf8(data)
        return ExtractedText(text=text, metadata=_base_metadata(self.file_type, text))


class MarkdownExtractor(BaseExtractor):
    file_type = "md"
    suffixes = (".md", ".markdown", ".mdx")
    content_types = ("text/markdown", "text/x-markdown")

    def extract(self, data: bytes, filename: str) -> ExtractedText:
        raw = _decode_utf8(data)
        front_matter, body = _split_front_matter(raw)
        text = _markdown_to_text(body)
        metadata = _base_metadata(self.file_type, text)
        if front_matter:
            metadata["front_matter"] = front_matter
            if front_matter.get("title"):
                metadata["title"] = str(front_matter["title"])
        return ExtractedText(text=text, metadata=metadata)


class PDFExtractor(BaseExtractor):
    file_type = "pdf"
    suffixes = (".pdf",)
    content_types = ("application/pdf",)

    def extract(self, data: bytes, filename: str) -> ExtractedText:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text("text", sort=True).strip() for page in doc]
            title = (doc.metadata or {}).get("title")
        text = "\n\n".join(page for page in pages if page)
        metadata = _base_metadata(self.file_type, text)
        metadata["page_count"] = len(pages)
        if title:
            metadata["title"] = title
        return ExtractedText(text=text, metadata=metadata)


class DocxExtractor(BaseExtractor):
    file_type = "docx"
    suffixes = (".docx",)
    content_types = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)

    def extract(self, data: bytes, filename: str) -> ExtractedText:
        document = Document(io.BytesIO(data))
        paragraphs = [para.text.strip() for para in document.paragraphs if para.text.strip()]
        text = "\n\n".join(paragraphs)
        core = document.core_properties
        metadata = _base_metadata(self.file_type, text)
        if core.title:
            metadata["title"] = core.title
        if core.author:
            metadata["author"] = core.author
        return ExtractedText(text=text, metadata=metadata)


class CsvExtractor(BaseExtractor):
    """Render tabular rows as ``Header: value`` lines, one block per row."""

    file_type = "csv"
    suffixes = (".csv", ".tsv")
    content_types = ("text/csv", "text/tab-separated-values", "application/csv")

    def extract(self, data: bytes, filename: str) -> ExtractedText:
        raw = _decode_utf8(data)
        delimiter = "\t" if filename.lower().endswith(".tsv") else ","
        reader = csv.DictReader(io.StringIO(raw, newline=""), delimiter=delimiter, strict=True)
        headers = [name.strip() for name in reader.fieldnames or []]
        lines: list[str] = []
        if headers:
            lines.append(f"Headers: {', '.join(headers)}")
            lines.append("")
        row_count = 0
        for row in reader:
            if not any((value or "").strip() for key, value in row.items() if key is not None):
                continue
            row_count += 1
            lines.append(f"Row {row_count}:")
            for header, key in zip(headers, reader.fieldnames or []):
                lines.append(f"  {header}: {(row.get(key) or '').strip()}")
            lines.append("")
        text = "\n".join(lines).strip()
        metadata = _base_metadata(self.file_type, text)
        metadata["row_count"] = row_count
        metadata["columns"] = headers
        return ExtractedText(text=text, metadata=metadata)


class ExtractorRegistry:
    """Registry that selects an extractor by file extension, then content type."""

    def __init__(self) -> None:
        self._extractors: list[BaseExtractor] = [
            MarkdownExtractor(),
            TextExtractor(),
            PDFExtractor(),
            DocxExtractor(),
            CsvExtractor(),
        ]

    def register(self, extractor: BaseExtractor) -> None:
        self._extractors.append(extractor)

    def for_file(self, filename: str, content_type: str | None = None) -> BaseExtractor | None:
        suffix = PurePosixPath(filename or "").suffix.lower()
        if suffix:
            for extractor in self._extractors:
                if extractor.matches_suffix(suffix):
                    return extractor
        normalized = _normalize_content_type(content_type)
        if normalized:
            for extractor in self._extractors:
                if extractor.matches_content_type(normalized):
                    return extractor
            if normalized.startswith("text/"):
                return self._by_file_type("txt")
        return None

    def extract(self, data: bytes, filename: str, content_type: str | None = None) -> ExtractedText:
        extractor = self.for_file(filename, content_type)
        if extractor is None:
            raise UnsupportedType(f"Unsupported file type: {filename!r} ({content_type or 'no content type'})")
        try:
            result = extractor.extract(data, filename)
        except RagQueueError:
            raise
        except Exception as exc:
            logger.warning("Extraction of %s failed: %s", filename, exc)
            raise ExtractionFailed(f"Failed to extract {extractor.file_type}: {exc}") from exc
        result.metadata.setdefault("file_name", filename)
        return result

    def _by_file_type(self, file_type: str) -> BaseExtractor | None:
        for extractor in self._extractors:
            if extractor.file_type == file_type:
                return extractor
        return None


_DEFAULT_REGISTRY = ExtractorRegistry()


def extract(data: bytes, filename: str, declared_content_type: str | None = None) -> ExtractedText:
    """Extract plain text from ``data`` using the default registry."""
    return _DEFAULT_REGISTRY.extract(data, filename, declared_content_type)


def _decode_utf8(data: bytes) -> str:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionFailed(f"File is not valid UTF-8: {exc}") from exc
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _normalize_content_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _base_metadata(file_type: str, text: str) -> dict[str, Any]:
    return {
        "file_type": file_type,
        "word_count": len(text.split()),
        "char_count": len(text),
        "lang": _detect_lang(text),
    }


def _split_front_matter(text: str) -> tuple[dict[str, Any] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            try:
                front_matter = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError:
                return None, text
            if isinstance(front_matter, dict):
                return front_matter, parts[2]
    return None, text


def _markdown_to_text(text: str) -> str:
    tokens = _MD.parse(text)
    blocks: list[str] = []
    for token in tokens:
        content = token.content.strip()
        if content and (token.type == "inline" or token.block and token.type in ("fence", "code_block", "html_block")):
            blocks.append(content)
    return "\n\n".join(blocks) if blocks else text.strip()


def _detect_lang(text: str) -> str:
    if not text.strip():
        return "und"
    lang, _ = langid.classify(text[:2000])
    return lang


__all__ = [
    "BaseExtractor",
    "ExtractorRegistry",
    "extract",
]
