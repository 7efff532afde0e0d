"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(slots=True)
class ExtractedText:
    """Plain text pulled out of a document plus basic metadata."""

    text: str
    metadata: dict[str, Any]


@dataclass(slots=True, frozen=True)
class ChunkOptions:
    chunk_size: int = 1000
    overlap: int = 200
    preserve_paragraphs: bool = True
    min_chunk_size: int = 100

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.overlap < 0 or self.overlap >= self.chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if self.min_chunk_size < 0:
            raise ValueError("min_chunk_size must not be negative")


@dataclass(slots=True)
class Chunk:
    """Contiguous span of a document's text; index is 0-based per document."""

    text: str
    index: int
    start_char: int
    end_char: int


class IngestStage(str, Enum):
    CLAIMED = "claimed"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    DONE = "done"


@dataclass(slots=True)
class IngestOutcome:
    """Aggregated statistics for one successfully ingested document."""

    document_id: str
    extracted_chars: int = 0
    chunks: int = 0
    embeddings: int = 0
    duration_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "extracted_chars": self.extracted_chars,
            "chunks": self.chunks,
            "embeddings": self.embeddings,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
        }


__all__ = [
    "ExtractedText",
    "ChunkOptions",
    "Chunk",
    "IngestStage",
    "IngestOutcome",
]
