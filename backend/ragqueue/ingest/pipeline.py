"""Ingest pipeline orchestration."""

from __future__ import annotations

import time
from typing import Any, Callable

from ragqueue.core.config import Settings
from ragqueue.core.errors import NoChunksGenerated, RagQueueError
from ragqueue.core.logging import get_logger, job_context
from ragqueue.ingest.chunker import chunk_stats, chunk_text
from ragqueue.ingest.embeddings import EmbeddingProvider
from ragqueue.ingest.extractors import ExtractorRegistry
from ragqueue.ingest.fetch import fetch_bytes
from ragqueue.ingest.types import ChunkOptions, IngestOutcome, IngestStage
from ragqueue.models.entities import SourceDocument
from ragqueue.retrieval.vector_store import VectorStore

logger = get_logger(__name__)

_STORED_METADATA_KEYS = ("file_type", "lang", "title", "page_count")


class IngestFailure(RagQueueError):
    """An ingest stage raised; wraps the cause and keeps its retry hint."""

    code = "ingest_failed"

    def __init__(self, stage: IngestStage, error: BaseException) -> None:
        retryable = error.retryable if isinstance(error, RagQueueError) else True
        super().__init__(str(error) or type(error).__name__, retryable)
        self.stage = stage
        self.error = error

    @property
    def error_code(self) -> str:
        return self.error.code if isinstance(self.error, RagQueueError) else "internal_error"


class IngestPipeline:
    """Coordinate fetching, extraction, chunking, embeddings, and persistence."""

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
        chunk_options: ChunkOptions | None = None,
        extractors: ExtractorRegistry | None = None,
        fetcher: Callable[[str], bytes] | None = None,
    ) -> None:
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.chunk_options = chunk_options or ChunkOptions()
        self.extractors = extractors or ExtractorRegistry()
        self.fetcher = fetcher or fetch_bytes

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
    ) -> "IngestPipeline":
        options = ChunkOptions(
            chunk_size=settings.chunk_size,
            overlap=settings.chunk_overlap,
            preserve_paragraphs=settings.preserve_paragraphs,
            min_chunk_size=settings.chunk_min_size,
        )
        timeout = settings.fetch_timeout_seconds
        return cls(
            embedding_provider=embedding_provider,
            vector_store=vector_store,
            chunk_options=options,
            fetcher=lambda url: fetch_bytes(url, timeout=timeout),
        )

    def run(
        self,
        document: SourceDocument,
        job_id: str | None = None,
        on_progress: Callable[[IngestStage], None] | None = None,
    ) -> IngestOutcome:
        """Run one document through every stage.

        ``on_progress`` is called when each stage starts and after every
        embedding batch; an exception it raises aborts the run.
        Raises :class:`IngestFailure` naming the stage that failed.
        """
        started = time.perf_counter()
        stage = IngestStage.FETCHING
        log_extra = job_context(job_id or "-", document_id=document.id)
        progress = on_progress or (lambda _stage: None)
        try:
            self._log_stage(stage, log_extra)
            progress(stage)
            data = self.fetcher(document.file_url or "")

            stage = IngestStage.EXTRACTING
            self._log_stage(stage, log_extra)
            progress(stage)
            extracted = self.extractors.extract(data, document.name, document.content_type)

            stage = IngestStage.CHUNKING
            self._log_stage(stage, log_extra)
            progress(stage)
            chunks = chunk_text(extracted.text, self.chunk_options)
            if not chunks:
                raise NoChunksGenerated()

            stage = IngestStage.EMBEDDING
            self._log_stage(stage, log_extra)
            progress(stage)
            self.embedding_provider.check()
            texts = [chunk.text for chunk in chunks]
            size = self.embedding_provider.batch_size
            vectors: list[list[float]] = []
            for start in range(0, len(texts), size):
                vectors.extend(self.embedding_provider.embed_batch(texts[start : start + size]))
                progress(stage)

            stage = IngestStage.STORING
            self._log_stage(stage, log_extra)
            progress(stage)
            stored = self.vector_store.store(
                document.collection_id,
                document.id,
                chunks,
                vectors,
                metadata=_stored_metadata(document, extracted.metadata),
                model=self.embedding_provider.model_id,
            )
        except Exception as exc:
            raise IngestFailure(stage, exc) from exc

        duration_ms = int((time.perf_counter() - started) * 1000)
        outcome = IngestOutcome(
            document_id=document.id,
            extracted_chars=len(extracted.text),
            chunks=len(chunks),
            embeddings=stored,
            duration_ms=duration_ms,
            metadata={
                "file_type": extracted.metadata.get("file_type"),
                "word_count": extracted.metadata.get("word_count"),
                "page_count": extracted.metadata.get("page_count"),
                "model": self.embedding_provider.model_id,
                "chunk_stats": chunk_stats(chunks),
            },
        )
        logger.info(
            "Ingested document %s: %s chunks in %sms",
            document.id,
            outcome.chunks,
            duration_ms,
            extra={**log_extra, "ctx_stage": IngestStage.DONE.value},
        )
        return outcome

    @staticmethod
    def _log_stage(stage: IngestStage, log_extra: dict[str, Any]) -> None:
        logger.debug("Stage %s", stage.value, extra={**log_extra, "ctx_stage": stage.value})


def _stored_metadata(document: SourceDocument, extracted: dict[str, Any]) -> dict[str, Any]:
    metadata: dict[str, Any] = {"file_name": document.name}
    for key in _STORED_METADATA_KEYS:
        if extracted.get(key) is not None:
            metadata[key] = extracted[key]
    return metadata


__all__ = ["IngestPipeline", "IngestFailure"]
