"""Source document rows.

Documents are registered by the upload flow; ingestion only moves them
through ``uploaded -> processing -> processed | failed``.
"""

from __future__ import annotations

import sqlite3

from ragqueue.core.errors import DocumentNotFound, StoreUnavailable
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.models.entities import DocumentStatus, SourceDocument
from ragqueue.utils.time import now_ms


class DocumentRepository:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    def upsert(
        self,
        document_id: str,
        collection_id: str,
        name: str,
        content_type: str | None = None,
        file_url: str | None = None,
        owner_id: str | None = None,
        size_bytes: int | None = None,
    ) -> SourceDocument:
        """Register a document, or refresh its descriptive fields if it exists."""
        now = now_ms()
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO source_documents (
                      id, collection_id, owner_id, name, content_type, file_url,
                      status, size_bytes, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      collection_id = excluded.collection_id,
                      owner_id = COALESCE(excluded.owner_id, source_documents.owner_id),
                      name = excluded.name,
                      content_type = COALESCE(excluded.content_type, source_documents.content_type),
                      file_url = COALESCE(excluded.file_url, source_documents.file_url),
                      size_bytes = COALESCE(excluded.size_bytes, source_documents.size_bytes),
                      updated_at = excluded.updated_at
                    """,
                    [
                        document_id,
                        collection_id,
                        owner_id,
                        name,
                        content_type,
                        file_url,
                        DocumentStatus.UPLOADED.value,
                        size_bytes,
                        now,
                        now,
                    ],
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to save document {document_id}: {exc}") from exc
        return self.get(document_id)

    def find(self, document_id: str) -> SourceDocument | None:
        try:
            row = self.db.execute("SELECT * FROM source_documents WHERE id = ?", [document_id]).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to read document {document_id}: {exc}") from exc
        return SourceDocument.from_row(row) if row else None

    def get(self, document_id: str) -> SourceDocument:
        document = self.find(document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return document

    def set_status(self, document_id: str, status: DocumentStatus, error: str | None = None) -> None:
        """Record a status transition; ``error`` is cleared unless the status is ``failed``."""
        now = now_ms()
        processed_at = now if status is DocumentStatus.PROCESSED else None
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    UPDATE source_documents
                    SET status = ?, error = ?, updated_at = ?,
                        processed_at = COALESCE(?, processed_at)
                    WHERE id = ?
                    """,
                    [
                        status.value,
                        error if status is DocumentStatus.FAILED else None,
                        now,
                        processed_at,
                        document_id,
                    ],
                )
                updated = cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to update document {document_id}: {exc}") from exc
        if not updated:
            raise DocumentNotFound(f"Document {document_id} not found")

    def list_by_collection(self, collection_id: str, status: DocumentStatus | None = None) -> list[SourceDocument]:
        sql = "SELECT * FROM source_documents WHERE collection_id = ?"
        params: list[str] = [collection_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at ASC, id ASC"
        try:
            rows = self.db.query(sql, params)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to list documents of {collection_id}: {exc}") from exc
        return [SourceDocument.from_row(row) for row in rows]


__all__ = ["DocumentRepository"]
