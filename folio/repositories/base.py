"""Repository protocol definitions for the data access layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from folio.models.document import Document, EmbeddingProgress, EmbeddingStatus, Page
from folio.models.embedding import VectorRecord


class DocumentRepository(Protocol):
    """Data access contract for the document aggregate."""

    async def save(self, document: Document) -> str: ...

    async def get(self, document_id: str) -> Document | None: ...

    async def mark_parsing_completed(
        self,
        document_id: str,
        *,
        original_text: str,
        pages_data: list[Page],
        tables: list[Any],
        images: list[Any],
        metadata_updates: dict[str, Any],
    ) -> None: ...

    async def mark_parsing_failed(
        self,
        document_id: str,
        error: str,
        metadata_updates: dict[str, Any] | None = None,
    ) -> None: ...

    async def update_embedding_state(
        self,
        document_id: str,
        *,
        status: EmbeddingStatus | None = None,
        progress: EmbeddingProgress | None = None,
        metadata_updates: dict[str, Any] | None = None,
    ) -> None: ...

    async def find_stale_embeddings(self, older_than: datetime, limit: int = 100) -> list[Document]: ...

    async def list_recent(
        self,
        user_id: str,
        *,
        include_verified: bool = False,
        search: str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]: ...

    async def count(self, user_id: str, *, include_verified: bool = False, search: str | None = None) -> int: ...

    async def mark_verified(self, document_id: str) -> None: ...

    async def delete(self, document_id: str) -> bool: ...


class VectorRepository(Protocol):
    """Data access contract for per-page embedding records."""

    async def insert(self, record: VectorRecord) -> bool: ...

    async def existing_page_numbers(self, document_id: str, chunk_index: int = 0) -> set[int]: ...

    async def count(self, document_id: str) -> int: ...

    async def delete_document(self, document_id: str) -> int: ...
