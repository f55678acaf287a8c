"""Document aggregate tracked across parsing and embedding."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return timezone-aware current UTC timestamp."""
    return datetime.now(timezone.utc)


class ParsingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmbeddingStatus(str, Enum):
    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    COMPLETED = "completed"


class EmbeddingProgress(BaseModel):
    """Resumable embedding cursor persisted after every batch."""

    current_page: int = Field(default=0, ge=0)
    current_chunk: int = Field(default=0, ge=0)


class PageMetadata(BaseModel):
    word_count: int = 0
    character_count: int = 0
    confidence: float | None = None
    processing_time: float | None = None


class Page(BaseModel):
    """Canonical per-page record produced by the page normalizer."""

    page_number: int = Field(ge=1)
    text: str
    markdown: str = ""
    summary: str | None = None
    tables: list[Any] = Field(default_factory=list)
    images: list[Any] = Field(default_factory=list)
    header: str | None = None
    footer: str | None = None
    metadata: PageMetadata = Field(default_factory=PageMetadata)


class DocumentMetadata(BaseModel):
    """Parser identity, accounting and descriptive metadata for a document."""

    parser: str | None = None
    model: str | None = None
    job_id: str | None = None
    usage: dict[str, Any] | None = None
    page_count: int | None = None
    processing_time: float | str | None = None
    processed_at: datetime | None = None
    error: str | None = None

    book_name: str | None = None
    author_name: str | None = None
    category: str | None = None
    document_url: str | None = None

    annotation_requested: bool = False
    annotation_applied: bool = False
    annotation_retry: bool = False
    annotation: Any = None

    embedding_model: str | None = None
    embedding_error: str | None = None
    embedding_skipped_pages: int = 0
    embedding_failed_pages: int = 0


class Document(BaseModel):
    """Lifecycle record for one uploaded or URL-sourced file."""

    model_config = ConfigDict(use_enum_values=True)

    document_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    file_name: str
    file_size: int = 0
    file_type: str = "application/octet-stream"

    original_text: str = ""
    pages: int = 0
    pages_data: list[Page] = Field(default_factory=list)
    tables: list[Any] = Field(default_factory=list)
    images: list[Any] = Field(default_factory=list)

    parsing_status: ParsingStatus = ParsingStatus.PENDING
    embedding_status: EmbeddingStatus = EmbeddingStatus.NOT_STARTED
    embedding_progress: EmbeddingProgress | None = Field(default_factory=EmbeddingProgress)
    embedding_updated_at: datetime | None = None

    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    is_verified: bool = False

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_owned_by(self, user_id: str) -> bool:
        return str(self.user_id) == str(user_id)
