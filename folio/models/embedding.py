"""Vector record model persisted by the embedding pipeline."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from folio.models.document import utc_now


class VectorRecordMetadata(BaseModel):
    book_name: str | None = None
    author_name: str | None = None
    category: str | None = None
    summary: str | None = None


class VectorRecord(BaseModel):
    """One embedding per (document_id, page_number, chunk_index)."""

    document_id: str
    user_id: str
    file_name: str
    page_number: int = Field(ge=1)
    chunk_index: int = Field(default=0, ge=0)
    text: str
    embedding: list[float]
    metadata: VectorRecordMetadata = Field(default_factory=VectorRecordMetadata)
    embedding_model: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
