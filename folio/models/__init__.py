"""Shared data models for folio."""

from folio.models.document import (
    Document,
    DocumentMetadata,
    EmbeddingProgress,
    EmbeddingStatus,
    Page,
    PageMetadata,
    ParsingStatus,
)
from folio.models.embedding import VectorRecord, VectorRecordMetadata
from folio.models.parsing import (
    JobHandle,
    ParseOptions,
    ParseResult,
    ParserChoice,
    ParseSource,
    RawParseOutput,
    Requester,
)

__all__ = [
    "Document",
    "DocumentMetadata",
    "EmbeddingProgress",
    "EmbeddingStatus",
    "JobHandle",
    "Page",
    "PageMetadata",
    "ParseOptions",
    "ParseResult",
    "ParseSource",
    "ParserChoice",
    "ParsingStatus",
    "RawParseOutput",
    "Requester",
    "VectorRecord",
    "VectorRecordMetadata",
]
