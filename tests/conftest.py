"""Shared test fixtures for folio."""

from __future__ import annotations

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from folio.models.document import Document, DocumentMetadata, Page, PageMetadata, ParsingStatus
from folio.repositories.mongo import MongoDocumentRepository, MongoVectorRepository, ensure_indexes


@pytest.fixture
def mongo_client() -> AsyncMongoMockClient:
    """Return an isolated async Mongo mock client per test."""
    return AsyncMongoMockClient()


@pytest_asyncio.fixture
async def mongo_db(mongo_client: AsyncMongoMockClient):
    """Return indexed test database instance."""
    db = mongo_client["folio_test"]
    await ensure_indexes(db)
    return db


@pytest.fixture
def document_repo(mongo_db):
    """Mongo document repository fixture."""
    return MongoDocumentRepository(mongo_db)


@pytest.fixture
def vector_repo(mongo_db):
    """Mongo vector repository fixture."""
    return MongoVectorRepository(mongo_db)


@pytest.fixture
def make_pages():
    """Factory for sequential canonical pages."""

    def _make(count: int, *, summary: str | None = None) -> list[Page]:
        pages = []
        for number in range(1, count + 1):
            text = f"Page {number} body text"
            pages.append(
                Page(
                    page_number=number,
                    text=text,
                    markdown=text,
                    summary=summary,
                    metadata=PageMetadata(word_count=len(text.split()), character_count=len(text)),
                )
            )
        return pages

    return _make


@pytest.fixture
def make_parsed_document(make_pages):
    """Factory for documents whose parsing already completed."""

    def _make(page_count: int = 3, *, user_id: str = "user-1", **metadata) -> Document:
        pages = make_pages(page_count)
        return Document(
            user_id=user_id,
            file_name="book.pdf",
            file_size=1024,
            file_type="application/pdf",
            original_text="\n\n".join(page.text for page in pages),
            pages=len(pages),
            pages_data=pages,
            parsing_status=ParsingStatus.COMPLETED,
            metadata=DocumentMetadata(parser="mistral", **metadata),
        )

    return _make
