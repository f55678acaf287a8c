"""Requester-scoped reads, verification and deletion over stored documents."""

from __future__ import annotations

import math

import structlog
from pydantic import BaseModel

from folio.models.document import Document, Page
from folio.models.parsing import Requester
from folio.pipeline.embedding import InFlightRegistry
from folio.pipeline.parsing import load_for_requester
from folio.repositories.base import DocumentRepository, VectorRepository

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100


class PageNotFoundError(LookupError):
    """The document has no page with the requested number."""


class DocumentBusyError(RuntimeError):
    """An embedding run is active for the document."""


class DocumentListing(BaseModel):
    documents: list[Document]
    total_documents: int
    total_pages: int
    current_page: int


class DocumentLibrary:
    """Ownership-aware access to parsed documents.

    Users see only their own documents. An elevated requester sees every
    verified document plus their own, and may read or delete any document.
    """

    def __init__(
        self,
        doc_repo: DocumentRepository,
        vector_repo: VectorRepository,
        *,
        registry: InFlightRegistry | None = None,
    ):
        self.doc_repo = doc_repo
        self.vector_repo = vector_repo
        self.registry = registry or InFlightRegistry()

    async def list_documents(
        self,
        requester: Requester,
        *,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
    ) -> DocumentListing:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        include_verified = requester.is_elevated
        total = await self.doc_repo.count(requester.user_id, include_verified=include_verified, search=search)
        documents = await self.doc_repo.list_recent(
            requester.user_id,
            include_verified=include_verified,
            search=search,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return DocumentListing(
            documents=documents,
            total_documents=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
        )

    async def get_document(self, document_id: str, requester: Requester) -> Document:
        return await load_for_requester(self.doc_repo, document_id, requester)

    async def get_page(self, document_id: str, page_number: int, requester: Requester) -> tuple[Document, Page]:
        document = await load_for_requester(self.doc_repo, document_id, requester)
        for page in document.pages_data:
            if page.page_number == page_number:
                return document, page
        raise PageNotFoundError(f"Page {page_number} not found")

    async def verify_document(self, document_id: str, requester: Requester) -> Document:
        await load_for_requester(self.doc_repo, document_id, requester)
        await self.doc_repo.mark_verified(document_id)
        logger.info("document_verified", document_id=document_id, user_id=requester.user_id)
        return await load_for_requester(self.doc_repo, document_id, requester)

    async def delete_document(self, document_id: str, requester: Requester) -> int:
        """Remove the document and its vector records; returns the number of vectors deleted."""
        await load_for_requester(self.doc_repo, document_id, requester)
        if document_id in self.registry:
            raise DocumentBusyError(f"Embedding is in progress for document: {document_id}")

        deleted_vectors = await self.vector_repo.delete_document(document_id)
        await self.doc_repo.delete(document_id)
        logger.info(
            "document_deleted",
            document_id=document_id,
            user_id=requester.user_id,
            deleted_vectors=deleted_vectors,
        )
        return deleted_vectors
