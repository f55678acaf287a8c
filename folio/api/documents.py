"""API endpoints for document parsing submission, status polling and the document library."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Path as PathParam, Query, Request, UploadFile
from pydantic import BaseModel, Field

from folio.api.dependencies import get_document_library, get_parsing_orchestrator, get_requester
from folio.models.document import Document, DocumentMetadata, Page
from folio.models.parsing import ParseOptions, ParseSource, Requester
from folio.pipeline.documents import MAX_PAGE_SIZE, DocumentBusyError, DocumentLibrary, PageNotFoundError
from folio.pipeline.parsing import (
    DocumentAccessDeniedError,
    DocumentNotFoundError,
    DocumentStatusView,
    ParseRequestError,
    ParsingOrchestrator,
)

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


class UrlParseRequest(BaseModel):
    """Request payload for parsing a publicly reachable document."""

    document_url: str = Field(min_length=1)
    parser: str | None = None
    annotate: bool | None = None
    table_format: str | None = "html"
    extract_header: bool = False
    extract_footer: bool = False
    include_image_base64: bool = False
    book_name: str | None = None
    author_name: str | None = None
    category: str | None = None


class ParseAcceptedResponse(BaseModel):
    """Returned as soon as the document record exists."""

    document_id: str
    status: str = "processing"
    message: str = "Document accepted for parsing"


def _table_format(value: str | None) -> str | None:
    if value is None or value.strip().lower() in {"", "null", "none"}:
        return None
    return value.strip().lower()


def _upload_dir(request: Request) -> Path:
    configured = getattr(request.app.state, "upload_dir", None)
    return Path(configured) if configured else Path(tempfile.gettempdir())


async def _store_upload(upload: UploadFile, directory: Path) -> tuple[Path, int]:
    content = await upload.read()
    suffix = Path(upload.filename or "").suffix.lower()
    target = directory / f"{uuid4().hex}{suffix}"

    def _write() -> None:
        directory.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    await asyncio.to_thread(_write)
    return target, len(content)


async def _submit(
    orchestrator: ParsingOrchestrator,
    source: ParseSource,
    parser: str | None,
    options: ParseOptions,
    requester: Requester,
) -> ParseAcceptedResponse:
    try:
        document_id = await orchestrator.submit_for_parsing(source, parser, options, requester)
    except ParseRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ParseAcceptedResponse(document_id=document_id)


@router.post("/upload", status_code=202, response_model=ParseAcceptedResponse)
async def upload_document(
    request: Request,
    orchestrator: Annotated[ParsingOrchestrator, Depends(get_parsing_orchestrator)],
    requester: Annotated[Requester, Depends(get_requester)],
    document: Annotated[UploadFile, File()],
    parser: Annotated[str | None, Form()] = None,
    annotate: Annotated[bool | None, Form()] = None,
    table_format: Annotated[str | None, Form()] = "html",
    extract_header: Annotated[bool, Form()] = False,
    extract_footer: Annotated[bool, Form()] = False,
    include_image_base64: Annotated[bool, Form()] = False,
    book_name: Annotated[str | None, Form()] = None,
    author_name: Annotated[str | None, Form()] = None,
    category: Annotated[str | None, Form()] = None,
) -> ParseAcceptedResponse:
    """Store the upload as a temporary file and start background parsing."""
    try:
        path, size = await _store_upload(document, _upload_dir(request))
    finally:
        await document.close()

    source = ParseSource(
        file_path=str(path),
        file_name=document.filename,
        file_size=size,
        content_type=document.content_type,
    )
    options = ParseOptions(
        annotate=annotate,
        table_format=_table_format(table_format),
        extract_header=extract_header,
        extract_footer=extract_footer,
        include_image_base64=include_image_base64,
        book_name=book_name,
        author_name=author_name,
        category=category,
    )
    return await _submit(orchestrator, source, parser, options, requester)


@router.post("/url", status_code=202, response_model=ParseAcceptedResponse)
async def parse_document_url(
    payload: UrlParseRequest,
    orchestrator: Annotated[ParsingOrchestrator, Depends(get_parsing_orchestrator)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> ParseAcceptedResponse:
    """Start background parsing of a remote document."""
    source = ParseSource(url=payload.document_url.strip())
    options = ParseOptions(
        annotate=payload.annotate,
        table_format=_table_format(payload.table_format),
        extract_header=payload.extract_header,
        extract_footer=payload.extract_footer,
        include_image_base64=payload.include_image_base64,
        book_name=payload.book_name,
        author_name=payload.author_name,
        category=payload.category,
    )
    return await _submit(orchestrator, source, payload.parser, options, requester)


@router.get("/{document_id}/status", response_model=DocumentStatusView)
async def get_document_status(
    document_id: str,
    orchestrator: Annotated[ParsingOrchestrator, Depends(get_parsing_orchestrator)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> DocumentStatusView:
    """Poll parsing progress: processing, completed with result, or failed with error."""
    try:
        return await orchestrator.get_status(document_id, requester)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except DocumentAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail="Unauthorized") from exc


class DocumentSummary(BaseModel):
    """List view of a document without page bodies."""

    document_id: str
    user_id: str
    file_name: str
    file_size: int
    file_type: str
    pages: int
    parsing_status: str
    embedding_status: str
    is_verified: bool
    metadata: DocumentMetadata
    created_at: datetime
    updated_at: datetime


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]
    total_documents: int
    total_pages: int
    current_page: int


class DocumentPagesResponse(BaseModel):
    document_id: str
    file_name: str
    total_pages: int
    pages: list[Page]
    metadata: DocumentMetadata


class DocumentPageResponse(BaseModel):
    document_id: str
    file_name: str
    total_pages: int
    page: Page


class DocumentDeletedResponse(BaseModel):
    document_id: str
    deleted_vectors: int
    message: str = "Document deleted successfully"


def _summary(document: Document) -> DocumentSummary:
    return DocumentSummary.model_validate(document.model_dump())


@contextmanager
def _library_errors() -> Iterator[None]:
    try:
        yield
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except DocumentAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail="Unauthorized") from exc
    except PageNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DocumentBusyError as exc:
        raise HTTPException(
            status_code=409,
            detail="Embedding is in progress for this document; stop it before deleting",
        ) from exc


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 10,
    search: Annotated[str | None, Query(max_length=200)] = None,
) -> DocumentListResponse:
    """Newest first; admins also see every verified document."""
    listing = await library.list_documents(requester, page=page, limit=limit, search=search)
    return DocumentListResponse(
        documents=[_summary(document) for document in listing.documents],
        total_documents=listing.total_documents,
        total_pages=listing.total_pages,
        current_page=listing.current_page,
    )


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: str,
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> Document:
    with _library_errors():
        return await library.get_document(document_id, requester)


@router.get("/{document_id}/pages", response_model=DocumentPagesResponse)
async def get_document_pages(
    document_id: str,
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> DocumentPagesResponse:
    with _library_errors():
        document = await library.get_document(document_id, requester)
    return DocumentPagesResponse(
        document_id=document.document_id,
        file_name=document.file_name,
        total_pages=document.pages,
        pages=document.pages_data,
        metadata=document.metadata,
    )


@router.get("/{document_id}/pages/{page_number}", response_model=DocumentPageResponse)
async def get_document_page(
    document_id: str,
    page_number: Annotated[int, PathParam(ge=1)],
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> DocumentPageResponse:
    with _library_errors():
        document, page = await library.get_page(document_id, page_number, requester)
    return DocumentPageResponse(
        document_id=document.document_id,
        file_name=document.file_name,
        total_pages=document.pages,
        page=page,
    )


@router.post("/{document_id}/verify", response_model=DocumentSummary)
async def verify_document(
    document_id: str,
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> DocumentSummary:
    """Mark a document verified so admins see it in their listing."""
    with _library_errors():
        document = await library.verify_document(document_id, requester)
    return _summary(document)


@router.delete("/{document_id}", response_model=DocumentDeletedResponse)
async def delete_document(
    document_id: str,
    library: Annotated[DocumentLibrary, Depends(get_document_library)],
    requester: Annotated[Requester, Depends(get_requester)],
) -> DocumentDeletedResponse:
    """Delete a document together with its stored vectors."""
    with _library_errors():
        deleted_vectors = await library.delete_document(document_id, requester)
    return DocumentDeletedResponse(document_id=document_id, deleted_vectors=deleted_vectors)
