"""API endpoints for starting, stopping and inspecting embedding runs."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from folio.api.dependencies import (
    get_document_repo,
    get_embedding_pipeline,
    get_vector_repo,
    require_elevated,
)
from folio.models.document import EmbeddingProgress
from folio.models.parsing import Requester
from folio.pipeline.embedding import (
    EmbeddingPipeline,
    ResetEmbeddingOutcome,
    StartEmbeddingOutcome,
    StopEmbeddingOutcome,
)
from folio.repositories.base import DocumentRepository, VectorRepository

router = APIRouter(prefix="/api/v1/embeddings", tags=["embeddings"])

_START_ERRORS: dict[StartEmbeddingOutcome, tuple[int, str]] = {
    StartEmbeddingOutcome.NOT_FOUND: (404, "Document not found"),
    StartEmbeddingOutcome.ALREADY_RUNNING: (409, "Embedding is already in progress for this document"),
    StartEmbeddingOutcome.ALREADY_COMPLETED: (
        409,
        "This document has already been embedded. Embeddings are complete.",
    ),
    StartEmbeddingOutcome.NOT_READY: (409, "Document parsing has not completed"),
}


class EmbeddingRequest(BaseModel):
    document_id: str = Field(min_length=1)


class EmbeddingActionResponse(BaseModel):
    document_id: str
    outcome: str
    embedding_status: str
    message: str


class EmbeddingResetResponse(EmbeddingActionResponse):
    deleted_vectors: int


class EmbeddingStatusResponse(BaseModel):
    document_id: str
    embedding_status: str
    embedding_progress: EmbeddingProgress | None = None
    embedding_updated_at: datetime | None = None
    embedding_error: str | None = None
    embedding_failed_pages: int = 0
    running: bool
    vector_count: int
    pages: int


@router.post("/start", status_code=202, response_model=EmbeddingActionResponse)
async def start_embedding(
    payload: EmbeddingRequest,
    pipeline: Annotated[EmbeddingPipeline, Depends(get_embedding_pipeline)],
    requester: Annotated[Requester, Depends(require_elevated)],
) -> EmbeddingActionResponse:
    """Start (or resume) embedding for a parsed document."""
    del requester
    outcome = await pipeline.start(payload.document_id)
    if outcome in _START_ERRORS:
        status_code, detail = _START_ERRORS[outcome]
        raise HTTPException(status_code=status_code, detail=detail)
    return EmbeddingActionResponse(
        document_id=payload.document_id,
        outcome=outcome.value,
        embedding_status="processing",
        message="Embedding started",
    )


@router.post("/stop", response_model=EmbeddingActionResponse)
async def stop_embedding(
    payload: EmbeddingRequest,
    pipeline: Annotated[EmbeddingPipeline, Depends(get_embedding_pipeline)],
    requester: Annotated[Requester, Depends(require_elevated)],
) -> EmbeddingActionResponse:
    """Stop at the next batch boundary; a later start resumes."""
    del requester
    outcome = await pipeline.stop(payload.document_id)
    if outcome == StopEmbeddingOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Document not found")
    return EmbeddingActionResponse(
        document_id=payload.document_id,
        outcome=outcome.value,
        embedding_status="not_started",
        message="Embedding stopped. Resume anytime.",
    )


@router.post("/reset", response_model=EmbeddingResetResponse)
async def reset_embedding(
    payload: EmbeddingRequest,
    pipeline: Annotated[EmbeddingPipeline, Depends(get_embedding_pipeline)],
    requester: Annotated[Requester, Depends(require_elevated)],
) -> EmbeddingResetResponse:
    """Delete stored vectors and progress so the next start re-embeds from page 1."""
    del requester
    outcome, deleted = await pipeline.reset(payload.document_id)
    if outcome == ResetEmbeddingOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Document not found")
    if outcome == ResetEmbeddingOutcome.RUNNING:
        raise HTTPException(status_code=409, detail="Stop the running embedding before resetting")
    return EmbeddingResetResponse(
        document_id=payload.document_id,
        outcome=outcome.value,
        embedding_status="not_started",
        message="Embeddings deleted. Start again to re-embed every page.",
        deleted_vectors=deleted,
    )


@router.get("/{document_id}", response_model=EmbeddingStatusResponse)
async def get_embedding_status(
    document_id: str,
    pipeline: Annotated[EmbeddingPipeline, Depends(get_embedding_pipeline)],
    doc_repo: Annotated[DocumentRepository, Depends(get_document_repo)],
    vector_repo: Annotated[VectorRepository, Depends(get_vector_repo)],
    requester: Annotated[Requester, Depends(require_elevated)],
) -> EmbeddingStatusResponse:
    """Inspect the checkpoint and stored vector count for a document."""
    del requester
    document = await doc_repo.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return EmbeddingStatusResponse(
        document_id=document_id,
        embedding_status=str(document.embedding_status),
        embedding_progress=document.embedding_progress,
        embedding_updated_at=document.embedding_updated_at,
        embedding_error=document.metadata.embedding_error,
        embedding_failed_pages=document.metadata.embedding_failed_pages,
        running=document_id in pipeline.registry,
        vector_count=await vector_repo.count(document_id),
        pages=document.pages,
    )
