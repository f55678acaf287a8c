"""Request-scoped accessors for components stored on ``app.state``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from folio.models.parsing import Requester
from folio.pipeline.documents import DocumentLibrary
from folio.pipeline.embedding import EmbeddingPipeline
from folio.pipeline.parsing import ParsingOrchestrator
from folio.repositories.base import DocumentRepository, VectorRepository


def _state_component(request: Request, name: str, label: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return component


def get_parsing_orchestrator(request: Request) -> ParsingOrchestrator:
    """Get parsing orchestrator from app state."""
    return _state_component(request, "parsing_orchestrator", "Parsing orchestrator")


def get_embedding_pipeline(request: Request) -> EmbeddingPipeline:
    """Get embedding pipeline from app state."""
    return _state_component(request, "embedding_pipeline", "Embedding pipeline")


def get_document_library(request: Request) -> DocumentLibrary:
    return _state_component(request, "document_library", "Document library")


def get_document_repo(request: Request) -> DocumentRepository:
    return _state_component(request, "document_repo", "Document repository")


def get_vector_repo(request: Request) -> VectorRepository:
    return _state_component(request, "vector_repo", "Vector repository")


def get_requester(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Requester:
    """Identity forwarded by the upstream authentication layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    role = (x_user_role or "user").strip().lower() or "user"
    return Requester(user_id=x_user_id.strip(), role=role)


def require_elevated(requester: Annotated[Requester, Depends(get_requester)]) -> Requester:
    if not requester.is_elevated:
        raise HTTPException(status_code=403, detail="Access denied. admin role required.")
    return requester
