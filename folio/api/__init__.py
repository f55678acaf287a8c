"""FastAPI route modules."""

from folio.api import documents, embeddings, health

__all__ = ["documents", "embeddings", "health"]
