"""Outbound service clients."""

from folio.clients.embeddings import EmbeddingProvider, EmbeddingProviderError, OpenAIEmbeddingClient

__all__ = ["EmbeddingProvider", "EmbeddingProviderError", "OpenAIEmbeddingClient"]
