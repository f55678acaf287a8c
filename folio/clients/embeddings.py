"""Embedding provider client for OpenAI-compatible ``/embeddings`` endpoints."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from folio.utils.retry import retry_async

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"


class EmbeddingProvider(Protocol):
    """One vector per input text, in input order."""

    model: str

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class EmbeddingProviderError(RuntimeError):
    """Embedding provider rejected a request or returned an unusable payload."""


class OpenAIEmbeddingClient:
    """Batch embedding requests over httpx with retry on transient failures."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_EMBEDDING_MODEL,
        base_url: str = OPENAI_BASE_URL,
        timeout_seconds: float = 120.0,
        retry_attempts: int = 3,
        session: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = retry_attempts
        self.session = session or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        """Close underlying HTTP session."""
        await self.session.aclose()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in a single provider call."""
        if not texts:
            return []
        if not self.api_key:
            raise EmbeddingProviderError("Embedding API key is not configured")

        response = await retry_async(
            lambda: self._post({"model": self.model, "input": texts}),
            attempts=self.retry_attempts,
            label="embeddings",
        )
        payload = response.json()
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise EmbeddingProviderError("Embedding response did not include a data array")

        ordered = sorted(rows, key=lambda row: int(row.get("index", 0)))
        vectors = [[float(value) for value in row.get("embedding", [])] for row in ordered]
        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )

        usage: dict[str, Any] = payload.get("usage") or {}
        logger.debug(
            "Embedded batch: model=%s inputs=%s total_tokens=%s",
            self.model,
            len(texts),
            usage.get("total_tokens"),
        )
        return vectors

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        response = await self.session.post(
            f"{self.base_url}/embeddings",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=body,
        )
        response.raise_for_status()
        return response
