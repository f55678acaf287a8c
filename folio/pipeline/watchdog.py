"""Periodic sweep for embedding runs that stopped checkpointing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from folio.models.document import EmbeddingStatus
from folio.pipeline.embedding import InFlightRegistry
from folio.repositories.base import DocumentRepository

logger = structlog.get_logger(__name__)


class EmbeddingWatchdog:
    """Reset documents stuck in ``processing`` with no live run and no recent checkpoint.

    Progress is left untouched so the next start resumes from the last batch.
    """

    def __init__(
        self,
        doc_repo: DocumentRepository,
        registry: InFlightRegistry,
        *,
        stale_after_seconds: int = 1800,
        batch_limit: int = 100,
    ):
        if stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be > 0")
        self.doc_repo = doc_repo
        self.registry = registry
        self.stale_after_seconds = stale_after_seconds
        self.batch_limit = batch_limit

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Return ids of documents that were reset."""
        current = now or datetime.now(timezone.utc)
        cutoff = current - timedelta(seconds=self.stale_after_seconds)
        stale = await self.doc_repo.find_stale_embeddings(cutoff, limit=self.batch_limit)

        reset: list[str] = []
        for document in stale:
            if document.document_id in self.registry:
                continue
            await self.doc_repo.update_embedding_state(
                document.document_id,
                status=EmbeddingStatus.NOT_STARTED,
                metadata_updates={
                    "embedding_error": f"Embedding stalled: no checkpoint for {self.stale_after_seconds}s",
                },
            )
            reset.append(document.document_id)
            logger.warning(
                "embedding_stalled_reset",
                document_id=document.document_id,
                last_checkpoint=str(document.embedding_updated_at),
                current_page=(document.embedding_progress.current_page if document.embedding_progress else 0),
            )

        if reset:
            logger.info("embedding_watchdog_sweep", reset=len(reset), scanned=len(stale))
        return reset
