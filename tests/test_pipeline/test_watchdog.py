"""Tests for the stalled-embedding watchdog sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from folio.models.document import Document, EmbeddingProgress, EmbeddingStatus, ParsingStatus
from folio.pipeline.embedding import InFlightRegistry
from folio.pipeline.watchdog import EmbeddingWatchdog

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeDocumentRepo:
    def __init__(self, documents: list[Document]) -> None:
        self.documents = {document.document_id: document for document in documents}
        self.cutoffs: list[datetime] = []
        self.updates: list[dict[str, Any]] = []

    async def find_stale_embeddings(self, older_than: datetime, limit: int = 100) -> list[Document]:
        self.cutoffs.append(older_than)
        stale = [
            document
            for document in self.documents.values()
            if document.embedding_status == EmbeddingStatus.PROCESSING.value
            and (document.embedding_updated_at is None or document.embedding_updated_at < older_than)
        ]
        return stale[:limit]

    async def update_embedding_state(
        self,
        document_id: str,
        *,
        status: EmbeddingStatus | None = None,
        progress: EmbeddingProgress | None = None,
        metadata_updates: dict[str, Any] | None = None,
    ) -> None:
        self.updates.append(
            {"document_id": document_id, "status": status, "progress": progress, "metadata": metadata_updates}
        )


def _document(status: EmbeddingStatus, last_checkpoint: datetime | None) -> Document:
    return Document(
        user_id="user-1",
        file_name="book.pdf",
        parsing_status=ParsingStatus.COMPLETED,
        embedding_status=status,
        embedding_progress=EmbeddingProgress(current_page=40),
        embedding_updated_at=last_checkpoint,
    )


@pytest.mark.asyncio
async def test_sweep_resets_stalled_documents_and_keeps_progress() -> None:
    stalled = _document(EmbeddingStatus.PROCESSING, NOW - timedelta(hours=2))
    fresh = _document(EmbeddingStatus.PROCESSING, NOW - timedelta(minutes=5))
    finished = _document(EmbeddingStatus.COMPLETED, NOW - timedelta(days=1))
    repo = _FakeDocumentRepo([stalled, fresh, finished])
    watchdog = EmbeddingWatchdog(repo, InFlightRegistry(), stale_after_seconds=1800)

    reset = await watchdog.sweep(now=NOW)

    assert reset == [stalled.document_id]
    assert repo.cutoffs == [NOW - timedelta(seconds=1800)]
    assert repo.updates == [
        {
            "document_id": stalled.document_id,
            "status": EmbeddingStatus.NOT_STARTED,
            "progress": None,
            "metadata": {"embedding_error": "Embedding stalled: no checkpoint for 1800s"},
        }
    ]


@pytest.mark.asyncio
async def test_sweep_leaves_documents_with_live_runs() -> None:
    stalled = _document(EmbeddingStatus.PROCESSING, None)
    repo = _FakeDocumentRepo([stalled])
    registry = InFlightRegistry()
    await registry.acquire(stalled.document_id)
    watchdog = EmbeddingWatchdog(repo, registry, stale_after_seconds=60)

    assert await watchdog.sweep(now=NOW) == []
    assert repo.updates == []


def test_stale_threshold_must_be_positive() -> None:
    with pytest.raises(ValueError, match="stale_after_seconds"):
        EmbeddingWatchdog(_FakeDocumentRepo([]), InFlightRegistry(), stale_after_seconds=0)
