"""Resumable, checkpointed per-page embedding pipeline."""

from __future__ import annotations

import asyncio
import math
from enum import Enum
from uuid import uuid4

import structlog

from folio.clients.embeddings import EmbeddingProvider
from folio.models.document import Document, EmbeddingProgress, EmbeddingStatus, Page, ParsingStatus
from folio.models.embedding import VectorRecord, VectorRecordMetadata
from folio.pipeline.tasks import BackgroundTaskRunner
from folio.repositories.base import DocumentRepository, VectorRepository

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 20
MISSING = "N/A"


class StartEmbeddingOutcome(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    ALREADY_COMPLETED = "already_completed"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"


class StopEmbeddingOutcome(str, Enum):
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"
    NOT_FOUND = "not_found"


class ResetEmbeddingOutcome(str, Enum):
    RESET = "reset"
    RUNNING = "running"
    NOT_FOUND = "not_found"


class InFlightRegistry:
    """Lock-guarded map of document id to the token of its single active run."""

    def __init__(self) -> None:
        self._runs: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._runs

    def __len__(self) -> int:
        return len(self._runs)

    async def acquire(self, document_id: str) -> str | None:
        """Register a new run; None when one is already active."""
        async with self._lock:
            if document_id in self._runs:
                return None
            token = uuid4().hex
            self._runs[document_id] = token
            return token

    async def release(self, document_id: str, token: str) -> bool:
        """Remove the entry only if it still belongs to ``token``."""
        async with self._lock:
            if self._runs.get(document_id) != token:
                return False
            del self._runs[document_id]
            return True

    async def discard(self, document_id: str) -> bool:
        async with self._lock:
            return self._runs.pop(document_id, None) is not None

    def is_current(self, document_id: str, token: str) -> bool:
        return self._runs.get(document_id) == token


def compose_embedding_input(document: Document, page: Page) -> str:
    """Build the text unit sent to the provider for one page."""
    meta = document.metadata
    metadata_part = (
        f"[Metadata: Book: {meta.book_name or MISSING}, "
        f"Author: {meta.author_name or MISSING}, "
        f"Category: {meta.category or MISSING}]"
    )
    summary_part = f"[Summary: {page.summary or MISSING}]"
    return f"{metadata_part} {summary_part}\n\n[Content]:\n{page.text}"


class EmbeddingPipeline:
    """Batch page text to an embedding provider, one vector record per page."""

    def __init__(
        self,
        doc_repo: DocumentRepository,
        vector_repo: VectorRepository,
        provider: EmbeddingProvider,
        *,
        registry: InFlightRegistry | None = None,
        task_runner: BackgroundTaskRunner | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.doc_repo = doc_repo
        self.vector_repo = vector_repo
        self.provider = provider
        self.registry = registry or InFlightRegistry()
        self.task_runner = task_runner or BackgroundTaskRunner()
        self.batch_size = batch_size

    async def start(self, document_id: str) -> StartEmbeddingOutcome:
        """Mark the document ``processing`` and launch a background run."""
        if document_id in self.registry:
            return StartEmbeddingOutcome.ALREADY_RUNNING

        document = await self.doc_repo.get(document_id)
        if document is None:
            return StartEmbeddingOutcome.NOT_FOUND
        if document.embedding_status == EmbeddingStatus.COMPLETED.value:
            return StartEmbeddingOutcome.ALREADY_COMPLETED
        if document.parsing_status != ParsingStatus.COMPLETED.value:
            return StartEmbeddingOutcome.NOT_READY

        token = await self.registry.acquire(document_id)
        if token is None:
            return StartEmbeddingOutcome.ALREADY_RUNNING

        resuming = document.embedding_status == EmbeddingStatus.PROCESSING.value
        progress = document.embedding_progress or EmbeddingProgress()
        try:
            await self.doc_repo.update_embedding_state(
                document_id,
                status=EmbeddingStatus.PROCESSING,
                progress=progress,
                metadata_updates={"embedding_model": self.provider.model, "embedding_error": None},
            )
        except Exception:
            await self.registry.release(document_id, token)
            raise

        logger.info(
            "embedding_started",
            document_id=document_id,
            resumed=resuming,
            resume_from_page=progress.current_page,
        )
        self.task_runner.spawn(self._run(document, progress, token), name=f"embed:{document_id}")
        return StartEmbeddingOutcome.STARTED

    async def stop(self, document_id: str) -> StopEmbeddingOutcome:
        """Cooperative stop: no further batches begin; in-flight provider calls are not cancelled."""
        document = await self.doc_repo.get(document_id)
        was_running = await self.registry.discard(document_id)
        if document is None:
            return StopEmbeddingOutcome.NOT_FOUND

        await self.doc_repo.update_embedding_state(document_id, status=EmbeddingStatus.NOT_STARTED)
        logger.info("embedding_stopped", document_id=document_id, was_running=was_running)
        return StopEmbeddingOutcome.STOPPED if was_running else StopEmbeddingOutcome.NOT_RUNNING

    async def reset(self, document_id: str) -> tuple[ResetEmbeddingOutcome, int]:
        """Delete stored vectors and zero progress so the next start re-embeds every page.

        Refused while a run is active; stop it first. Returns the outcome and
        the number of vector records removed.
        """
        if document_id in self.registry:
            return ResetEmbeddingOutcome.RUNNING, 0
        document = await self.doc_repo.get(document_id)
        if document is None:
            return ResetEmbeddingOutcome.NOT_FOUND, 0

        deleted = await self.vector_repo.delete_document(document_id)
        await self.doc_repo.update_embedding_state(
            document_id,
            status=EmbeddingStatus.NOT_STARTED,
            progress=EmbeddingProgress(),
            metadata_updates={
                "embedding_error": None,
                "embedding_skipped_pages": 0,
                "embedding_failed_pages": 0,
            },
        )
        logger.info("embedding_reset", document_id=document_id, deleted_vectors=deleted)
        return ResetEmbeddingOutcome.RESET, deleted

    async def _run(self, document: Document, progress: EmbeddingProgress, token: str) -> None:
        document_id = document.document_id
        structlog.contextvars.bind_contextvars(document_id=document_id)
        log = logger.bind(component="embedding_pipeline")
        try:
            pages = sorted(document.pages_data, key=lambda page: page.page_number)
            existing = await self.vector_repo.existing_page_numbers(document_id)
            total_batches = math.ceil(len(pages) / self.batch_size)
            checkpoint = progress.current_page
            skipped = 0
            failed = 0
            log.info(
                "embedding_run_started",
                pages=len(pages),
                batches=total_batches,
                batch_size=self.batch_size,
                already_embedded=len(existing),
            )

            for batch_index in range(total_batches):
                if not self.registry.is_current(document_id, token):
                    log.info("embedding_run_stopped", batch=batch_index + 1, batches=total_batches)
                    return

                start = batch_index * self.batch_size
                batch = pages[start : start + self.batch_size]
                pending = [page for page in batch if page.page_number not in existing]
                skipped += len(batch) - len(pending)
                if pending:
                    duplicates, not_persisted = await self._embed_batch(document, pending, log)
                    skipped += duplicates
                    failed += not_persisted

                checkpoint = max(checkpoint, start + len(batch))
                await self.doc_repo.update_embedding_state(
                    document_id,
                    progress=EmbeddingProgress(current_page=checkpoint, current_chunk=0),
                )
                log.info("embedding_batch_stored", batch=batch_index + 1, batches=total_batches, pages=len(batch))

            if not self.registry.is_current(document_id, token):
                log.info("embedding_run_stopped", batch=total_batches, batches=total_batches)
                return

            if failed:
                error = f"Failed to persist {failed} page vectors"
                await self.doc_repo.update_embedding_state(
                    document_id,
                    metadata_updates={
                        "embedding_error": error,
                        "embedding_skipped_pages": skipped,
                        "embedding_failed_pages": failed,
                    },
                )
                log.warning("embedding_incomplete", pages=len(pages), failed_pages=failed)
                return

            await self.doc_repo.update_embedding_state(
                document_id,
                status=EmbeddingStatus.COMPLETED,
                progress=EmbeddingProgress(),
                metadata_updates={
                    "embedding_error": None,
                    "embedding_skipped_pages": skipped,
                    "embedding_failed_pages": 0,
                },
            )
            log.info("embedding_completed", pages=len(pages), skipped_pages=skipped)
        except Exception as exc:  # noqa: BLE001
            log.exception("embedding_failed", error=str(exc))
            await self.doc_repo.update_embedding_state(
                document_id,
                metadata_updates={"embedding_error": str(exc) or type(exc).__name__},
            )
        finally:
            await self.registry.release(document_id, token)
            structlog.contextvars.clear_contextvars()

    async def _embed_batch(
        self, document: Document, pages: list[Page], log: structlog.stdlib.BoundLogger
    ) -> tuple[int, int]:
        """Embed and persist one batch; return (duplicate records, records that failed to persist)."""
        texts = [compose_embedding_input(document, page) for page in pages]
        vectors = await self.provider.embed(texts)
        if len(vectors) != len(pages):
            raise RuntimeError(f"Embedding provider returned {len(vectors)} vectors for {len(pages)} pages")

        duplicates = failed = 0
        meta = document.metadata
        for page, vector in zip(pages, vectors):
            record = VectorRecord(
                document_id=document.document_id,
                user_id=document.user_id,
                file_name=document.file_name,
                page_number=page.page_number,
                chunk_index=0,
                text=page.text,
                embedding=vector,
                metadata=VectorRecordMetadata(
                    book_name=meta.book_name,
                    author_name=meta.author_name,
                    category=meta.category,
                    summary=page.summary,
                ),
                embedding_model=self.provider.model,
            )
            try:
                inserted = await self.vector_repo.insert(record)
            except Exception as exc:  # noqa: BLE001
                log.error("vector_persist_failed", page_number=page.page_number, error=str(exc))
                failed += 1
                continue
            if not inserted:
                duplicates += 1
        return duplicates, failed
