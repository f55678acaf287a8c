"""Parsing orchestrator: document lifecycle around a parser backend run."""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel

from folio.models.document import Document, DocumentMetadata, ParsingStatus, utc_now
from folio.models.parsing import ParseOptions, ParseResult, ParserChoice, ParseSource, Requester
from folio.parsers.base import ParserBackend, apply_page_limit, run_parser, should_retry_without_annotation
from folio.parsers.page_count import count_pages_async
from folio.pipeline.tasks import BackgroundTaskRunner
from folio.repositories.base import DocumentRepository

logger = structlog.get_logger(__name__)
file_logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({".pdf", ".docx"})
ALLOWED_URL_SCHEMES = frozenset({"http", "https"})

PageCounter = Callable[[str], Awaitable[int | None]]


class ParseRequestError(ValueError):
    """Submission rejected before any document record was created."""


class DocumentNotFoundError(LookupError):
    """No document exists for the given id."""


class DocumentAccessDeniedError(PermissionError):
    """Requester neither owns the document nor holds an elevated role."""


async def load_for_requester(doc_repo: DocumentRepository, document_id: str, requester: Requester) -> Document:
    """Fetch a document the requester owns, or any document for an elevated role."""
    document = await doc_repo.get(document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document not found: {document_id}")
    if not document.is_owned_by(requester.user_id) and not requester.is_elevated:
        raise DocumentAccessDeniedError(f"Access denied to document: {document_id}")
    return document


class DocumentStatusView(BaseModel):
    """Caller-facing polling shape: processing, completed with result, or failed with error."""

    document_id: str
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None


class ParsingOrchestrator:
    """Create document records synchronously and parse them in detached background tasks."""

    def __init__(
        self,
        doc_repo: DocumentRepository,
        backends: Mapping[str, ParserBackend],
        *,
        task_runner: BackgroundTaskRunner | None = None,
        page_counter: PageCounter | None = None,
        default_parser: str = ParserChoice.MISTRAL.value,
    ):
        self.doc_repo = doc_repo
        self.backends = dict(backends)
        self.task_runner = task_runner or BackgroundTaskRunner()
        self.page_counter = page_counter or count_pages_async
        self.default_parser = default_parser

    @property
    def available_parsers(self) -> list[str]:
        return sorted(self.backends)

    async def submit_for_parsing(
        self,
        source: ParseSource,
        parser_choice: str | ParserChoice | None,
        options: ParseOptions,
        requester: Requester,
    ) -> str:
        """Validate, persist a ``processing`` document and return its id before parsing starts."""
        try:
            backend = self._validate(source, parser_choice)
        except ParseRequestError:
            _remove_temp_file(source.file_path)
            raise

        document = Document(
            user_id=requester.user_id,
            file_name=source.display_name,
            file_size=source.file_size,
            file_type=_resolve_content_type(source),
            parsing_status=ParsingStatus.PROCESSING,
            is_verified=requester.is_elevated,
            metadata=DocumentMetadata(
                parser=backend.name,
                document_url=source.url,
                processed_at=utc_now(),
                book_name=_clean(options.book_name),
                author_name=_clean(options.author_name),
                category=_clean(options.category),
            ),
        )
        try:
            await self.doc_repo.save(document)
        except Exception:
            _remove_temp_file(source.file_path)
            raise

        logger.info(
            "parsing_submitted",
            document_id=document.document_id,
            parser=backend.name,
            source="url" if source.is_url else "file",
            user_id=requester.user_id,
        )
        self.task_runner.spawn(
            self._run(document.document_id, backend, source, options),
            name=f"parse:{document.document_id}",
        )
        return document.document_id

    async def get_status(self, document_id: str, requester: Requester) -> DocumentStatusView:
        """Pure read used for client polling."""
        document = await load_for_requester(self.doc_repo, document_id, requester)

        status = str(document.parsing_status)
        if status == ParsingStatus.COMPLETED.value:
            return DocumentStatusView(document_id=document_id, status=status, result=_result_payload(document))
        if status == ParsingStatus.FAILED.value:
            return DocumentStatusView(
                document_id=document_id,
                status=status,
                error=document.metadata.error or "Parsing failed",
            )
        return DocumentStatusView(document_id=document_id, status=ParsingStatus.PROCESSING.value)

    def _validate(self, source: ParseSource, parser_choice: str | ParserChoice | None) -> ParserBackend:
        choice = parser_choice.value if isinstance(parser_choice, ParserChoice) else parser_choice
        choice = (choice or self.default_parser).strip().lower()
        backend = self.backends.get(choice)
        if backend is None:
            available = ", ".join(self.available_parsers) or "none"
            raise ParseRequestError(f"Unsupported parser '{choice}'. Available parsers: {available}")

        has_file = bool(source.file_path)
        has_url = bool(source.url)
        if has_file == has_url:
            raise ParseRequestError("Provide exactly one of a file or a document URL")

        if has_url:
            scheme = urlparse(str(source.url)).scheme.lower()
            if scheme not in ALLOWED_URL_SCHEMES:
                raise ParseRequestError(f"Unsupported URL scheme '{scheme or 'none'}'; use http or https")
        elif source.extension not in ALLOWED_EXTENSIONS:
            raise ParseRequestError(
                f"Unsupported file type '{source.extension or 'none'}'. Allowed: .pdf, .docx"
            )
        return backend

    async def _run(
        self,
        document_id: str,
        backend: ParserBackend,
        source: ParseSource,
        options: ParseOptions,
    ) -> None:
        structlog.contextvars.bind_contextvars(document_id=document_id, parser=backend.name)
        log = logger.bind(component="parsing_orchestrator")
        log.info("parsing_started")
        retried = False
        effective = options
        try:
            page_count = await self._page_count(source)
            effective = apply_page_limit(backend, options, page_count)
            try:
                result = await run_parser(backend, source, effective)
            except Exception as exc:  # noqa: BLE001
                if not should_retry_without_annotation(exc, effective):
                    raise
                log.warning("parsing_retry_without_annotation", error=str(exc))
                retried = True
                effective = effective.without_annotation()
                result = await run_parser(backend, source, effective)

            await self._complete(document_id, result, effective, retried)
            log.info(
                "parsing_completed",
                pages=len(result.pages),
                model=result.model_id,
                annotation_applied=result.annotation_applied,
                annotation_retry=retried,
            )
        except Exception as exc:  # noqa: BLE001
            log.exception("parsing_failed", error=str(exc), error_type=type(exc).__name__)
            await self.doc_repo.mark_parsing_failed(
                document_id,
                str(exc) or type(exc).__name__,
                {
                    "annotation_requested": bool(effective.annotate) or retried,
                    "annotation_retry": retried,
                },
            )
        finally:
            _remove_temp_file(source.file_path)
            structlog.contextvars.clear_contextvars()

    async def _page_count(self, source: ParseSource) -> int | None:
        if source.page_count is not None:
            return source.page_count
        if not source.file_path:
            return None
        return await self.page_counter(source.file_path)

    async def _complete(
        self,
        document_id: str,
        result: ParseResult,
        options: ParseOptions,
        retried: bool,
    ) -> None:
        tables: list[Any] = []
        images: list[Any] = []
        for page in result.pages:
            tables.extend(page.tables)
            images.extend(page.images)

        await self.doc_repo.mark_parsing_completed(
            document_id,
            original_text=result.full_text,
            pages_data=result.pages,
            tables=tables,
            images=images,
            metadata_updates={
                "model": result.model_id,
                "job_id": result.job_id,
                "page_count": result.page_count or len(result.pages),
                "processing_time": result.processing_time,
                "usage": result.usage,
                "annotation": result.annotation,
                "annotation_requested": bool(options.annotate) or retried,
                "annotation_applied": result.annotation_applied,
                "annotation_retry": retried,
                "processed_at": utc_now(),
            },
        )


def _result_payload(document: Document) -> dict[str, Any]:
    return {
        "document_id": document.document_id,
        "file_name": document.file_name,
        "file_size": document.file_size,
        "file_type": document.file_type,
        "pages": document.pages,
        "full_text": document.original_text,
        "detailed_pages": [page.model_dump(mode="json") for page in document.pages_data],
        "metadata": document.metadata.model_dump(mode="json"),
    }


def _resolve_content_type(source: ParseSource) -> str:
    if source.content_type:
        return source.content_type
    guessed, _ = mimetypes.guess_type(source.display_name)
    return guessed or "application/octet-stream"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _remove_temp_file(path: str | None) -> None:
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        file_logger.warning("Failed to remove temporary file: path=%s error=%s", path, exc)
