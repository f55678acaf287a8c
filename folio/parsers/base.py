"""Parser capability contract shared by all document parsing backends."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

import httpx
import structlog

from folio.models.parsing import JobHandle, ParseOptions, ParseResult, ParseSource, RawParseOutput
from folio.parsers.normalizer import normalize_pages, single_page_from_text

logger = structlog.get_logger(__name__)


class ParserError(RuntimeError):
    """Base class for parser backend failures."""


class ParserConfigurationError(ParserError):
    """Backend cannot be used because it is not configured (e.g. missing API key)."""


class ParserQuotaError(ParserError):
    """Backend refused the job because the account ran out of credits."""


class ParserJobFailedError(ParserError):
    """Backend reported an explicit failure for the job."""

    def __init__(self, message: str, *, status: str | None = None, job_id: str | None = None):
        super().__init__(message)
        self.status = status
        self.job_id = job_id


class ParserTimeoutError(ParserError):
    """Job did not reach a terminal state within the polling budget."""

    def __init__(self, message: str, *, job_id: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.job_id = job_id
        self.attempts = attempts


@runtime_checkable
class ParserBackend(Protocol):
    """Uniform submit/monitor/fetch contract.

    Direct-call backends do all their work in ``submit`` and return an
    already-terminal handle; job-based backends poll in ``monitor``.
    """

    name: str
    annotation_page_limit: int | None
    annotate_by_default: bool
    text_cleaner: Callable[[str], str] | None
    drop_empty_pages: bool

    async def submit(self, source: ParseSource, options: ParseOptions) -> JobHandle: ...

    async def monitor(self, handle: JobHandle) -> JobHandle: ...

    async def fetch_result(self, handle: JobHandle) -> RawParseOutput: ...

    async def close(self) -> None: ...


def annotation_requested(backend: ParserBackend, options: ParseOptions) -> bool:
    """Return whether the caller (or backend default) asks for annotation."""
    if options.annotate is None:
        return bool(backend.annotate_by_default)
    return bool(options.annotate)


def apply_page_limit(backend: ParserBackend, options: ParseOptions, page_count: int | None) -> ParseOptions:
    """Disable annotation up front when the document exceeds the backend's limit."""
    resolved = options.model_copy(update={"annotate": annotation_requested(backend, options)})
    limit = backend.annotation_page_limit
    if not resolved.annotate or limit is None or page_count is None:
        return resolved
    if page_count > limit:
        logger.info(
            "annotation_disabled_page_limit",
            backend=backend.name,
            page_count=page_count,
            page_limit=limit,
        )
        return resolved.without_annotation()
    return resolved


def should_retry_without_annotation(error: Exception, options: ParseOptions) -> bool:
    """A failure is retried once, degraded, only when annotation could have caused it."""
    if not options.annotate:
        return False
    return not isinstance(
        error,
        (ParserConfigurationError, ParserQuotaError, ParserTimeoutError, httpx.TransportError),
    )


async def run_parser(backend: ParserBackend, source: ParseSource, options: ParseOptions) -> ParseResult:
    """Drive any backend through submit, monitor and fetch, then normalize pages."""
    handle = await backend.submit(source, options)
    handle = await backend.monitor(handle)
    output = await backend.fetch_result(handle)

    pages = normalize_pages(
        output.pages,
        text_cleaner=backend.text_cleaner,
        drop_empty=backend.drop_empty_pages,
    )
    if not pages and output.flat_text is not None:
        pages = [single_page_from_text(output.flat_text)]

    return ParseResult(
        pages=pages,
        model_id=output.model_id,
        usage=output.usage,
        job_id=output.job_id or handle.job_id,
        page_count=output.page_count or len(pages),
        processing_time=output.processing_time,
        annotation=output.annotation,
        annotation_applied=handle.annotation_applied,
    )
