"""Job-based parser backend: upload to LlamaParse, poll the job, fetch results."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from folio.models.parsing import JobHandle, ParseOptions, ParseSource, RawParseOutput
from folio.parsers.base import (
    ParserConfigurationError,
    ParserError,
    ParserJobFailedError,
    ParserQuotaError,
    ParserTimeoutError,
)
from folio.parsers.normalizer import normalize_pages
from folio.parsers.text import clean_parsed_text, strip_json_fence
from folio.utils.retry import retry_async

logger = logging.getLogger(__name__)

LLAMA_BASE_URL = "https://api.cloud.llamaindex.ai/api/v1"
LLAMA_MODEL_ID = "llamaindex-parser-gen"
SUCCESS_STATUS = "SUCCESS"
FAILED_STATUSES = frozenset({"ERROR", "FAILED"})

PAGE_STRUCTURING_INSTRUCTION = """
You are a document parsing and normalization engine.

Convert the document into clean, structured, embedding-ready JSON.

Rules:
1. Extract text page by page.
2. Remove OCR artifacts: words broken across lines, repeated spaces, random
   symbols and non-printable characters.
3. Preserve logical paragraphs and headings.
4. Do not invent, rewrite or comment on content; keep the original wording.
5. Normalize whitespace and line breaks.
6. Remove repeated headers, footers and page numbers.
7. Do not include OCR coordinates or bounding boxes.

For each page provide the cleaned text and a two-line informational summary of
the whole page (no opinions, do not write "this page discusses").

Output valid JSON only, without markdown fences or extra text, following:
{
  "pages": [
    {
      "page_number": number,
      "clean_text": string,
      "summary": string,
      "word_count": number,
      "character_count": number
    }
  ]
}
"""


class LlamaParseBackend:
    """Upload-then-poll backend; ``monitor`` blocks until a terminal job status."""

    name = "llama"
    annotate_by_default = True
    drop_empty_pages = True

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = LLAMA_BASE_URL,
        poll_interval_seconds: float = 2.0,
        max_attempts: int = 300,
        annotation_page_limit: int | None = 700,
        timeout_seconds: float = 120.0,
        session: httpx.AsyncClient | None = None,
    ):
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.annotation_page_limit = annotation_page_limit
        self.text_cleaner = clean_parsed_text
        self.session = session or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    async def close(self) -> None:
        """Close underlying HTTP session."""
        await self.session.aclose()

    async def submit(self, source: ParseSource, options: ParseOptions) -> JobHandle:
        """Upload a file or URL reference and return the job handle."""
        annotate = bool(options.annotate)
        data: dict[str, str] = {"premium_mode": "true" if annotate else "false"}
        if annotate:
            data["parsing_instruction"] = PAGE_STRUCTURING_INSTRUCTION

        try:
            if source.is_url:
                data["input_url"] = str(source.url)
                response = await self.session.post(
                    self._url("/parsing/upload"),
                    headers=self._headers(),
                    data=data,
                )
            else:
                if not source.file_path:
                    raise ValueError("ParseSource has neither a file path nor a URL")
                content = await asyncio.to_thread(Path(source.file_path).read_bytes)
                response = await self.session.post(
                    self._url("/parsing/upload"),
                    headers=self._headers(),
                    data=data,
                    files={"file": (source.display_name, content, source.content_type or "application/octet-stream")},
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._translate_http_error(exc) from exc

        job_id = str(response.json().get("id") or "")
        if not job_id:
            raise ParserError("LlamaParse upload response did not include a job id")
        logger.info("LlamaParse job submitted: job_id=%s premium=%s", job_id, annotate)
        return JobHandle(backend=self.name, job_id=job_id, annotation_applied=annotate)

    async def monitor(self, handle: JobHandle) -> JobHandle:
        """Poll the job on a fixed interval until SUCCESS, ERROR/FAILED, or the attempt budget."""
        job_id = handle.job_id or ""
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.poll_interval_seconds)
            payload = await self._get_job(job_id)
            status = str(payload.get("status", "")).upper()
            logger.debug(
                "LlamaParse job status: job_id=%s status=%s attempt=%s/%s",
                job_id,
                status,
                attempt,
                self.max_attempts,
            )
            if status == SUCCESS_STATUS:
                return handle.model_copy(update={"status": payload})
            if status in FAILED_STATUSES:
                message = (
                    payload.get("error_message")
                    or payload.get("detail")
                    or f"Parsing job failed with status: {status}"
                )
                raise ParserJobFailedError(str(message), status=status, job_id=job_id)

        waited = self.max_attempts * self.poll_interval_seconds
        raise ParserTimeoutError(
            f"Parsing job {job_id} timed out after {self.max_attempts} attempts (~{waited:g}s)",
            job_id=job_id,
            attempts=self.max_attempts,
        )

    async def fetch_result(self, handle: JobHandle) -> RawParseOutput:
        """Fetch structured pages, degrading to the flat-text result when needed."""
        job_id = handle.job_id or ""
        pages: list[dict[str, Any]] = []
        try:
            pages = await self._fetch_structured_pages(job_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Structured result unavailable, using text result: job_id=%s error=%s", job_id, exc)
            pages = []

        flat_text: str | None = None
        usable = normalize_pages(pages, text_cleaner=self.text_cleaner, drop_empty=True)
        if not usable:
            pages = []
            flat_text = await self._fetch_flat_text(job_id)

        details = handle.status or {}
        return RawParseOutput(
            pages=pages,
            flat_text=flat_text,
            model_id=LLAMA_MODEL_ID,
            usage={
                "credits_used": details.get("credits_used") or 0,
                "credits_total": details.get("credits_total"),
                "is_free": bool(details.get("is_free", False)),
            },
            job_id=job_id,
            page_count=_optional_int(details.get("page_count")) or len(usable) or None,
            processing_time=details.get("processing_time"),
        )

    async def _fetch_structured_pages(self, job_id: str) -> list[dict[str, Any]]:
        response = await retry_async(
            lambda: self._get(f"/parsing/job/{job_id}/result/json"),
            label="llama_result_json",
        )
        payload: Any = response.json()
        if isinstance(payload, str):
            payload = json.loads(strip_json_fence(payload))

        if isinstance(payload, dict) and isinstance(payload.get("pages"), list):
            raw_pages = payload["pages"]
        elif isinstance(payload, list):
            raw_pages = payload
        else:
            raise ValueError("structured result did not match the page schema")
        return [page for page in raw_pages if isinstance(page, dict)]

    async def _fetch_flat_text(self, job_id: str) -> str:
        response = await retry_async(
            lambda: self._get(f"/parsing/job/{job_id}/result/text"),
            label="llama_result_text",
        )
        try:
            payload: Any = response.json()
        except ValueError:
            payload = response.text
        if isinstance(payload, dict):
            payload = payload.get("text", "")
        return clean_parsed_text(str(payload or ""))

    async def _get_job(self, job_id: str) -> dict[str, Any]:
        try:
            response = await retry_async(lambda: self._get(f"/parsing/job/{job_id}"), label="llama_job_status")
        except httpx.HTTPStatusError as exc:
            raise self._translate_http_error(exc) from exc
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def _get(self, path: str) -> httpx.Response:
        response = await self.session.get(self._url(path), headers=self._headers())
        response.raise_for_status()
        return response

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ParserConfigurationError("LlamaParse API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _translate_http_error(self, exc: httpx.HTTPStatusError) -> ParserError:
        detail = _error_detail(exc.response)
        if exc.response.status_code == 402 or "credits" in detail.lower():
            return ParserQuotaError(f"LlamaParse credits exhausted: {detail}")
        return ParserJobFailedError(
            f"LlamaParse request failed ({exc.response.status_code}): {detail}",
            status=str(exc.response.status_code),
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("message") or payload)
    return str(payload)


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
