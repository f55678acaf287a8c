"""Direct-call parser backend: one synchronous Mistral OCR request per document."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from folio.models.parsing import JobHandle, ParseOptions, ParseSource, RawParseOutput
from folio.parsers.base import ParserConfigurationError, ParserError, ParserJobFailedError, ParserQuotaError
from folio.parsers.text import markdown_to_text

logger = logging.getLogger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
MISTRAL_OCR_MODEL = "mistral-ocr-latest"

DOCUMENT_ANNOTATION_SCHEMA: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "document_annotation",
        "strict": True,
        "schema": {
            "type": "object",
            "title": "DocumentAnnotation",
            "additionalProperties": False,
            "required": ["language", "title", "summary", "topics"],
            "properties": {
                "language": {"type": "string", "title": "Language"},
                "title": {"type": "string", "title": "Title"},
                "summary": {"type": "string", "title": "Summary"},
                "topics": {"type": "array", "title": "Topics", "items": {"type": "string"}},
            },
        },
    },
}


def filter_blank_pages(pages: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Drop pages with neither markdown text nor embedded images."""
    kept: list[dict[str, Any]] = []
    for page in pages or []:
        if not isinstance(page, dict):
            continue
        has_markdown = bool(str(page.get("markdown") or "").strip())
        has_images = bool(page.get("images"))
        if has_markdown or has_images:
            kept.append(page)
    return kept


class MistralOCRBackend:
    """Single-shot backend; ``submit`` performs the OCR call and ``monitor`` is a no-op."""

    name = "mistral"
    annotate_by_default = False
    drop_empty_pages = False
    text_cleaner = None

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = MISTRAL_BASE_URL,
        model: str = MISTRAL_OCR_MODEL,
        annotation_page_limit: int | None = 8,
        timeout_seconds: float = 120.0,
        session: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.annotation_page_limit = annotation_page_limit
        self.session = session or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    async def close(self) -> None:
        """Close underlying HTTP session."""
        await self.session.aclose()

    async def submit(self, source: ParseSource, options: ParseOptions) -> JobHandle:
        """Run OCR for the source and keep the raw response on the handle."""
        annotate = bool(options.annotate)
        headers = self._headers()

        if source.is_url:
            response = await self._process({"type": "document_url", "document_url": str(source.url)}, options)
            return JobHandle(backend=self.name, annotation_applied=annotate, payload=response)

        if not source.file_path:
            raise ValueError("ParseSource has neither a file path nor a URL")

        file_id = await self._upload(source, headers)
        try:
            response = await self._process({"type": "file", "file_id": file_id}, options)
        finally:
            await self._delete_file(file_id)
        return JobHandle(backend=self.name, job_id=None, annotation_applied=annotate, payload=response)

    async def monitor(self, handle: JobHandle) -> JobHandle:
        return handle

    async def fetch_result(self, handle: JobHandle) -> RawParseOutput:
        """Suppress blank pages and derive plain text from each page's markdown."""
        payload: dict[str, Any] = handle.payload or {}
        raw_pages = payload.get("pages") or []
        kept = filter_blank_pages(raw_pages)
        dropped = len(raw_pages) - len(kept)
        if dropped:
            logger.info("Filtered blank OCR pages: dropped=%s kept=%s", dropped, len(kept))

        pages: list[dict[str, Any]] = []
        for page in kept:
            markdown = str(page.get("markdown") or "")
            entry: dict[str, Any] = {
                "text": markdown_to_text(markdown),
                "markdown": markdown,
                "tables": page.get("tables") or [],
                "images": page.get("images") or [],
                "header": page.get("header"),
                "footer": page.get("footer"),
                "confidence": page.get("confidence"),
            }
            index = page.get("index")
            if isinstance(index, int) and not isinstance(index, bool):
                entry["page_number"] = index + 1
            pages.append(entry)

        usage = payload.get("usage_info") or payload.get("usage")
        return RawParseOutput(
            pages=pages,
            model_id=payload.get("model") or self.model,
            usage=usage if isinstance(usage, dict) else None,
            page_count=len(raw_pages) or None,
            annotation=_decode_annotation(payload.get("document_annotation")),
        )

    async def _upload(self, source: ParseSource, headers: dict[str, str]) -> str:
        content = await asyncio.to_thread(Path(str(source.file_path)).read_bytes)
        try:
            response = await self.session.post(
                self._url("/files"),
                headers=headers,
                data={"purpose": "ocr"},
                files={"file": (source.display_name, content, source.content_type or "application/octet-stream")},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _translate_http_error(exc) from exc
        file_id = str(response.json().get("id") or "")
        if not file_id:
            raise ParserError("Mistral file upload response did not include a file id")
        logger.info("Uploaded document to Mistral: file_id=%s", file_id)
        return file_id

    async def _process(self, document: dict[str, Any], options: ParseOptions) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "document": document,
            "include_image_base64": options.include_image_base64,
            "extract_header": options.extract_header,
            "extract_footer": options.extract_footer,
        }
        if options.table_format:
            body["table_format"] = options.table_format
        if options.annotate:
            body["document_annotation_format"] = DOCUMENT_ANNOTATION_SCHEMA

        try:
            response = await self.session.post(self._url("/ocr"), headers=self._headers(), json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _translate_http_error(exc) from exc
        payload = response.json()
        if not isinstance(payload, dict):
            raise ParserError("Mistral OCR returned an unexpected payload")
        return payload

    async def _delete_file(self, file_id: str) -> None:
        try:
            response = await self.session.delete(self._url(f"/files/{file_id}"), headers=self._headers())
            response.raise_for_status()
            logger.info("Deleted file from Mistral: file_id=%s", file_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to delete Mistral file: file_id=%s error=%s", file_id, exc)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ParserConfigurationError("Mistral API key is not configured")
        return {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"


def _translate_http_error(exc: httpx.HTTPStatusError) -> ParserError:
    try:
        detail: Any = exc.response.json()
    except ValueError:
        detail = exc.response.text
    if isinstance(detail, dict):
        detail = detail.get("message") or detail.get("detail") or detail
    if exc.response.status_code == 402:
        return ParserQuotaError(f"Mistral OCR quota exhausted: {detail}")
    return ParserJobFailedError(
        f"Mistral OCR request failed ({exc.response.status_code}): {detail}",
        status=str(exc.response.status_code),
    )


def _decode_annotation(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value
