"""Normalize heterogeneous backend page payloads into canonical page records."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from folio.models.document import Page, PageMetadata
from folio.parsers.text import count_words, strip_json_fence

logger = logging.getLogger(__name__)

_TEXT_KEYS = ("clean_text", "text", "markdown", "md")
_MARKDOWN_KEYS = ("markdown", "md")
_PAGE_NUMBER_KEYS = ("page_number", "pageNumber", "page")


def normalize_pages(
    raw_pages: Iterable[Mapping[str, Any]],
    *,
    text_cleaner: Callable[[str], str] | None = None,
    drop_empty: bool = False,
) -> list[Page]:
    """Convert backend page objects into sorted canonical ``Page`` records.

    Each raw page may carry its body under ``clean_text``, ``text``,
    ``markdown`` or ``md``. A markdown body that is itself a JSON document
    following the page schema (``{"pages": [{...}]}``, optionally fenced) is
    unwrapped rather than kept as literal text. Page numbers default to the
    1-based position in ``raw_pages`` when the payload does not carry one.
    """
    pages: dict[int, Page] = {}
    for index, raw in enumerate(raw_pages):
        if not isinstance(raw, Mapping):
            logger.warning("Skipping non-object page payload at index=%s", index)
            continue

        text, summary = _resolve_text_and_summary(raw)
        if text_cleaner is not None:
            text = text_cleaner(text)
        if drop_empty and not text.strip():
            continue

        page_number = _resolve_page_number(raw, default=index + 1)
        if page_number in pages:
            logger.warning("Duplicate page number in backend payload: page_number=%s", page_number)
            continue

        markdown = _first_string(raw, _MARKDOWN_KEYS)
        if markdown is None or _unwrap_embedded_page(markdown) is not None or text_cleaner is not None:
            markdown = text

        pages[page_number] = Page(
            page_number=page_number,
            text=text,
            markdown=markdown,
            summary=summary or None,
            tables=list(raw.get("tables") or []),
            images=list(raw.get("images") or []),
            header=_optional_string(raw.get("header")),
            footer=_optional_string(raw.get("footer")),
            metadata=PageMetadata(
                word_count=count_words(text),
                character_count=len(text),
                confidence=_optional_float(raw.get("confidence")),
                processing_time=_optional_float(raw.get("processing_time")),
            ),
        )

    return [pages[number] for number in sorted(pages)]


def single_page_from_text(text: str) -> Page:
    """Wrap flat parser output as page 1."""
    return Page(
        page_number=1,
        text=text,
        markdown=text,
        metadata=PageMetadata(word_count=count_words(text), character_count=len(text)),
    )


def _resolve_text_and_summary(raw: Mapping[str, Any]) -> tuple[str, str]:
    text = _first_string(raw, _TEXT_KEYS) or ""
    summary = _optional_string(raw.get("summary")) or ""

    for key in _MARKDOWN_KEYS:
        value = raw.get(key)
        if not isinstance(value, str):
            continue
        inner = _unwrap_embedded_page(value)
        if inner is None:
            continue
        inner_text = _first_string(inner, ("clean_text", "text"))
        if inner_text is not None:
            text = inner_text
        elif text == value:
            text = ""
        summary = _optional_string(inner.get("summary")) or summary
        break

    return text, summary


def _unwrap_embedded_page(value: str) -> Mapping[str, Any] | None:
    stripped = value.strip()
    if not (stripped.startswith("{") or stripped.startswith("```json")):
        return None
    try:
        decoded = json.loads(strip_json_fence(stripped))
    except (TypeError, ValueError):
        return None
    if not isinstance(decoded, Mapping):
        return None
    inner_pages = decoded.get("pages")
    if not isinstance(inner_pages, list) or not inner_pages or not isinstance(inner_pages[0], Mapping):
        return None
    return inner_pages[0]


def _resolve_page_number(raw: Mapping[str, Any], *, default: int) -> int:
    for key in _PAGE_NUMBER_KEYS:
        value = raw.get(key)
        if value is None or isinstance(value, bool):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number >= 1:
            return number
    return default


def _first_string(raw: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _optional_string(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
