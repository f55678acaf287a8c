"""Local page counting used by the pre-submission safety check."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pdfplumber

logger = logging.getLogger(__name__)


def count_pdf_pages(path: str | Path) -> int | None:
    """Return the page count of a local PDF, or None when it cannot be read."""
    pdf_path = Path(path)
    if pdf_path.suffix.lower() != ".pdf" or not pdf_path.exists():
        return None
    try:
        with pdfplumber.open(pdf_path) as pdf:
            return len(pdf.pages)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not detect PDF page count: path=%s error=%s", pdf_path, exc)
        return None


async def count_pages_async(path: str | Path) -> int | None:
    """Count PDF pages in a worker thread without blocking the event loop."""
    return await asyncio.to_thread(count_pdf_pages, path)
