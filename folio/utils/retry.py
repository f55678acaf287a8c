"""Retry helpers for transient upstream failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

logger = logging.getLogger(__name__)


def is_transient_error(error: Exception) -> bool:
    """Return True when an exception likely represents a retriable transient error."""
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in TRANSIENT_STATUS_CODES
    return False


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay_seconds: float = 0.5,
    should_retry: Callable[[Exception], bool] = is_transient_error,
    label: str = "operation",
) -> T:
    """Retry an async operation with exponential backoff."""
    if attempts <= 0:
        raise ValueError("attempts must be > 0")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as error:  # noqa: BLE001
            if attempt >= attempts or not should_retry(error):
                raise
            delay = base_delay_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Transient failure, retrying: label=%s attempt=%s/%s delay=%.2fs error=%s",
                label,
                attempt,
                attempts,
                delay,
                error,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("retry_async exhausted unexpectedly")
