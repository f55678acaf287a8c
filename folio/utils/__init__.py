"""Shared utility helpers."""

from folio.utils.retry import is_transient_error, retry_async

__all__ = ["is_transient_error", "retry_async"]
