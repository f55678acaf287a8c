"""Parser capability backends and page normalization."""

from folio.parsers.base import (
    ParserBackend,
    ParserConfigurationError,
    ParserError,
    ParserJobFailedError,
    ParserQuotaError,
    ParserTimeoutError,
    run_parser,
)
from folio.parsers.llama import LlamaParseBackend
from folio.parsers.mistral import MistralOCRBackend
from folio.parsers.normalizer import normalize_pages

__all__ = [
    "LlamaParseBackend",
    "MistralOCRBackend",
    "ParserBackend",
    "ParserConfigurationError",
    "ParserError",
    "ParserJobFailedError",
    "ParserQuotaError",
    "ParserTimeoutError",
    "normalize_pages",
    "run_parser",
]
