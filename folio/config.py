"""Application configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ParserName = Literal["llama", "mistral"]


class Settings(BaseSettings):
    """Strongly typed settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FOLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data stores
    mongodb_uri: str
    mongodb_database: str = "folio"

    # Job-based parser (LlamaParse)
    llama_api_key: str | None = None
    llama_base_url: str = "https://api.cloud.llamaindex.ai/api/v1"
    llama_max_attempts: int = 300
    llama_poll_interval_seconds: float = 2.0
    llama_annotation_page_limit: int = 700

    # Direct-call parser (Mistral OCR)
    mistral_api_key: str | None = None
    mistral_base_url: str = "https://api.mistral.ai/v1"
    mistral_ocr_model: str = "mistral-ocr-latest"
    mistral_annotation_page_limit: int = 8

    default_parser: ParserName = "mistral"

    # Embeddings
    embedding_api_key: str | None = None
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-large"
    embedding_batch_size: int = 20
    embedding_watchdog_enabled: bool = True
    embedding_watchdog_interval_seconds: int = 300
    embedding_stale_after_seconds: int = 1800

    # HTTP and files
    http_timeout_seconds: float = 120.0
    upload_dir: Path = Path("data/uploads")
    logging_config_path: Path = Path("config/logging.yaml")

    @property
    def parser_api_keys(self) -> dict[str, str | None]:
        return {"llama": self.llama_api_key, "mistral": self.mistral_api_key}

    @model_validator(mode="after")
    def validate_runtime_configuration(self) -> "Settings":
        """Validate cross-field configuration constraints."""
        if self.llama_max_attempts <= 0:
            raise ValueError("FOLIO_LLAMA_MAX_ATTEMPTS must be > 0")

        if self.llama_poll_interval_seconds <= 0:
            raise ValueError("FOLIO_LLAMA_POLL_INTERVAL_SECONDS must be > 0")

        if self.llama_annotation_page_limit <= 0:
            raise ValueError("FOLIO_LLAMA_ANNOTATION_PAGE_LIMIT must be > 0")

        if self.mistral_annotation_page_limit <= 0:
            raise ValueError("FOLIO_MISTRAL_ANNOTATION_PAGE_LIMIT must be > 0")

        if self.embedding_batch_size <= 0:
            raise ValueError("FOLIO_EMBEDDING_BATCH_SIZE must be > 0")

        if self.embedding_watchdog_interval_seconds <= 0:
            raise ValueError("FOLIO_EMBEDDING_WATCHDOG_INTERVAL_SECONDS must be > 0")

        if self.embedding_stale_after_seconds <= 0:
            raise ValueError("FOLIO_EMBEDDING_STALE_AFTER_SECONDS must be > 0")

        if self.http_timeout_seconds <= 0:
            raise ValueError("FOLIO_HTTP_TIMEOUT_SECONDS must be > 0")

        if not self.parser_api_keys.get(self.default_parser):
            raise ValueError(
                f"FOLIO_{self.default_parser.upper()}_API_KEY is required when "
                f"FOLIO_DEFAULT_PARSER={self.default_parser}"
            )

        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        parsed = yaml.safe_load(handle)

    if parsed is None:
        return {}

    if not isinstance(parsed, dict):
        raise ValueError(f"YAML config must be a mapping: {path}")

    return parsed


def load_logging_config(path: str | Path = "config/logging.yaml") -> dict[str, Any]:
    """Load a ``logging.config.dictConfig`` mapping from YAML."""
    return _load_yaml(Path(path))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    return Settings()
