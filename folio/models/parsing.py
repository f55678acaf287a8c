"""Value objects exchanged between the orchestrator and parser backends."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from folio.models.document import Page

ELEVATED_ROLES = frozenset({"admin"})


class ParserChoice(str, Enum):
    LLAMA = "llama"
    MISTRAL = "mistral"


class Requester(BaseModel):
    """Identity of the caller as established by the upstream auth layer."""

    user_id: str
    role: str = "user"

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


class ParseSource(BaseModel):
    """A local temporary file or a remote URL to be parsed."""

    file_path: str | None = None
    file_name: str | None = None
    file_size: int = 0
    content_type: str | None = None
    url: str | None = None
    page_count: int | None = None

    @property
    def is_url(self) -> bool:
        return self.url is not None

    @property
    def display_name(self) -> str:
        if self.file_name:
            return self.file_name
        if self.file_path:
            return Path(self.file_path).name
        if self.url:
            return Path(self.url.split("?", 1)[0]).name or self.url
        return "document"

    @property
    def extension(self) -> str:
        return Path(self.display_name).suffix.lower()


class ParseOptions(BaseModel):
    """Caller-tunable parsing options.

    ``annotate`` toggles the optional structured-annotation feature. ``None``
    defers to the selected backend's default.
    """

    annotate: bool | None = None
    table_format: str | None = "html"
    extract_header: bool = False
    extract_footer: bool = False
    include_image_base64: bool = False

    book_name: str | None = None
    author_name: str | None = None
    category: str | None = None

    def without_annotation(self) -> "ParseOptions":
        return self.model_copy(update={"annotate": False})


class JobHandle(BaseModel):
    """Opaque handle returned by ``submit`` and threaded through ``monitor``."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    backend: str
    job_id: str | None = None
    annotation_applied: bool = False
    payload: Any = None
    status: dict[str, Any] = Field(default_factory=dict)


class RawParseOutput(BaseModel):
    """Backend pages before normalization, plus accounting."""

    pages: list[dict[str, Any]] = Field(default_factory=list)
    flat_text: str | None = None
    model_id: str | None = None
    usage: dict[str, Any] | None = None
    job_id: str | None = None
    page_count: int | None = None
    processing_time: float | str | None = None
    annotation: Any = None


class ParseResult(BaseModel):
    """Uniform result of any parser backend."""

    pages: list[Page]
    model_id: str | None = None
    usage: dict[str, Any] | None = None
    job_id: str | None = None
    page_count: int | None = None
    processing_time: float | str | None = None
    annotation: Any = None
    annotation_applied: bool = False

    @property
    def full_text(self) -> str:
        return "\n\n".join(page.text for page in self.pages)
