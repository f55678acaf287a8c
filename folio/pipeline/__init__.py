"""Background parsing and embedding pipelines."""

from folio.pipeline.embedding import (
    EmbeddingPipeline,
    InFlightRegistry,
    StartEmbeddingOutcome,
    StopEmbeddingOutcome,
    compose_embedding_input,
)
from folio.pipeline.parsing import (
    DocumentAccessDeniedError,
    DocumentNotFoundError,
    DocumentStatusView,
    ParseRequestError,
    ParsingOrchestrator,
)
from folio.pipeline.tasks import BackgroundTaskRunner
from folio.pipeline.watchdog import EmbeddingWatchdog

__all__ = [
    "BackgroundTaskRunner",
    "DocumentAccessDeniedError",
    "DocumentNotFoundError",
    "DocumentStatusView",
    "EmbeddingPipeline",
    "EmbeddingWatchdog",
    "InFlightRegistry",
    "ParseRequestError",
    "ParsingOrchestrator",
    "StartEmbeddingOutcome",
    "StopEmbeddingOutcome",
    "compose_embedding_input",
]
