"""folio FastAPI application entry point."""

import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from folio import __version__
from folio.api import documents, embeddings, health
from folio.clients.embeddings import OpenAIEmbeddingClient
from folio.config import Settings, get_settings, load_logging_config
from folio.logging_setup import configure_structured_logging
from folio.parsers.base import ParserBackend
from folio.parsers.llama import LlamaParseBackend
from folio.parsers.mistral import MistralOCRBackend
from folio.pipeline.documents import DocumentLibrary
from folio.pipeline.embedding import EmbeddingPipeline, InFlightRegistry
from folio.pipeline.parsing import ParsingOrchestrator
from folio.pipeline.tasks import BackgroundTaskRunner
from folio.pipeline.watchdog import EmbeddingWatchdog
from folio.repositories.mongo import (
    MongoDocumentRepository,
    MongoVectorRepository,
    create_mongo_client,
    ensure_indexes,
    get_database,
)

logger = logging.getLogger(__name__)


def setup_logging(config_path: Path = Path("config/logging.yaml")) -> None:
    """Load logging configuration from YAML."""
    if config_path.exists():
        logging.config.dictConfig(load_logging_config(config_path))
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    configure_structured_logging()


def build_parser_backends(settings: Settings) -> dict[str, ParserBackend]:
    """Register only the backends whose API key is configured."""
    backends: dict[str, ParserBackend] = {}
    if settings.llama_api_key:
        backends["llama"] = LlamaParseBackend(
            settings.llama_api_key,
            base_url=settings.llama_base_url,
            poll_interval_seconds=settings.llama_poll_interval_seconds,
            max_attempts=settings.llama_max_attempts,
            annotation_page_limit=settings.llama_annotation_page_limit,
            timeout_seconds=settings.http_timeout_seconds,
        )
    if settings.mistral_api_key:
        backends["mistral"] = MistralOCRBackend(
            settings.mistral_api_key,
            base_url=settings.mistral_base_url,
            model=settings.mistral_ocr_model,
            annotation_page_limit=settings.mistral_annotation_page_limit,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return backends


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.logging_config_path)
    logger.info("folio starting up...")
    mongo_client = None
    scheduler: AsyncIOScheduler | None = None
    task_runner = BackgroundTaskRunner()
    backends: dict[str, ParserBackend] = {}
    embedding_client: OpenAIEmbeddingClient | None = None

    try:
        mongo_client = await create_mongo_client(settings.mongodb_uri)
        mongo_db = get_database(mongo_client, settings.mongodb_database)
        await ensure_indexes(mongo_db)
        app.state.mongo_client = mongo_client
        app.state.mongo_db = mongo_db
        app.state.settings = settings
        app.state.upload_dir = str(settings.upload_dir)
        app.state.task_runner = task_runner

        document_repo = MongoDocumentRepository(mongo_db)
        vector_repo = MongoVectorRepository(mongo_db)
        backends = build_parser_backends(settings)
        parsing_orchestrator = ParsingOrchestrator(
            doc_repo=document_repo,
            backends=backends,
            task_runner=task_runner,
            default_parser=settings.default_parser,
        )
        logger.info("Parser backends registered: %s", ", ".join(sorted(backends)) or "none")

        registry = InFlightRegistry()
        embedding_pipeline: EmbeddingPipeline | None = None
        if settings.embedding_api_key:
            embedding_client = OpenAIEmbeddingClient(
                settings.embedding_api_key,
                model=settings.embedding_model,
                base_url=settings.embedding_base_url,
                timeout_seconds=settings.http_timeout_seconds,
            )
            embedding_pipeline = EmbeddingPipeline(
                doc_repo=document_repo,
                vector_repo=vector_repo,
                provider=embedding_client,
                registry=registry,
                task_runner=task_runner,
                batch_size=settings.embedding_batch_size,
            )
        else:
            logger.warning("Embedding API key not configured; embedding endpoints disabled.")

        app.state.document_repo = document_repo
        app.state.vector_repo = vector_repo
        app.state.parsing_orchestrator = parsing_orchestrator
        app.state.embedding_pipeline = embedding_pipeline
        app.state.document_library = DocumentLibrary(document_repo, vector_repo, registry=registry)

        scheduler = AsyncIOScheduler()
        app.state.scheduler = scheduler
        if settings.embedding_watchdog_enabled:
            watchdog = EmbeddingWatchdog(
                document_repo,
                registry,
                stale_after_seconds=settings.embedding_stale_after_seconds,
            )
            app.state.embedding_watchdog = watchdog
            scheduler.add_job(
                watchdog.sweep,
                trigger="interval",
                seconds=settings.embedding_watchdog_interval_seconds,
                id="embedding_watchdog",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            scheduler.start()
            logger.info(
                "Scheduler started (embedding_watchdog_interval=%ss stale_after=%ss).",
                settings.embedding_watchdog_interval_seconds,
                settings.embedding_stale_after_seconds,
            )
        else:
            logger.info("Scheduler initialization skipped because the embedding watchdog is disabled.")

        logger.info("folio ready.")
        yield
    finally:
        logger.info("folio shutting down...")
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        await task_runner.shutdown()
        for backend in backends.values():
            await backend.close()
        if embedding_client is not None:
            await embedding_client.close()
        if mongo_client is not None:
            mongo_client.close()


app = FastAPI(
    title="folio",
    description="Document parsing and per-page embedding service",
    version=__version__,
    lifespan=lifespan,
)
app.include_router(documents.router)
app.include_router(embeddings.router)
app.include_router(health.router)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "version": __version__}
