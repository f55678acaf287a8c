"""MongoDB connection, index management and repository implementations."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from folio.models.document import Document, EmbeddingProgress, EmbeddingStatus, Page, ParsingStatus
from folio.models.embedding import VectorRecord

DOCUMENTS_COLLECTION = "documents"
EMBEDDINGS_COLLECTION = "embeddings"

logger = logging.getLogger(__name__)


async def create_mongo_client(mongodb_uri: str) -> AsyncIOMotorClient:
    """Create and validate an async MongoDB client connection."""
    try:
        client = AsyncIOMotorClient(mongodb_uri, tz_aware=True)
        await client.admin.command("ping")
        return client
    except PyMongoError as exc:
        raise RuntimeError(f"Failed to connect to MongoDB: {exc}") from exc


def get_database(client: AsyncIOMotorClient, database_name: str) -> AsyncIOMotorDatabase:
    """Return configured MongoDB database handle."""
    return client[database_name]


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create required indexes, including the embedding uniqueness constraint."""
    try:
        await db[DOCUMENTS_COLLECTION].create_index([("document_id", ASCENDING)], unique=True, name="uq_document_id")
        await db[DOCUMENTS_COLLECTION].create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_document_user_created",
        )
        await db[DOCUMENTS_COLLECTION].create_index(
            [("embedding_status", ASCENDING), ("embedding_updated_at", ASCENDING)],
            name="idx_document_embedding_status",
        )

        await db[EMBEDDINGS_COLLECTION].create_index(
            [("document_id", ASCENDING), ("page_number", ASCENDING), ("chunk_index", ASCENDING)],
            unique=True,
            name="uq_embedding_page_chunk",
        )
        await db[EMBEDDINGS_COLLECTION].create_index([("user_id", ASCENDING)], name="idx_embedding_user_id")
    except PyMongoError as exc:
        raise RuntimeError(f"Failed to ensure MongoDB indexes: {exc}") from exc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _strip_mongo_id(document: dict[str, Any] | None) -> dict[str, Any] | None:
    if document is None:
        return None
    cleaned = dict(document)
    cleaned.pop("_id", None)
    return cleaned


def _metadata_fields(updates: dict[str, Any] | None) -> dict[str, Any]:
    return {f"metadata.{key}": value for key, value in (updates or {}).items()}


_SEARCH_FIELDS = ("file_name", "original_text", "metadata.book_name", "metadata.author_name", "metadata.category")


def _visibility_query(user_id: str, include_verified: bool, search: str | None) -> dict[str, Any]:
    """Own documents, plus every verified one when ``include_verified``; optionally narrowed by search."""
    scope: dict[str, Any] = (
        {"$or": [{"is_verified": True}, {"user_id": user_id}]} if include_verified else {"user_id": user_id}
    )
    term = (search or "").strip()
    if not term:
        return scope
    pattern = {"$regex": re.escape(term), "$options": "i"}
    return {"$and": [scope, {"$or": [{field: pattern} for field in _SEARCH_FIELDS]}]}


class MongoDocumentRepository:
    """MongoDB-backed document repository."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[DOCUMENTS_COLLECTION]

    async def save(self, document: Document) -> str:
        document.updated_at = _utc_now()
        payload = document.model_dump()
        await self.collection.replace_one({"document_id": document.document_id}, payload, upsert=True)
        return document.document_id

    async def get(self, document_id: str) -> Document | None:
        document = await self.collection.find_one({"document_id": document_id})
        cleaned = _strip_mongo_id(document)
        return Document.model_validate(cleaned) if cleaned else None

    async def mark_parsing_completed(
        self,
        document_id: str,
        *,
        original_text: str,
        pages_data: list[Page],
        tables: list[Any],
        images: list[Any],
        metadata_updates: dict[str, Any],
    ) -> None:
        await self.collection.update_one(
            {"document_id": document_id},
            {
                "$set": {
                    "original_text": original_text,
                    "pages": len(pages_data),
                    "pages_data": [page.model_dump() for page in pages_data],
                    "tables": tables,
                    "images": images,
                    "parsing_status": ParsingStatus.COMPLETED.value,
                    "metadata.error": None,
                    "updated_at": _utc_now(),
                    **_metadata_fields(metadata_updates),
                }
            },
        )

    async def mark_parsing_failed(
        self,
        document_id: str,
        error: str,
        metadata_updates: dict[str, Any] | None = None,
    ) -> None:
        await self.collection.update_one(
            {"document_id": document_id},
            {
                "$set": {
                    "parsing_status": ParsingStatus.FAILED.value,
                    "metadata.error": error,
                    "updated_at": _utc_now(),
                    **_metadata_fields(metadata_updates),
                }
            },
        )

    async def update_embedding_state(
        self,
        document_id: str,
        *,
        status: EmbeddingStatus | None = None,
        progress: EmbeddingProgress | None = None,
        metadata_updates: dict[str, Any] | None = None,
    ) -> None:
        now = _utc_now()
        fields: dict[str, Any] = {"updated_at": now, "embedding_updated_at": now}
        if status is not None:
            fields["embedding_status"] = status.value if isinstance(status, EmbeddingStatus) else str(status)
        if progress is not None:
            fields["embedding_progress"] = progress.model_dump()
        fields.update(_metadata_fields(metadata_updates))
        await self.collection.update_one({"document_id": document_id}, {"$set": fields})

    async def find_stale_embeddings(self, older_than: datetime, limit: int = 100) -> list[Document]:
        query = {
            "embedding_status": EmbeddingStatus.PROCESSING.value,
            "$or": [
                {"embedding_updated_at": {"$lt": older_than}},
                {"embedding_updated_at": None},
            ],
        }
        cursor = self.collection.find(query).sort("updated_at", ASCENDING).limit(limit)
        items: list[Document] = []
        async for document in cursor:
            cleaned = _strip_mongo_id(document)
            if cleaned:
                items.append(Document.model_validate(cleaned))
        return items

    async def list_recent(
        self,
        user_id: str,
        *,
        include_verified: bool = False,
        search: str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]:
        """Newest first, without per-page bodies."""
        cursor = (
            self.collection.find(_visibility_query(user_id, include_verified, search), {"pages_data": 0})
            .sort("created_at", DESCENDING)
            .skip(offset)
            .limit(limit)
        )
        items: list[Document] = []
        async for document in cursor:
            cleaned = _strip_mongo_id(document)
            if cleaned:
                items.append(Document.model_validate(cleaned))
        return items

    async def count(self, user_id: str, *, include_verified: bool = False, search: str | None = None) -> int:
        return int(await self.collection.count_documents(_visibility_query(user_id, include_verified, search)))

    async def mark_verified(self, document_id: str) -> None:
        await self.collection.update_one(
            {"document_id": document_id},
            {"$set": {"is_verified": True, "updated_at": _utc_now()}},
        )

    async def delete(self, document_id: str) -> bool:
        result = await self.collection.delete_one({"document_id": document_id})
        return result.deleted_count > 0


class MongoVectorRepository:
    """MongoDB-backed vector record store with a per-page uniqueness constraint."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[EMBEDDINGS_COLLECTION]

    async def insert(self, record: VectorRecord) -> bool:
        """Insert one record; return False when the (document, page, chunk) triple already exists."""
        try:
            await self.collection.insert_one(record.model_dump())
        except DuplicateKeyError:
            logger.debug(
                "Vector record already present: document_id=%s page=%s chunk=%s",
                record.document_id,
                record.page_number,
                record.chunk_index,
            )
            return False
        return True

    async def existing_page_numbers(self, document_id: str, chunk_index: int = 0) -> set[int]:
        cursor = self.collection.find(
            {"document_id": document_id, "chunk_index": chunk_index},
            {"page_number": 1, "_id": 0},
        )
        pages: set[int] = set()
        async for row in cursor:
            if row.get("page_number") is not None:
                pages.add(int(row["page_number"]))
        return pages

    async def count(self, document_id: str) -> int:
        return int(await self.collection.count_documents({"document_id": document_id}))

    async def delete_document(self, document_id: str) -> int:
        result = await self.collection.delete_many({"document_id": document_id})
        return int(result.deleted_count)
