"""Repository interfaces and concrete data access helpers."""

from folio.repositories.base import DocumentRepository, VectorRepository
from folio.repositories.mongo import (
    MongoDocumentRepository,
    MongoVectorRepository,
    create_mongo_client,
    ensure_indexes,
    get_database,
)

__all__ = [
    "DocumentRepository",
    "MongoDocumentRepository",
    "MongoVectorRepository",
    "VectorRepository",
    "create_mongo_client",
    "ensure_indexes",
    "get_database",
]
