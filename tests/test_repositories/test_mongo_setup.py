"""Tests for MongoDB connection/bootstrap helpers."""

from __future__ import annotations

from typing import Any

import pytest

from folio.repositories.mongo import DOCUMENTS_COLLECTION, EMBEDDINGS_COLLECTION, ensure_indexes


class _FakeCollection:
    def __init__(self) -> None:
        self.index_calls: list[dict[str, Any]] = []

    async def create_index(self, keys: list[tuple[str, int]], **kwargs: Any) -> None:
        self.index_calls.append({"keys": keys, **kwargs})


class _FakeDatabase:
    def __init__(self) -> None:
        self.collections = {
            DOCUMENTS_COLLECTION: _FakeCollection(),
            EMBEDDINGS_COLLECTION: _FakeCollection(),
        }

    def __getitem__(self, name: str) -> _FakeCollection:
        return self.collections[name]


@pytest.mark.asyncio
async def test_ensure_indexes_creates_expected_indexes() -> None:
    db = _FakeDatabase()
    await ensure_indexes(db)  # type: ignore[arg-type]

    document_index_names = {call["name"] for call in db.collections[DOCUMENTS_COLLECTION].index_calls}
    embedding_calls = {call["name"]: call for call in db.collections[EMBEDDINGS_COLLECTION].index_calls}

    assert document_index_names == {
        "uq_document_id",
        "idx_document_user_created",
        "idx_document_embedding_status",
    }
    assert set(embedding_calls) == {"uq_embedding_page_chunk", "idx_embedding_user_id"}
    unique = embedding_calls["uq_embedding_page_chunk"]
    assert unique["unique"] is True
    assert [key for key, _ in unique["keys"]] == ["document_id", "page_number", "chunk_index"]
