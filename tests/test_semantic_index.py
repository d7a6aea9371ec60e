"""Tests for the Tier 3 Semantic Index."""

from datetime import timedelta

import pytest

from tests.fixtures.mocks import FakeEmbeddingProvider
from tiered_memory.config.settings import MemorySettings
from tiered_memory.database.models import utcnow
from tiered_memory.memory.tier3_semantic import (
    NOMINAL_SIMILARITY,
    EmbeddingBackend,
    SemanticIndex,
    document_id,
)


@pytest.fixture
def provider():
    return FakeEmbeddingProvider({
        "cats": [1.0, 0.0, 0.0],
        "kittens": [0.9, 0.1, 0.0],
        "dogs": [0.0, 1.0, 0.0],
        "feline": [1.0, 0.0, 0.0],
    })


@pytest.fixture
def embedding_index(provider):
    return SemanticIndex(backend=EmbeddingBackend(provider), min_similarity=0.7)


class TestDocumentId:
    """Test content addressing."""

    def test_deterministic(self):
        assert document_id("hello", {"a": 1}) == document_id("hello", {"a": 1})
        assert len(document_id("hello")) == 16

    def test_metadata_changes_id(self):
        assert document_id("hello", {"a": 1}) != document_id("hello", {"a": 2})
        assert document_id("hello", {"a": 1, "b": 2}) == document_id("hello", {"b": 2, "a": 1})


class TestWrites:
    """Test adding, updating and deleting documents."""

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self, semantic_index):
        first = await semantic_index.add_document("remember the milk", {"user_id": "alice"})
        second = await semantic_index.add_document("remember the milk", {"user_id": "alice"})

        assert first == second
        assert await semantic_index.count() == 1

        other = await semantic_index.add_document("remember the milk", {"user_id": "bob"})
        assert other != first
        assert (await semantic_index.status())["total_documents"] == 2

    @pytest.mark.asyncio
    async def test_add_stamps_metadata(self, semantic_index):
        doc_id = await semantic_index.add_document("hello world", {"type": "conversation"})

        doc = await semantic_index.get_document(doc_id)
        assert doc.metadata["type"] == "conversation"
        assert doc.metadata["content_length"] == len("hello world")
        assert "added_at" in doc.metadata

    @pytest.mark.asyncio
    async def test_empty_content_rejected(self, semantic_index):
        with pytest.raises(ValueError):
            await semantic_index.add_document("   ")

    @pytest.mark.asyncio
    async def test_readd_does_not_reembed(self, embedding_index, provider):
        await embedding_index.add_document("cats")
        await embedding_index.add_document("cats")
        assert provider.calls == ["cats"]

    @pytest.mark.asyncio
    async def test_add_bulk_skips_empty(self, semantic_index):
        ids = await semantic_index.add_bulk_documents([
            {"content": "alpha"},
            {"content": ""},
            {"content": "beta", "metadata": {"tag": "b"}},
            {"content": "alpha"},
        ])

        assert len(ids) == 3
        assert ids[0] == ids[2]
        assert await semantic_index.count() == 2

    @pytest.mark.asyncio
    async def test_update_keeps_id(self, embedding_index, provider):
        doc_id = await embedding_index.add_document("dogs", {"tag": "pets"})

        assert await embedding_index.update_document(doc_id, content="cats", metadata={"extra": True}) is True

        doc = await embedding_index.get_document(doc_id)
        assert doc.id == doc_id
        assert doc.content == "cats"
        assert doc.embedding == [1.0, 0.0, 0.0]
        assert doc.metadata["tag"] == "pets"
        assert doc.metadata["extra"] is True
        assert "updated_at" in doc.metadata

    @pytest.mark.asyncio
    async def test_update_and_delete_unknown(self, semantic_index):
        assert await semantic_index.update_document("missing", content="x") is False
        assert await semantic_index.delete_document("missing") is False

    @pytest.mark.asyncio
    async def test_delete(self, semantic_index):
        doc_id = await semantic_index.add_document("to be removed")
        assert await semantic_index.delete_document(doc_id) is True
        assert await semantic_index.get_document(doc_id) is None

    @pytest.mark.asyncio
    async def test_cleanup_by_age(self, semantic_index):
        old_id = await semantic_index.add_document("old news")
        await semantic_index.add_document("fresh news")
        old = await semantic_index.get_document(old_id)
        old.metadata["added_at"] = (utcnow() - timedelta(days=400)).isoformat()

        assert await semantic_index.cleanup(max_age_days=365) == 1
        assert await semantic_index.get_document(old_id) is None
        assert await semantic_index.count() == 1


class TestSubstringSearch:
    """Test retrieval without an embedding provider."""

    @pytest.mark.asyncio
    async def test_substring_mode(self, semantic_index):
        await semantic_index.add_document("foobar")
        await semantic_index.add_document("baz")

        results = await semantic_index.search("foo")

        assert semantic_index.mode == "substring"
        assert [r.content for r in results] == ["foobar"]
        assert results[0].similarity == NOMINAL_SIMILARITY
        assert results[0].distance == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_case_insensitive_and_limit(self, semantic_index):
        for i in range(4):
            await semantic_index.add_document(f"Meeting number {i}")

        results = await semantic_index.search("MEETING", limit=2)
        assert [r.content for r in results] == ["Meeting number 0", "Meeting number 1"]

    @pytest.mark.asyncio
    async def test_empty_query(self, semantic_index):
        await semantic_index.add_document("anything")
        assert await semantic_index.search("") == []
        assert await semantic_index.search("   ") == []

    @pytest.mark.asyncio
    async def test_filter_metadata(self, semantic_index):
        await semantic_index.add_document("shared note", {"user_id": "alice"})
        await semantic_index.add_document("shared note too", {"user_id": "bob"})

        results = await semantic_index.search("shared", filter_metadata={"user_id": "bob"})
        assert [r.content for r in results] == ["shared note too"]

    @pytest.mark.asyncio
    async def test_search_similar_excludes_self(self, semantic_index):
        doc_id = await semantic_index.add_document("apple pie")
        await semantic_index.add_document("apple pie recipe")
        await semantic_index.add_document("banana bread")

        results = await semantic_index.search_similar(doc_id, limit=5)
        assert [r.content for r in results] == ["apple pie recipe"]
        assert await semantic_index.search_similar("missing") == []


class TestEmbeddingSearch:
    """Test retrieval with an embedding provider."""

    @pytest.mark.asyncio
    async def test_ranked_by_similarity(self, embedding_index):
        await embedding_index.add_bulk_documents([
            {"content": "dogs"},
            {"content": "kittens"},
            {"content": "cats"},
        ])

        results = await embedding_index.search("feline", limit=5)

        assert embedding_index.mode == "embedding"
        assert [r.content for r in results] == ["cats", "kittens"]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].distance == pytest.approx(0.0)
        assert results[1].distance == pytest.approx(1.0 - results[1].similarity)

    @pytest.mark.asyncio
    async def test_min_similarity_override(self, embedding_index):
        await embedding_index.add_document("dogs")
        await embedding_index.add_document("cats")

        results = await embedding_index.search("feline", min_similarity=0.0)
        assert [r.content for r in results] == ["cats", "dogs"]

    @pytest.mark.asyncio
    async def test_provider_failure_returns_empty(self, embedding_index, provider):
        await embedding_index.add_document("cats")
        provider.set_error(RuntimeError("provider down"))

        assert await embedding_index.search("feline") == []

    @pytest.mark.asyncio
    async def test_status_and_close(self, embedding_index, provider):
        await embedding_index.add_document("cats")

        status = await embedding_index.status()
        assert status["type"] == "rag"
        assert status["total_documents"] == 1
        assert status["embedding_model"] == "fake-embedding"
        assert status["storage"] == "in-memory"

        await embedding_index.close()
        assert provider.closed is True

    def test_from_settings_selects_mode(self, provider):
        config = MemorySettings(enable_embeddings=False, rag_min_similarity=0.5)

        assert SemanticIndex.from_settings(config).mode == "substring"
        index = SemanticIndex.from_settings(config, provider)
        assert index.mode == "embedding"
        assert index.min_similarity == 0.5


class TestPersistence:
    """Test the JSON-backed document set."""

    @pytest.mark.asyncio
    async def test_reload_from_disk(self, tmp_path):
        path = tmp_path / "rag" / "documents.json"
        index = SemanticIndex(storage_path=path)
        doc_id = await index.add_document("persist me", {"user_id": "alice"})

        reloaded = SemanticIndex(storage_path=path)

        assert await reloaded.count() == 1
        assert (await reloaded.get_document(doc_id)).metadata["user_id"] == "alice"
        assert [r.id for r in await reloaded.search("persist")] == [doc_id]

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "documents.json"
        path.write_text("{broken", encoding="utf-8")

        index = SemanticIndex(storage_path=path)
        assert index._documents == {}

    @pytest.mark.asyncio
    async def test_write_failure_keeps_operations_working(self, tmp_path):
        """An unwritable storage path is logged; mutations still report their result."""
        blocker = tmp_path / "not_a_directory"
        blocker.write_text("", encoding="utf-8")
        index = SemanticIndex(storage_path=blocker / "documents.json")

        doc_id = await index.add_document("hello world")
        assert await index.count() == 1
        assert await index.add_bulk_documents([{"content": "second"}]) != []
        assert await index.update_document(doc_id, metadata={"tag": "x"}) is True

        old = await index.get_document(doc_id)
        old.metadata["added_at"] = (utcnow() - timedelta(days=400)).isoformat()
        assert await index.cleanup(max_age_days=365) == 1

        [other] = [doc.id for doc in index._documents.values()]
        assert await index.delete_document(other) is True
        assert await index.count() == 0
