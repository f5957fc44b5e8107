"""Tests for the FAISS-backed vector index."""
import asyncio

import pytest

from docchat import db
from docchat.errors import IndexUnavailableError
from docchat.gateways import VectorIndexGateway
from docchat.rag.store_faiss import FAISSVectorStore
from docchat.rag.vector_index import VectorIndex

CHUNKS = {
    "doc1": ["The launch is scheduled for March.", "The budget is fixed at ten thousand."],
    "doc2": ["Hiring two engineers in spring.", "Interviews start next week."],
}


def _make_index(embedder, tmp_path):
    return VectorIndex(FAISSVectorStore(embedder=embedder, index_dir=tmp_path / "index"))


@pytest.fixture
def index(temp_db, embedder, tmp_path):
    return _make_index(embedder, tmp_path)


def _load(index, sample_metadata):
    items = []
    for document_id, texts in CHUNKS.items():
        for position, text in enumerate(texts):
            metadata = sample_metadata(document_id, sequence_index=position, total=len(texts))
            items.append((metadata.key, text, metadata))
    asyncio.run(index.upsert_many(items))


def test_query_on_empty_index(index):
    """Test that an empty collection returns no hits."""
    assert asyncio.run(index.query("anything", 5)) == []


def test_query_ranks_best_match_first(index, sample_metadata):
    """Test that an exact chunk text comes back first with similarity close to 1."""
    _load(index, sample_metadata)

    results = asyncio.run(index.query("Interviews start next week.", 3))

    assert len(results) == 3
    assert results[0].key == "doc2_1"
    assert results[0].content == "Interviews start next week."
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert results[0].metadata.document_id == "doc2"
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


def test_query_limit_and_blank_query(index, sample_metadata):
    """Test that limits are honoured and blank queries return nothing."""
    _load(index, sample_metadata)

    assert len(asyncio.run(index.query("budget", 1))) == 1
    assert len(asyncio.run(index.query("budget", 50))) == 4
    assert asyncio.run(index.query("   ", 3)) == []
    assert asyncio.run(index.query("budget", 0)) == []


def test_upsert_replaces_existing_key(index, sample_metadata):
    """Test that upserting a key twice keeps a single, updated chunk."""
    metadata = sample_metadata("doc1")
    asyncio.run(index.upsert(metadata.key, "Old text about cats.", metadata))
    asyncio.run(index.upsert(metadata.key, "New text about dogs.", metadata))

    results = asyncio.run(index.query("New text about dogs.", 5))

    assert [r.content for r in results] == ["New text about dogs."]
    assert index.store.vector_count == 1
    assert db.get_chunk_count() == 1


def test_delete_by_document_id(index, sample_metadata):
    """Test that deleting a document removes exactly its chunks."""
    _load(index, sample_metadata)

    removed = asyncio.run(index.delete_by_document_id("doc1"))
    results = asyncio.run(index.query("The launch is scheduled for March.", 10))

    assert removed == 2
    assert {r.document_id for r in results} == {"doc2"}
    assert index.store.vector_count == 2
    assert asyncio.run(index.delete_by_document_id("doc1")) == 0
    assert asyncio.run(index.delete_by_document_id("never-existed")) == 0


def test_connect_is_lazy_and_idempotent(index, embedder):
    """Test that the embedder is probed once, on first use."""
    assert embedder.calls == 0

    asyncio.run(index.connect_lazy())
    asyncio.run(index.connect_lazy())

    assert embedder.calls == 1
    assert index.connected


def test_unavailable_embedder(index, embedder, sample_metadata):
    """Test that embedder failures surface as IndexUnavailableError and connect is retried."""
    embedder.available = False

    with pytest.raises(IndexUnavailableError):
        asyncio.run(index.query("anything", 3))
    assert not index.connected

    embedder.available = True
    metadata = sample_metadata()
    asyncio.run(index.upsert(metadata.key, "Recovered text.", metadata))
    assert index.connected


def test_index_survives_restart(temp_db, embedder, tmp_path, sample_metadata):
    """Test that a new process loads the persisted index."""
    first = _make_index(embedder, tmp_path)
    _load(first, sample_metadata)

    second = _make_index(embedder, tmp_path)
    results = asyncio.run(second.query("Hiring two engineers in spring.", 1))

    assert [r.key for r in results] == ["doc2_0"]


def test_clear_drops_everything(index, sample_metadata):
    """Test that clear empties both vectors and payloads."""
    _load(index, sample_metadata)

    asyncio.run(index.clear())

    assert index.store.vector_count == 0
    assert db.get_chunk_count() == 0
    assert asyncio.run(index.query("budget", 3)) == []


def test_delete_while_engine_unreachable_drops_payloads(temp_db, embedder, tmp_path, sample_metadata):
    """Test that payloads go at once and orphaned vectors are purged on the next connect."""
    _load(_make_index(embedder, tmp_path), sample_metadata)

    embedder.available = False
    cold = _make_index(embedder, tmp_path)
    with pytest.raises(IndexUnavailableError):
        asyncio.run(cold.delete_by_document_id("doc1"))

    assert db.get_vector_ids_for_document("doc1") == []
    assert db.get_chunk_count() == 2

    embedder.available = True
    warm = _make_index(embedder, tmp_path)
    asyncio.run(warm.connect_lazy())

    assert warm.store.vector_count == 2
    assert sorted(warm.store.vector_ids()) == sorted(db.get_all_vector_ids())
    results = asyncio.run(warm.query("The launch is scheduled for March.", 10))
    assert {r.document_id for r in results} == {"doc2"}


def test_gateway_requires_clear():
    """Test that an index implementation without clear cannot be constructed."""
    class PartialIndex(VectorIndexGateway):
        async def connect_lazy(self):
            pass

        async def upsert(self, key, text, metadata):
            pass

        async def query(self, text, limit):
            return []

        async def delete_by_document_id(self, document_id):
            return 0

    with pytest.raises(TypeError):
        PartialIndex()
