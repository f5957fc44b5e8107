"""Tests for document upload, delete, search and reindex."""
import asyncio

import pytest

from docchat import db
from docchat.errors import DocumentNotFoundError, DuplicateContentError, UploadRejectedError
from docchat.models import OperationStatus
from docchat.rag.chunker import TextChunker
from docchat.rag.ingest import DocumentService, fingerprint_text
from docchat.rag.store_faiss import FAISSVectorStore
from docchat.rag.vector_index import VectorIndex

LAUNCH_NOTE = b"The launch is scheduled for March. The budget is fixed at ten thousand."
HIRING_NOTE = b"Hiring two engineers in spring. Interviews start next week."


@pytest.fixture
def service(temp_db, vector_index):
    return DocumentService(vector_index)


def _upload(service, data, filename="notes.txt", media_type="text/plain"):
    return asyncio.run(service.upload_document(data, filename, media_type))


def test_upload_indexes_chunks(service, vector_index):
    """Test that an uploaded text file is stored and its chunks indexed."""
    result = _upload(service, LAUNCH_NOTE)

    assert result.chunk_count == 1
    assert result.indexing is OperationStatus.SUCCESS
    assert list(vector_index.chunks) == [f"{result.document_id}_0"]

    text, metadata = vector_index.chunks[f"{result.document_id}_0"]
    assert text == LAUNCH_NOTE.decode()
    assert metadata.document_id == result.document_id
    assert metadata.filename == "notes.txt"
    assert metadata.fingerprint == fingerprint_text(LAUNCH_NOTE.decode())

    document = db.get_document(result.document_id)
    assert document.content == LAUNCH_NOTE.decode()
    assert document.size == len(LAUNCH_NOTE)


def test_chunk_metadata_is_sequenced(temp_db, vector_index):
    """Test that multi-chunk documents get contiguous keys and a shared total."""
    service = DocumentService(vector_index, chunker=TextChunker(chunk_size=40, chunk_overlap=10))

    result = _upload(service, LAUNCH_NOTE + b"\n\n" + HIRING_NOTE)

    assert result.chunk_count > 2
    metadata = sorted((m for _, m in vector_index.chunks.values()), key=lambda m: m.sequence_index)
    assert [m.sequence_index for m in metadata] == list(range(result.chunk_count))
    assert {m.total_chunks for m in metadata} == {result.chunk_count}
    assert {m.key for m in metadata} == set(vector_index.chunks)


def test_duplicate_upload_is_rejected(service, vector_index):
    """Test that identical content is refused without touching the index."""
    first = _upload(service, LAUNCH_NOTE, filename="launch.txt")
    before = dict(vector_index.chunks)

    with pytest.raises(DuplicateContentError) as excinfo:
        _upload(service, LAUNCH_NOTE, filename="copy-of-launch.md", media_type="")

    assert excinfo.value.existing_id == first.document_id
    assert vector_index.chunks == before
    assert [d.id for d in db.list_documents()] == [first.document_id]


def test_unsupported_type_is_stored_without_content(service, vector_index):
    """Test that files without an extractor are kept but not indexed."""
    result = _upload(service, b"\x89PNG\r\n\x1a\nbinary", filename="logo.png", media_type="image/png")

    assert result.chunk_count == 0
    assert vector_index.chunks == {}
    document = db.get_document(result.document_id)
    assert document.content is None
    assert document.to_dict()["hasContent"] is False


def test_unreadable_file_is_stored_without_content(service, vector_index):
    """Test that a corrupt PDF is treated like an unsupported type."""
    result = _upload(service, b"not really a pdf", filename="broken.pdf", media_type="application/pdf")

    assert result.chunk_count == 0
    assert db.get_document(result.document_id).content is None


def test_index_outage_degrades_upload(service, vector_index):
    """Test that uploads succeed with a degraded status when the index is down."""
    vector_index.available = False

    result = _upload(service, LAUNCH_NOTE)

    assert result.indexing is OperationStatus.DEGRADED
    assert result.indexing_error
    assert db.get_document(result.document_id) is not None


def test_empty_and_oversized_uploads(temp_db, vector_index):
    """Test that empty or oversized files are rejected before anything is stored."""
    service = DocumentService(vector_index, max_upload_bytes=16)

    with pytest.raises(UploadRejectedError):
        _upload(service, b"")
    with pytest.raises(UploadRejectedError):
        _upload(service, b"x" * 17)

    assert db.list_documents() == []


def test_delete_removes_only_that_documents_chunks(temp_db, vector_index):
    """Test that delete cascades to chunks of the deleted document only."""
    service = DocumentService(vector_index, chunker=TextChunker(chunk_size=40, chunk_overlap=10))
    launch = _upload(service, LAUNCH_NOTE)
    hiring = _upload(service, HIRING_NOTE)

    result = asyncio.run(service.delete_document(launch.document_id))

    assert result.removed_chunks == launch.chunk_count
    assert result.indexing is OperationStatus.SUCCESS
    assert db.get_document(launch.document_id) is None
    assert {m.document_id for _, m in vector_index.chunks.values()} == {hiring.document_id}

    hits = asyncio.run(vector_index.query("launch budget March", 10))
    assert all(hit.document_id != launch.document_id for hit in hits)


def test_delete_unknown_document(service):
    """Test that deleting a missing document raises DocumentNotFoundError."""
    with pytest.raises(DocumentNotFoundError):
        asyncio.run(service.delete_document("missing"))


def test_delete_during_index_outage(service, vector_index):
    """Test that the document is removed even when its chunks cannot be."""
    result = _upload(service, LAUNCH_NOTE)
    vector_index.available = False

    deleted = asyncio.run(service.delete_document(result.document_id))

    assert deleted.indexing is OperationStatus.DEGRADED
    assert db.get_document(result.document_id) is None


def test_search_empty_collection(service):
    """Test that searching with nothing indexed returns no results."""
    outcome = asyncio.run(service.search_documents("anything"))

    assert outcome.results == []
    assert outcome.status is OperationStatus.SUCCESS


def test_search_attaches_document(service):
    """Test that search hits carry the owning document's metadata."""
    launch = _upload(service, LAUNCH_NOTE, filename="launch.txt")
    _upload(service, HIRING_NOTE, filename="hiring.txt")

    outcome = asyncio.run(service.search_documents("When is the launch?", limit=1))

    assert len(outcome.results) == 1
    hit = outcome.results[0]
    assert hit["id"] == f"{launch.document_id}_0"
    assert hit["document"]["filename"] == "launch.txt"
    assert "content" not in hit["document"]


def test_search_during_index_outage(service, vector_index):
    """Test that search degrades to an empty result when the index is down."""
    vector_index.available = False

    outcome = asyncio.run(service.search_documents("anything"))

    assert outcome.status is OperationStatus.DEGRADED
    assert outcome.results == []


def test_reindex_rebuilds_from_stored_documents(service, vector_index):
    """Test that reindexing re-chunks every document with text."""
    launch = _upload(service, LAUNCH_NOTE)
    hiring = _upload(service, HIRING_NOTE)
    _upload(service, b"\x00\x01", filename="blob.bin", media_type="application/octet-stream")
    vector_index.chunks.clear()

    seen = []
    stats = asyncio.run(service.reindex_all(lambda current, total, doc: seen.append((current, total))))

    assert stats == {"documents_processed": 2, "documents_failed": 0, "chunks_created": 2}
    assert seen == [(1, 2), (2, 2)]
    assert set(vector_index.chunks) == {f"{launch.document_id}_0", f"{hiring.document_id}_0"}


def test_delete_during_outage_never_resurfaces_chunks(temp_db, embedder, tmp_path):
    """Test that a document deleted while the embedder is down stays out of later searches."""
    def restart():
        index = VectorIndex(FAISSVectorStore(embedder=embedder, index_dir=tmp_path / "index"))
        return index, DocumentService(index)

    _, service = restart()
    upload = _upload(service, LAUNCH_NOTE)
    _upload(service, HIRING_NOTE)

    embedder.available = False
    _, service = restart()
    deleted = asyncio.run(service.delete_document(upload.document_id))

    assert deleted.indexing is OperationStatus.DEGRADED
    assert db.get_document(upload.document_id) is None
    assert db.get_vector_ids_for_document(upload.document_id) == []

    embedder.available = True
    index, service = restart()
    hits = asyncio.run(index.query("launch March", 5))
    outcome = asyncio.run(service.search_documents("The launch is scheduled for March.", 5))

    assert all(hit.document_id != upload.document_id for hit in hits)
    assert all(r["metadata"]["document_id"] != upload.document_id for r in outcome.results)
    assert index.store.vector_count == 1
