"""Document ingestion: upload, delete, search and reindex.

Orchestrates:
- Text extraction and content fingerprinting
- Duplicate rejection
- Chunking
- Vector index upserts and deletes

The vector index is optional: when it is down, uploads and deletes still
succeed and report ``OperationStatus.DEGRADED``.
"""
import hashlib
import uuid
from typing import List, Dict, Any, Optional
import structlog

from docchat import config, db, extractor
from docchat.errors import (
    DocumentNotFoundError,
    DuplicateContentError,
    IndexUnavailableError,
    UnsupportedTypeError,
    UploadRejectedError,
)
from docchat.gateways import VectorIndexGateway
from docchat.models import (
    ChunkMetadata,
    DeleteResult,
    Document,
    OperationStatus,
    SearchOutcome,
    UploadResult,
    chunk_key,
)
from docchat.rag.chunker import TextChunker

logger = structlog.get_logger()


def fingerprint_text(text: str) -> str:
    """SHA-256 hex digest of extracted text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class DocumentService:
    """Upload and delete documents and keep the vector index in step."""

    def __init__(
        self,
        vector_index: VectorIndexGateway,
        chunker: Optional[TextChunker] = None,
        max_upload_bytes: int = None,
    ):
        """Initialize the document service.

        Args:
            vector_index: Vector index gateway
            chunker: Text chunker (default chunk size/overlap from config)
            max_upload_bytes: Upload size limit (default from config)
        """
        self.vector_index = vector_index
        self.chunker = chunker or TextChunker()
        self.max_upload_bytes = max_upload_bytes or config.MAX_UPLOAD_BYTES

    def _build_chunks(self, document: Document) -> List[tuple]:
        pieces = self.chunker.split_text(document.content)
        total = len(pieces)
        return [
            (
                chunk_key(document.id, index),
                piece,
                ChunkMetadata(
                    document_id=document.id,
                    filename=document.filename,
                    media_type=document.media_type,
                    sequence_index=index,
                    total_chunks=total,
                    fingerprint=document.fingerprint,
                ),
            )
            for index, piece in enumerate(pieces)
        ]

    async def _index_chunks(self, document: Document, chunks: List[tuple]) -> UploadResult:
        result = UploadResult(document_id=document.id, chunk_count=len(chunks))
        if not chunks:
            return result

        try:
            await self.vector_index.upsert_many(chunks)
        except IndexUnavailableError as e:
            logger.warning(
                "document_indexing_degraded",
                document_id=document.id,
                chunk_count=len(chunks),
                error=e.message,
            )
            result.indexing = OperationStatus.DEGRADED
            result.indexing_error = e.message

        return result

    async def upload_document(
        self, file_bytes: bytes, filename: str, media_type: str
    ) -> UploadResult:
        """Store a document and index its chunks.

        Args:
            file_bytes: Raw file content
            filename: Original filename
            media_type: Declared media type

        Returns:
            UploadResult with the new document id, chunk count and indexing status

        Raises:
            UploadRejectedError: Empty or oversized file
            DuplicateContentError: Content fingerprint already stored (nothing is written)
        """
        if not file_bytes:
            raise UploadRejectedError("Uploaded file is empty")
        if len(file_bytes) > self.max_upload_bytes:
            raise UploadRejectedError(
                f"File exceeds the {self.max_upload_bytes} byte upload limit"
            )

        resolved_type = extractor.resolve_media_type(media_type, filename)

        try:
            content = extractor.extract(file_bytes, resolved_type, filename)
        except UnsupportedTypeError as e:
            logger.warning("document_stored_without_content", filename=filename, reason=e.message)
            content = None

        # Blank text (e.g. scanned PDFs) would make every such file a duplicate.
        if content and content.strip():
            fingerprint = fingerprint_text(content)
        else:
            fingerprint = fingerprint_bytes(file_bytes)

        existing = db.get_document_by_fingerprint(fingerprint)
        if existing is not None:
            logger.info(
                "duplicate_upload_rejected",
                filename=filename,
                existing_document_id=existing.id,
            )
            raise DuplicateContentError(
                f"A file with identical content already exists ({existing.filename})",
                existing_id=existing.id,
            )

        document = Document(
            id=uuid.uuid4().hex,
            filename=filename,
            media_type=resolved_type,
            size=len(file_bytes),
            fingerprint=fingerprint,
            content=content,
        )

        chunks = self._build_chunks(document) if content is not None else []

        db.insert_document(document)
        result = await self._index_chunks(document, chunks)

        logger.info(
            "document_uploaded",
            document_id=document.id,
            filename=filename,
            media_type=resolved_type,
            chunk_count=result.chunk_count,
            indexing=result.indexing.value,
        )

        return result

    async def delete_document(self, document_id: str) -> DeleteResult:
        """Delete a document and every chunk derived from it.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = db.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")

        result = DeleteResult(document_id=document_id)
        try:
            result.removed_chunks = await self.vector_index.delete_by_document_id(document_id)
        except IndexUnavailableError as e:
            logger.warning("document_chunk_delete_degraded", document_id=document_id, error=e.message)
            result.indexing = OperationStatus.DEGRADED
            result.indexing_error = e.message

        db.delete_document(document_id)

        logger.info(
            "document_deleted",
            document_id=document_id,
            removed_chunks=result.removed_chunks,
            indexing=result.indexing.value,
        )
        return result

    async def search_documents(self, query_text: str, limit: int = None) -> SearchOutcome:
        """Similarity search enriched with the owning document's metadata.

        Returns:
            SearchOutcome; an empty collection yields no results and SUCCESS
        """
        limit = limit or config.SEARCH_LIMIT

        try:
            hits = await self.vector_index.query(query_text, limit)
        except IndexUnavailableError as e:
            logger.warning("document_search_degraded", error=e.message)
            return SearchOutcome(status=OperationStatus.DEGRADED, error=e.message)

        documents = db.get_documents_by_ids(
            sorted({hit.document_id for hit in hits if hit.document_id})
        )

        results: List[Dict[str, Any]] = []
        for hit in hits:
            entry = hit.to_dict()
            document = documents.get(hit.document_id)
            entry["document"] = document.to_dict() if document else None
            results.append(entry)

        logger.info("documents_searched", query_length=len(query_text), results=len(results))
        return SearchOutcome(results=results)

    async def reindex_all(self, progress_callback=None) -> Dict[str, Any]:
        """Clear the vector index and re-chunk every stored document.

        Args:
            progress_callback: Optional callback(current, total, document)

        Raises:
            IndexUnavailableError: If the index cannot be rebuilt
        """
        logger.info("reindex_started")

        await self.vector_index.clear()
        documents = db.list_documents_with_content()

        stats = {"documents_processed": 0, "documents_failed": 0, "chunks_created": 0}

        for position, document in enumerate(documents, 1):
            if progress_callback:
                progress_callback(position, len(documents), document)

            chunks = self._build_chunks(document)
            try:
                await self.vector_index.upsert_many(chunks)
            except IndexUnavailableError as e:
                logger.error("document_reindex_failed", document_id=document.id, error=e.message)
                stats["documents_failed"] += 1
                continue

            stats["documents_processed"] += 1
            stats["chunks_created"] += len(chunks)

        logger.info("reindex_completed", **stats)
        return stats
