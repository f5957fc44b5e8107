"""Vector index gateway: the only path from the core to similarity search.

Wraps the FAISS store, the embedder and the chunk payload table behind
``connect_lazy`` / ``upsert`` / ``query`` / ``delete_by_document_id``.
Anything that goes wrong below this line surfaces as
``IndexUnavailableError``.
"""
from typing import List, Optional, Sequence
import structlog

from docchat import db
from docchat.errors import DocChatError, IndexUnavailableError
from docchat.gateways import VectorIndexGateway
from docchat.models import ChunkMetadata, RetrievalResult
from docchat.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


class VectorIndex(VectorIndexGateway):
    """FAISS-backed implementation of the vector index contract."""

    def __init__(self, store: FAISSVectorStore):
        self.store = store
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect_lazy(self) -> None:
        if self._connected:
            return

        try:
            await self.store.init_or_load()
        except (RuntimeError, ValueError, OSError) as e:
            logger.warning("vector_index_connect_failed", error=str(e))
            raise IndexUnavailableError(f"Vector index unavailable: {e}") from e

        await self._purge_orphans()

        self._connected = True
        logger.info("vector_index_connected", vector_count=self.store.vector_count)

    async def _purge_orphans(self) -> None:
        """Remove vectors whose payload row is gone (deleted while the index was down)."""
        known = db.get_all_vector_ids()
        orphans = [vid for vid in self.store.vector_ids() if vid not in known]
        if not orphans:
            return

        self.store.remove_vectors(orphans)
        await self._persist()
        logger.info("orphan_vectors_purged", count=len(orphans))

    async def _embed(self, text: str) -> List[float]:
        try:
            return await self.store.embed(text)
        except DocChatError as e:
            logger.warning("vector_index_embedding_failed", error=e.message)
            raise IndexUnavailableError(f"Embedding backend unavailable: {e.message}") from e

    async def _persist(self) -> None:
        try:
            await self.store.save_index()
        except RuntimeError as e:
            logger.error("vector_index_save_failed", error=str(e))
            raise IndexUnavailableError(str(e)) from e

    async def upsert(self, key: str, text: str, metadata: ChunkMetadata) -> None:
        await self.upsert_many([(key, text, metadata)])

    async def upsert_many(self, items: Sequence[tuple]) -> None:
        """Embed every chunk first, then write payloads and vectors and save once."""
        if not items:
            return

        await self.connect_lazy()

        embeddings = []
        for _, text, _ in items:
            embeddings.append(await self._embed(text))

        vector_ids = []
        for key, text, metadata in items:
            vector_ids.append(db.upsert_chunk(key, text, metadata))

        try:
            self.store.upsert_vectors(vector_ids, embeddings)
        except (RuntimeError, ValueError) as e:
            logger.error("vector_upsert_failed", error=str(e))
            raise IndexUnavailableError(f"Vector upsert failed: {e}") from e

        await self._persist()

        logger.info("chunks_upserted", count=len(items), total_vectors=self.store.vector_count)

    async def query(self, text: str, limit: int) -> List[RetrievalResult]:
        """Return up to ``limit`` chunks ranked by cosine similarity, best first."""
        if not text or not text.strip() or limit <= 0:
            return []

        await self.connect_lazy()

        if self.store.vector_count == 0:
            logger.info("empty_index_no_results")
            return []

        query_embedding = await self._embed(text)

        try:
            vector_ids, distances = self.store.search(query_embedding, top_k=limit)
        except (RuntimeError, ValueError) as e:
            logger.error("vector_search_failed", error=str(e))
            raise IndexUnavailableError(f"Vector search failed: {e}") from e

        payloads = db.get_chunks_by_vector_ids(vector_ids)

        results = []
        for vector_id, distance in zip(vector_ids, distances):
            payload = payloads.get(vector_id)
            if payload is None:
                logger.warning("vector_without_payload", vector_id=vector_id)
                continue

            metadata: Optional[ChunkMetadata] = None
            if payload["metadata"]:
                metadata = ChunkMetadata.from_dict(payload["metadata"])

            results.append(
                RetrievalResult(
                    key=payload["chunk_key"],
                    content=payload["content"],
                    distance=distance,
                    metadata=metadata,
                )
            )

        logger.info(
            "retrieval_completed",
            query_length=len(text),
            results_returned=len(results),
            top_similarity=round(results[0].similarity, 4) if results else None,
        )

        return results

    async def delete_by_document_id(self, document_id: str) -> int:
        """Remove a document's chunks.

        Payloads are dropped before the engine is touched, so the chunks stop
        resolving even if the vectors cannot be removed now. Vectors left
        behind are purged on the next successful connect.
        """
        vector_ids = db.get_vector_ids_for_document(document_id)
        if not vector_ids:
            logger.info("no_chunks_to_delete", document_id=document_id)
            return 0

        removed = db.delete_chunks_for_document(document_id)

        await self.connect_lazy()
        self.store.remove_vectors(vector_ids)
        await self._persist()

        logger.info("document_chunks_deleted", document_id=document_id, count=removed)
        return removed

    async def clear(self) -> None:
        """Drop all vectors and payloads."""
        try:
            await self.store.rebuild_index()
        except (RuntimeError, ValueError, OSError) as e:
            raise IndexUnavailableError(f"Vector index rebuild failed: {e}") from e

        db.clear_all_chunks()
        self._connected = True
