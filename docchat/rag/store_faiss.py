"""FAISS vector store for semantic search.

Handles:
- Runtime embedding dimension detection
- FAISS index initialization and loading
- Vector upsert, removal and cosine search
- Metadata persistence
"""
import json
from pathlib import Path
from typing import List, Tuple, Optional, Dict, Any
import numpy as np
import faiss
import structlog

from docchat import config

logger = structlog.get_logger()

INDEX_TYPE = "IndexIDMap2(IndexFlatIP)"


class FAISSVectorStore:
    """FAISS-based vector store keyed by integer ids.

    Vectors are L2-normalised and compared by inner product, so the score
    FAISS returns is the cosine similarity. ``search`` reports cosine
    distance (``1 - cosine``).
    """

    def __init__(
        self,
        embedder,
        index_dir: Path = None,
        embedding_model: str = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            embedder: Object with an async ``embeddings(prompt, model)`` method
            index_dir: Directory to store index and metadata (default: VECTOR_INDEX_DIR)
            embedding_model: Embedding model name (default from config)
        """
        self.embedder = embedder
        self.index_dir = Path(index_dir or config.VECTOR_INDEX_DIR)
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL

        self.index_path = self.index_dir / "vectors.index"
        self.metadata_path = self.index_dir / "metadata.json"

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self.metadata: Dict[str, Any] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            embedding_model=self.embedding_model,
        )

    async def embed(self, text: str) -> List[float]:
        return await self.embedder.embeddings(prompt=text, model=self.embedding_model)

    async def get_embedding_dimension(self) -> int:
        """Detect embedding dimension by embedding a test string.

        Raises:
            RuntimeError: If embedding fails
        """
        logger.info("detecting_embedding_dimension", model=self.embedding_model)

        try:
            embedding = await self.embed("test")
        except Exception as e:
            logger.error(
                "embedding_dimension_detection_failed",
                model=self.embedding_model,
                error=str(e),
            )
            raise RuntimeError(f"Failed to detect embedding dimension: {e}") from e

        if not embedding:
            raise RuntimeError("Empty embedding returned by embedder")

        dimension = len(embedding)
        logger.info("embedding_dimension_detected", dimension=dimension)
        return dimension

    async def init_new_index(self, dimension: Optional[int] = None) -> None:
        """Initialize a new, empty FAISS index.

        Args:
            dimension: Embedding dimension (auto-detected if not provided)
        """
        if dimension is None:
            dimension = await self.get_embedding_dimension()

        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

        self.metadata = {
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.dimension,
            "index_type": INDEX_TYPE,
            "metric": "cosine",
            "vector_count": 0,
        }

        logger.info("faiss_index_initialized", dimension=self.dimension, index_type=INDEX_TYPE)

    async def load_index(self) -> None:
        """Load existing FAISS index from disk.

        Validates dimension compatibility with current embedding model.

        Raises:
            FileNotFoundError: If index files don't exist
            ValueError: If dimension mismatch detected
            RuntimeError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to load metadata: {e}") from e

        stored_model = self.metadata.get("embedding_model")
        stored_dim = self.metadata.get("embedding_dimension")

        current_dim = await self.get_embedding_dimension()

        if current_dim != stored_dim:
            raise ValueError(
                f"Dimension mismatch: index was built with {stored_model} "
                f"(dim={stored_dim}), but current model {self.embedding_model} "
                f"has dim={current_dim}. Please rebuild the index."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
            self.dimension = stored_dim
        except Exception as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    async def init_or_load(self) -> None:
        """Load the index from disk if present, otherwise create a new one."""
        if self.index_path.exists() and self.metadata_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            await self.load_index()
        else:
            logger.info("no_index_found_initializing_new")
            await self.init_new_index()

    async def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If save fails
        """
        if self.index is None:
            raise RuntimeError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.metadata["vector_count"] = self.index.ntotal

        try:
            faiss.write_index(self.index, str(self.index_path))
            with open(self.metadata_path, "w") as f:
                json.dump(self.metadata, f, indent=2)
        except Exception as e:
            raise RuntimeError(f"Failed to save FAISS index: {e}") from e

        logger.debug("faiss_index_saved", vector_count=self.index.ntotal)

    def _as_matrix(self, embeddings: List[List[float]]) -> np.ndarray:
        vectors = np.array(embeddings, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {vectors.shape[-1]}"
            )
        faiss.normalize_L2(vectors)
        return vectors

    def _require_index(self) -> faiss.Index:
        if self.index is None:
            raise RuntimeError("No index initialized. Call init_or_load() first.")
        return self.index

    def upsert_vectors(self, vector_ids: List[int], embeddings: List[List[float]]) -> None:
        """Add vectors under the given ids, replacing any existing vector with the same id."""
        index = self._require_index()
        if not vector_ids:
            return

        vectors = self._as_matrix(embeddings)
        ids = np.array(vector_ids, dtype=np.int64)

        index.remove_ids(ids)
        index.add_with_ids(vectors, ids)

        logger.debug("vectors_upserted", count=len(vector_ids), total_vectors=index.ntotal)

    def remove_vectors(self, vector_ids: List[int]) -> int:
        """Remove vectors by id. Unknown ids are ignored."""
        index = self._require_index()
        if not vector_ids:
            return 0
        removed = index.remove_ids(np.array(vector_ids, dtype=np.int64))
        logger.debug("vectors_removed", count=int(removed), total_vectors=index.ntotal)
        return int(removed)

    def search(
        self, query_embedding: List[float], top_k: int
    ) -> Tuple[List[int], List[float]]:
        """Search for the nearest vectors.

        Returns:
            Tuple of (vector_ids, cosine distances), nearest first
        """
        index = self._require_index()

        top_k = min(top_k, index.ntotal)
        if top_k <= 0:
            return [], []

        query_vector = self._as_matrix([query_embedding])
        scores, indices = index.search(query_vector, top_k)

        vector_ids = []
        distances = []
        for vector_id, score in zip(indices[0].tolist(), scores[0].tolist()):
            if vector_id == -1:
                continue
            vector_ids.append(int(vector_id))
            distances.append(1.0 - float(score))

        return vector_ids, distances

    def vector_ids(self) -> List[int]:
        """Ids of every vector currently in the index."""
        index = self._require_index()
        return faiss.vector_to_array(index.id_map).tolist()

    @property
    def vector_count(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    async def rebuild_index(self) -> None:
        """Delete the on-disk index and start over with an empty one."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        for path in (self.index_path, self.metadata_path):
            if path.exists():
                path.unlink()
                logger.info("deleted_index_file", path=str(path))

        await self.init_new_index()
        await self.save_index()
