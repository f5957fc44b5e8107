"""Abstract gateways to the two external services the chat core depends on.

Concrete implementations are constructed once per process and passed into
the services that need them, so tests can substitute in-memory fakes.
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Sequence

from docchat.models import ChunkMetadata, RetrievalResult


class VectorIndexGateway(ABC):
    """Contract of the similarity search engine.

    Every operation raises ``IndexUnavailableError`` when the engine cannot
    be reached. Each request is issued once; retrying is up to the caller.
    """

    @abstractmethod
    async def connect_lazy(self) -> None:
        """Connect and prepare the collection on first use, no-op afterwards."""

    @abstractmethod
    async def upsert(self, key: str, text: str, metadata: ChunkMetadata) -> None:
        """Insert or replace one chunk."""

    async def upsert_many(self, items: Sequence[tuple]) -> None:
        """Insert or replace several ``(key, text, metadata)`` chunks."""
        for key, text, metadata in items:
            await self.upsert(key, text, metadata)

    @abstractmethod
    async def query(self, text: str, limit: int) -> List[RetrievalResult]:
        """Return up to ``limit`` hits, best match first. Empty, never an error, when nothing matches."""

    @abstractmethod
    async def delete_by_document_id(self, document_id: str) -> int:
        """Remove every chunk of a document. Returns how many were removed (0 is fine)."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every chunk. Used by reindexing."""


class GenerationGateway(ABC):
    """Contract of the language model backend.

    Roles are passed through verbatim; callers must already have mapped
    ``human`` to ``user``.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return ``{"content": str, ...}`` or raise a backend error."""

    @abstractmethod
    async def list_models(self) -> List[Dict[str, Any]]:
        """Return model descriptors (at least a ``name`` key each)."""
