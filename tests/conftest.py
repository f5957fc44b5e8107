"""Pytest configuration and fixtures: temporary database and in-memory gateways."""
import asyncio
import hashlib
import re
from typing import List, Dict, Any, Optional

import pytest

from docchat import db
from docchat.errors import BackendUnavailableError, IndexUnavailableError
from docchat.gateways import GenerationGateway, VectorIndexGateway
from docchat.models import ChunkMetadata, RetrievalResult

_WORD = re.compile(r"\w+")


def words(text: str) -> List[str]:
    return _WORD.findall(text.lower())


class FakeGeneration(GenerationGateway):
    """Records every call and answers with a fixed reply (or raises ``error``)."""

    def __init__(self, reply: str = "Fake answer", delay: float = 0.0):
        self.reply = reply
        self.delay = delay
        self.error: Optional[Exception] = None
        self.models_error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    async def chat_completion(self, messages, model=None, temperature=None, max_tokens=None, top_p=None):
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return {"content": self.reply(messages)}
        return {"content": self.reply}

    async def list_models(self):
        if self.models_error is not None:
            raise self.models_error
        return [{"name": "deepseek-r1:latest"}, {"name": "llama3:8b"}]


class FakeVectorIndex(VectorIndexGateway):
    """Dictionary-backed index ranking chunks by shared-word count."""

    def __init__(self):
        self.chunks: Dict[str, tuple] = {}
        self.available = True
        self.queries: List[tuple] = []

    def _check(self):
        if not self.available:
            raise IndexUnavailableError("fake index is down")

    async def connect_lazy(self):
        self._check()

    async def upsert(self, key: str, text: str, metadata: ChunkMetadata):
        self._check()
        self.chunks[key] = (text, metadata)

    async def query(self, text: str, limit: int) -> List[RetrievalResult]:
        self._check()
        self.queries.append((text, limit))
        query_words = set(words(text))
        scored = []
        for key, (content, metadata) in self.chunks.items():
            overlap = len(query_words & set(words(content)))
            if overlap:
                scored.append((overlap, key, content, metadata))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            RetrievalResult(key=key, content=content, distance=1.0 / (1 + overlap), metadata=metadata)
            for overlap, key, content, metadata in scored[:limit]
        ]

    async def delete_by_document_id(self, document_id: str) -> int:
        self._check()
        doomed = [k for k, (_, meta) in self.chunks.items() if meta.document_id == document_id]
        for key in doomed:
            del self.chunks[key]
        return len(doomed)

    async def clear(self):
        self._check()
        self.chunks.clear()


class FakeEmbedder:
    """Deterministic hashed bag-of-words embeddings."""

    def __init__(self, dimension: int = 64):
        self.dimension = dimension
        self.available = True
        self.calls = 0

    async def embeddings(self, prompt: str, model: str = None) -> List[float]:
        self.calls += 1
        if not self.available:
            raise BackendUnavailableError("fake embedder is down")
        vector = [0.0] * self.dimension
        vector[0] = 0.01
        for word in words(prompt):
            slot = int(hashlib.md5(word.encode()).hexdigest(), 16) % (self.dimension - 1) + 1
            vector[slot] += 1.0
        return vector


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    db.init_database()
    return tmp_path / "test.sqlite"


@pytest.fixture
def generation():
    return FakeGeneration()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def sample_metadata():
    def make(document_id: str = "doc1", sequence_index: int = 0, filename: str = "notes.txt", total: int = 1):
        return ChunkMetadata(
            document_id=document_id,
            filename=filename,
            media_type="text/plain",
            sequence_index=sequence_index,
            total_chunks=total,
            fingerprint="f" * 64,
        )
    return make
