"""Domain types shared by the chat pipeline, the store and the gateways."""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Chat message author. ``human`` is an alias of ``user``."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    HUMAN = "human"

    @property
    def is_user(self) -> bool:
        return self in (MessageRole.USER, MessageRole.HUMAN)

    def for_backend(self) -> str:
        """Role name understood by the generation backend."""
        if self is MessageRole.HUMAN:
            return MessageRole.USER.value
        return self.value


class OperationStatus(str, Enum):
    """Outcome of an operation that touches an optional subsystem."""

    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class Message:
    """A single chat message."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def to_backend(self) -> Dict[str, str]:
        return {"role": self.role.for_backend(), "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ChatSession:
    """A conversation. Messages are append-only and kept in conversation order."""

    id: str
    title: str
    model: str
    use_rag: bool = True
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "useRAG": self.use_rag,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


@dataclass
class Document:
    """An uploaded file and its extracted text (None if extraction was unsupported)."""

    id: str
    filename: str
    media_type: str
    size: int
    fingerprint: str
    content: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "filename": self.filename,
            "mediaType": self.media_type,
            "size": self.size,
            "hash": self.fingerprint,
            "hasContent": self.content is not None,
            "createdAt": self.created_at.isoformat(),
        }
        if include_content:
            data["content"] = self.content
        return data


@dataclass(frozen=True)
class ChunkMetadata:
    """Metadata stored alongside every indexed chunk."""

    document_id: str
    filename: str
    media_type: str
    sequence_index: int
    total_chunks: int
    fingerprint: str

    @property
    def key(self) -> str:
        return chunk_key(self.document_id, self.sequence_index)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        return cls(
            document_id=data["document_id"],
            filename=data["filename"],
            media_type=data["media_type"],
            sequence_index=int(data["sequence_index"]),
            total_chunks=int(data["total_chunks"]),
            fingerprint=data["fingerprint"],
        )


def chunk_key(document_id: str, sequence_index: int) -> str:
    """Primary key of a chunk in the vector index."""
    return f"{document_id}_{sequence_index}"


@dataclass
class RetrievalResult:
    """A single search hit, best match first in any returned sequence."""

    key: str
    content: str
    distance: float
    metadata: Optional[ChunkMetadata] = None

    @property
    def similarity(self) -> float:
        """``1 - distance``. With cosine distance this is the cosine, in [-1, 1]."""
        return 1.0 - self.distance

    @property
    def document_id(self) -> Optional[str]:
        return self.metadata.document_id if self.metadata else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.key,
            "content": self.content,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "similarity": round(self.similarity, 4),
        }


@dataclass
class TurnOptions:
    """Per-turn generation options. ``None`` means fall back to the defaults."""

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    max_results: Optional[int] = None


@dataclass
class UploadResult:
    document_id: str
    chunk_count: int
    indexing: OperationStatus = OperationStatus.SUCCESS
    indexing_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "chunkCount": self.chunk_count,
            "indexing": self.indexing.value,
            "indexingError": self.indexing_error,
        }


@dataclass
class DeleteResult:
    document_id: str
    removed_chunks: int = 0
    indexing: OperationStatus = OperationStatus.SUCCESS
    indexing_error: Optional[str] = None


@dataclass
class SearchOutcome:
    results: List[Dict[str, Any]] = field(default_factory=list)
    status: OperationStatus = OperationStatus.SUCCESS
    error: Optional[str] = None


@dataclass
class TurnResult:
    assistant_message: Message
    relevant_docs: List[Dict[str, Any]] = field(default_factory=list)
    retrieval: OperationStatus = OperationStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.assistant_message.to_dict(),
            "relevantDocs": self.relevant_docs,
            "retrieval": self.retrieval.value,
        }
