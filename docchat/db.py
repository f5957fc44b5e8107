"""SQLite persistence for docchat.

Tables:
- documents: uploaded files, extracted text and content fingerprint
- sessions / messages: chat sessions and their append-only message log
- chunks: payload of the vector index (chunk text + metadata per FAISS id)
"""
import sqlite3
import json
from typing import Optional, List, Dict, Any, Set
from datetime import datetime
import structlog

from docchat import config
from docchat.errors import DuplicateContentError
from docchat.models import (
    ChatSession,
    ChunkMetadata,
    Document,
    Message,
    MessageRole,
    utcnow,
)

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Create tables and indexes if they don't exist."""
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                filename TEXT NOT NULL,
                media_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                content TEXT,
                fingerprint TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                model TEXT NOT NULL,
                use_rag INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                vector_id INTEGER PRIMARY KEY AUTOINCREMENT,
                chunk_key TEXT NOT NULL UNIQUE,
                document_id TEXT NOT NULL,
                content TEXT NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session
            ON messages(session_id, id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document_id
            ON chunks(document_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row, with_content: bool = True) -> Document:
    return Document(
        id=row["id"],
        filename=row["filename"],
        media_type=row["media_type"],
        size=row["size"],
        fingerprint=row["fingerprint"],
        content=row["content"] if with_content else None,
        created_at=_parse_ts(row["created_at"]),
    )


def insert_document(document: Document) -> None:
    """Insert a document.

    Raises:
        DuplicateContentError: If a document with the same fingerprint exists
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO documents (
                id, filename, media_type, size, content, fingerprint, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            document.id,
            document.filename,
            document.media_type,
            document.size,
            document.content,
            document.fingerprint,
            _ts(document.created_at),
        ))
        conn.commit()
        logger.info("document_inserted", document_id=document.id)

    except sqlite3.IntegrityError as e:
        conn.rollback()
        logger.warning("document_insert_duplicate", fingerprint=document.fingerprint)
        raise DuplicateContentError(
            f"A file with identical content already exists ({document.filename})"
        ) from e
    except Exception as e:
        conn.rollback()
        logger.error("document_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_document(document_id: str) -> Optional[Document]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None
    finally:
        conn.close()


def get_document_by_fingerprint(fingerprint: str) -> Optional[Document]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE fingerprint = ?", (fingerprint,)
        ).fetchone()
        return _row_to_document(row, with_content=False) if row else None
    finally:
        conn.close()


def list_documents() -> List[Document]:
    """List documents, newest first, without their content."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM documents ORDER BY created_at DESC"
        ).fetchall()
        return [_row_to_document(row, with_content=False) for row in rows]
    finally:
        conn.close()


def list_documents_with_content() -> List[Document]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM documents WHERE content IS NOT NULL ORDER BY created_at"
        ).fetchall()
        return [_row_to_document(row) for row in rows]
    finally:
        conn.close()


def get_documents_by_ids(document_ids: List[str]) -> Dict[str, Document]:
    if not document_ids:
        return {}

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(document_ids))
        rows = conn.execute(
            f"SELECT * FROM documents WHERE id IN ({placeholders})",
            list(document_ids),
        ).fetchall()
        return {row["id"]: _row_to_document(row, with_content=False) for row in rows}
    finally:
        conn.close()


def delete_document(document_id: str) -> bool:
    """Delete a document row. Returns False if it did not exist."""
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Sessions and messages
# ---------------------------------------------------------------------------

def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        timestamp=_parse_ts(row["created_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> ChatSession:
    return ChatSession(
        id=row["id"],
        title=row["title"],
        model=row["model"],
        use_rag=bool(row["use_rag"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def create_session(session: ChatSession) -> None:
    conn = get_connection()
    try:
        conn.execute("""
            INSERT INTO sessions (id, title, model, use_rag, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            session.id,
            session.title,
            session.model,
            int(session.use_rag),
            _ts(session.created_at),
            _ts(session.updated_at),
        ))
        conn.commit()
    except Exception as e:
        conn.rollback()
        logger.error("session_create_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_session(session_id: str, with_messages: bool = True) -> Optional[ChatSession]:
    """Load a session, optionally with its messages in conversation order."""
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        if not row:
            return None

        session = _row_to_session(row)
        if with_messages:
            rows = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY id",
                (session_id,),
            ).fetchall()
            session.messages = [_row_to_message(r) for r in rows]
        return session
    finally:
        conn.close()


def list_sessions(limit: int = 50) -> List[ChatSession]:
    """List sessions, most recently updated first, without messages."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM sessions ORDER BY updated_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_row_to_session(row) for row in rows]
    finally:
        conn.close()


def update_session(
    session_id: str,
    title: Optional[str] = None,
    model: Optional[str] = None,
    use_rag: Optional[bool] = None,
) -> bool:
    """Update the given session fields and refresh ``updated_at``."""
    fields = []
    values: List[Any] = []
    if title is not None:
        fields.append("title = ?")
        values.append(title)
    if model is not None:
        fields.append("model = ?")
        values.append(model)
    if use_rag is not None:
        fields.append("use_rag = ?")
        values.append(int(use_rag))

    fields.append("updated_at = ?")
    values.append(_ts(utcnow()))
    values.append(session_id)

    conn = get_connection()
    try:
        cursor = conn.execute(
            f"UPDATE sessions SET {', '.join(fields)} WHERE id = ?", values
        )
        conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        conn.rollback()
        logger.error("session_update_failed", error=str(e), session_id=session_id)
        raise
    finally:
        conn.close()


def append_messages(
    session_id: str,
    messages: List[Message],
    title: Optional[str] = None,
) -> datetime:
    """Append messages in order and refresh the session timestamp atomically.

    Args:
        session_id: Target session
        messages: Messages to append; their ``id`` is filled in
        title: Optional new session title, written in the same transaction

    Returns:
        The new ``updated_at`` timestamp
    """
    updated_at = utcnow()
    conn = get_connection()
    cursor = conn.cursor()

    try:
        for message in messages:
            cursor.execute("""
                INSERT INTO messages (session_id, role, content, created_at)
                VALUES (?, ?, ?, ?)
            """, (
                session_id,
                message.role.value,
                message.content,
                _ts(message.timestamp),
            ))
            message.id = cursor.lastrowid

        if title is not None:
            cursor.execute(
                "UPDATE sessions SET updated_at = ?, title = ? WHERE id = ?",
                (_ts(updated_at), title, session_id),
            )
        else:
            cursor.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (_ts(updated_at), session_id),
            )

        conn.commit()
        return updated_at

    except Exception as e:
        conn.rollback()
        logger.error("messages_append_failed", error=str(e), session_id=session_id)
        raise
    finally:
        conn.close()


def delete_session(session_id: str) -> bool:
    """Delete a session and all its messages."""
    conn = get_connection()
    try:
        conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        conn.commit()
        return cursor.rowcount > 0
    except Exception as e:
        conn.rollback()
        logger.error("session_delete_failed", error=str(e), session_id=session_id)
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Chunk payloads of the vector index
# ---------------------------------------------------------------------------

def upsert_chunk(chunk_key: str, content: str, metadata: ChunkMetadata) -> int:
    """Insert or replace a chunk payload.

    Returns:
        The chunk's vector id (stable across upserts of the same key)
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO chunks (chunk_key, document_id, content, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(chunk_key) DO UPDATE SET
                document_id = excluded.document_id,
                content = excluded.content,
                metadata_json = excluded.metadata_json
        """, (
            chunk_key,
            metadata.document_id,
            content,
            json.dumps(metadata.to_dict()),
            _ts(utcnow()),
        ))
        row = cursor.execute(
            "SELECT vector_id FROM chunks WHERE chunk_key = ?", (chunk_key,)
        ).fetchone()
        conn.commit()
        return row["vector_id"]

    except Exception as e:
        conn.rollback()
        logger.error("chunk_upsert_failed", error=str(e), chunk_key=chunk_key)
        raise
    finally:
        conn.close()


def get_chunks_by_vector_ids(vector_ids: List[int]) -> Dict[int, Dict[str, Any]]:
    """Retrieve chunk payloads keyed by vector id."""
    if not vector_ids:
        return {}

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(vector_ids))
        rows = conn.execute(f"""
            SELECT vector_id, chunk_key, document_id, content, metadata_json
            FROM chunks
            WHERE vector_id IN ({placeholders})
        """, list(vector_ids)).fetchall()

        chunks = {}
        for row in rows:
            chunk = dict(row)
            chunk["metadata"] = (
                json.loads(chunk["metadata_json"]) if chunk["metadata_json"] else None
            )
            chunks[chunk["vector_id"]] = chunk
        return chunks
    finally:
        conn.close()


def get_vector_ids_for_document(document_id: str) -> List[int]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT vector_id FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchall()
        return [row["vector_id"] for row in rows]
    finally:
        conn.close()


def get_all_vector_ids() -> Set[int]:
    conn = get_connection()
    try:
        rows = conn.execute("SELECT vector_id FROM chunks").fetchall()
        return {row["vector_id"] for row in rows}
    finally:
        conn.close()


def delete_chunks_for_document(document_id: str) -> int:
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        conn.commit()
        return cursor.rowcount
    except Exception as e:
        conn.rollback()
        logger.error("chunks_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def clear_all_chunks() -> int:
    """Delete all chunk payloads. Used when rebuilding the index from scratch."""
    conn = get_connection()
    try:
        count = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        conn.execute("DELETE FROM chunks")
        conn.commit()
        logger.info("chunks_cleared", count=count)
        return count
    except Exception as e:
        conn.rollback()
        logger.error("chunks_clear_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_chunk_count() -> int:
    conn = get_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    finally:
        conn.close()
