"""Conversation memory manager.

Handles session creation, message persistence, and session metadata for
multi-turn chat interactions.
"""
import re
import uuid
from typing import List, Optional
import structlog

from docchat import config, db
from docchat.errors import SessionNotFoundError
from docchat.models import ChatSession, Message, utcnow

logger = structlog.get_logger()

DEFAULT_TITLE_PREFIX = "Chat "
TITLE_MAX_CHARS = 50

_DEFAULT_TITLE = re.compile(r"^Chat \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")


def default_title() -> str:
    return f"{DEFAULT_TITLE_PREFIX}{utcnow().strftime('%Y-%m-%d %H:%M:%S')}"


def is_default_title(title: str) -> bool:
    return bool(_DEFAULT_TITLE.match(title))


def title_from_message(first_message: str) -> str:
    """Create a brief title from the first user message (max 50 chars)."""
    text = " ".join(first_message.split())
    if len(text) <= TITLE_MAX_CHARS:
        return text

    title = text[:TITLE_MAX_CHARS]
    if " " in title:
        title = title.rsplit(" ", 1)[0]
    return title + "..."


class ConversationManager:
    """Manages chat sessions and their append-only message history."""

    def create_session(
        self,
        title: Optional[str] = None,
        model: Optional[str] = None,
        use_rag: bool = True,
    ) -> ChatSession:
        """Create a new chat session.

        Args:
            title: Optional title (defaults to ``Chat <timestamp>``)
            model: Model for this session (defaults to config.CHAT_MODEL)
            use_rag: Whether turns are grounded in uploaded documents
        """
        session = ChatSession(
            id=str(uuid.uuid4()),
            title=title or default_title(),
            model=model or config.CHAT_MODEL,
            use_rag=use_rag,
        )
        db.create_session(session)
        logger.info("conversation_session_created", session_id=session.id, model=session.model)
        return session

    def get_session(self, session_id: str) -> ChatSession:
        """Get a session with all its messages.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = db.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Chat not found: {session_id}")
        return session

    def list_sessions(self, limit: int = 50) -> List[ChatSession]:
        return db.list_sessions(limit)

    def update_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        model: Optional[str] = None,
        use_rag: Optional[bool] = None,
    ) -> ChatSession:
        if not db.update_session(session_id, title=title, model=model, use_rag=use_rag):
            raise SessionNotFoundError(f"Chat not found: {session_id}")
        logger.info("conversation_session_updated", session_id=session_id)
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> None:
        if not db.delete_session(session_id):
            raise SessionNotFoundError(f"Chat not found: {session_id}")
        logger.info("conversation_session_deleted", session_id=session_id)

    def append_turn(
        self, session: ChatSession, user_message: Message, assistant_message: Message
    ) -> None:
        """Persist a completed turn: user message, then assistant message.

        On the first turn of a session that still has its default title,
        the title is derived from the user message.
        """
        title = None
        if not session.messages and is_default_title(session.title):
            title = title_from_message(user_message.content)

        session.updated_at = db.append_messages(
            session.id, [user_message, assistant_message], title=title
        )
        session.messages.extend([user_message, assistant_message])
        if title:
            session.title = title
            logger.info("session_title_updated", session_id=session.id, title=title)

        logger.info(
            "conversation_turn_saved",
            session_id=session.id,
            message_count=len(session.messages),
        )
