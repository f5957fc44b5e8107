"""Chat turn orchestration.

One turn runs RECEIVED -> RETRIEVING (RAG sessions) -> COMPOSING ->
GENERATING -> POSTPROCESSING -> PERSISTED. Nothing is written until the
model has answered, so a failed turn leaves the session untouched.
"""
import asyncio
import re
from contextlib import asynccontextmanager
from enum import Enum
from typing import Dict, List, Optional, Sequence
import structlog

from docchat import config
from docchat.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    GenerationError,
    IndexUnavailableError,
    InvalidMessageError,
    NoQueryFoundError,
)
from docchat.gateways import GenerationGateway, VectorIndexGateway
from docchat.memory.manager import ConversationManager
from docchat.models import (
    ChatSession,
    Message,
    MessageRole,
    OperationStatus,
    RetrievalResult,
    TurnOptions,
    TurnResult,
)
from docchat.rag.context import ContextAssembler

logger = structlog.get_logger()

# Reasoning models wrap their scratchpad in <think>...</think> before the answer.
_REASONING_START = re.compile(r"^\s*<think>", re.IGNORECASE)
_REASONING_SPAN = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)


class TurnState(str, Enum):
    RECEIVED = "received"
    RETRIEVING = "retrieving"
    COMPOSING = "composing"
    GENERATING = "generating"
    POSTPROCESSING = "postprocessing"
    PERSISTED = "persisted"
    FAILED = "failed"


def strip_reasoning(content: Optional[str]) -> str:
    """Remove a leading reasoning block. Output without one is returned unchanged."""
    if not content:
        return ""
    if not _REASONING_START.match(content):
        return content
    return _REASONING_SPAN.sub("", content).strip()


def latest_user_query(messages: Sequence[Message]) -> str:
    """Content of the most recent ``user``/``human`` message.

    Raises:
        NoQueryFoundError: If no such message exists
    """
    for message in reversed(messages):
        if message.role.is_user:
            return message.content
    raise NoQueryFoundError("No user message found in chat history")


class ChatOrchestrator:
    """Drives a single conversational turn against the injected gateways."""

    def __init__(
        self,
        generation: GenerationGateway,
        vector_index: VectorIndexGateway,
        conversations: Optional[ConversationManager] = None,
        assembler: Optional[ContextAssembler] = None,
    ):
        self.generation = generation
        self.vector_index = vector_index
        self.conversations = conversations or ConversationManager()
        self.assembler = assembler or ContextAssembler()
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        """Hold the session's lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._lock_holders[session_id] = self._lock_holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[session_id] -= 1
            if not self._lock_holders[session_id]:
                del self._lock_holders[session_id]
                del self._session_locks[session_id]

    async def _retrieve(self, query: str, max_results: int, session_id: str):
        try:
            results = await self.vector_index.query(query, max_results)
            return results, OperationStatus.SUCCESS
        except IndexUnavailableError as e:
            logger.warning(
                "rag_retrieval_degraded",
                session_id=session_id,
                error=e.message,
            )
            return [], OperationStatus.DEGRADED

    @staticmethod
    def compose(
        context_message: Optional[Message], history: Sequence[Message]
    ) -> List[Dict[str, str]]:
        """Outgoing message list: context first (if any), then the full history.

        ``human`` roles are mapped to ``user`` here since the backend does not
        know the alias.
        """
        outgoing = [context_message] if context_message else []
        outgoing.extend(history)
        return [message.to_backend() for message in outgoing]

    @staticmethod
    def effective_options(session: ChatSession, options: TurnOptions) -> Dict:
        """Per-call options win over the session model, which wins over config defaults."""
        return {
            "model": options.model or session.model or config.CHAT_MODEL,
            "temperature": (
                options.temperature if options.temperature is not None
                else config.DEFAULT_TEMPERATURE
            ),
            "max_tokens": (
                options.max_tokens if options.max_tokens is not None
                else config.DEFAULT_MAX_TOKENS
            ),
            "top_p": options.top_p if options.top_p is not None else config.DEFAULT_TOP_P,
        }

    async def send_turn(
        self,
        session_id: str,
        user_text: str,
        options: Optional[TurnOptions] = None,
    ) -> TurnResult:
        """Run one turn for a session.

        Turns for the same session are serialised; different sessions run
        independently.

        Args:
            session_id: Target chat session
            user_text: The new user message
            options: Per-turn generation and retrieval options

        Returns:
            TurnResult with the persisted assistant message and relevant docs

        Raises:
            InvalidMessageError: Empty message (nothing is written)
            SessionNotFoundError: Unknown session
            NoQueryFoundError: No user message to retrieve for
            GenerationError: The model backend failed (nothing is written)
        """
        if user_text is None or not user_text.strip():
            raise InvalidMessageError("Message content cannot be empty")

        options = options or TurnOptions()

        async with self._session_lock(session_id):
            return await self._run_turn(session_id, user_text, options)

    async def _run_turn(
        self, session_id: str, user_text: str, options: TurnOptions
    ) -> TurnResult:
        state = TurnState.RECEIVED
        try:
            session = self.conversations.get_session(session_id)

            user_message = Message(role=MessageRole.USER, content=user_text)
            history = list(session.messages) + [user_message]

            results: List[RetrievalResult] = []
            retrieval = OperationStatus.SUCCESS
            query = None

            if session.use_rag:
                state = TurnState.RETRIEVING
                query = latest_user_query(history)
                max_results = options.max_results or config.RETRIEVAL_MAX_RESULTS
                results, retrieval = await self._retrieve(query, max_results, session_id)

            state = TurnState.COMPOSING
            assembled = self.assembler.assemble(results, query)
            outgoing = self.compose(assembled.context_message, history)

            state = TurnState.GENERATING
            generation_options = self.effective_options(session, options)
            logger.info(
                "chat_turn_generating",
                session_id=session_id,
                use_rag=session.use_rag,
                grounded=assembled.has_context,
                message_count=len(outgoing),
                model=generation_options["model"],
            )
            try:
                completion = await self.generation.chat_completion(
                    outgoing, **generation_options
                )
            except (BackendUnavailableError, BackendRejectedError) as e:
                raise GenerationError(f"Generation failed: {e.message}") from e

            state = TurnState.POSTPROCESSING
            content = strip_reasoning(completion.get("content"))
            assistant_message = Message(role=MessageRole.ASSISTANT, content=content)

            self.conversations.append_turn(session, user_message, assistant_message)
            state = TurnState.PERSISTED

        except Exception as e:
            logger.error(
                "chat_turn_failed",
                session_id=session_id,
                state=state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "chat_turn_completed",
            session_id=session_id,
            response_length=len(content),
            relevant_docs=len(assembled.relevant_docs),
            retrieval=retrieval.value,
        )

        return TurnResult(
            assistant_message=assistant_message,
            relevant_docs=assembled.relevant_docs,
            retrieval=retrieval,
        )
