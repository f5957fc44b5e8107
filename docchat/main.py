"""Quart application exposing the document chat API."""
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from quart import Blueprint, Quart, current_app, jsonify, request
import structlog

from docchat import config, db
from docchat.chat import ChatOrchestrator
from docchat.errors import (
    DocChatError,
    DocumentNotFoundError,
    DuplicateContentError,
    GenerationError,
    InvalidMessageError,
    NoQueryFoundError,
    SessionNotFoundError,
    UploadRejectedError,
)
from docchat.gateways import GenerationGateway, VectorIndexGateway
from docchat.llm_client import OllamaClient
from docchat.memory import ConversationManager
from docchat.models import TurnOptions
from docchat.rag.ingest import DocumentService
from docchat.rag.store_faiss import FAISSVectorStore
from docchat.rag.vector_index import VectorIndex


def configure_logging(level: str = None) -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger()

api = Blueprint("api", __name__)

ERROR_STATUS = {
    InvalidMessageError: 400,
    NoQueryFoundError: 400,
    UploadRejectedError: 400,
    DocumentNotFoundError: 404,
    SessionNotFoundError: 404,
    DuplicateContentError: 409,
    GenerationError: 502,
}


@dataclass
class Services:
    """Process-wide collaborators, built once and shared by all requests."""

    generation: GenerationGateway
    vector_index: VectorIndexGateway
    documents: DocumentService
    conversations: ConversationManager
    orchestrator: ChatOrchestrator


def build_services(
    generation: Optional[GenerationGateway] = None,
    vector_index: Optional[VectorIndexGateway] = None,
) -> Services:
    generation = generation or OllamaClient()
    if vector_index is None:
        vector_index = VectorIndex(FAISSVectorStore(embedder=generation))
    conversations = ConversationManager()
    return Services(
        generation=generation,
        vector_index=vector_index,
        documents=DocumentService(vector_index),
        conversations=conversations,
        orchestrator=ChatOrchestrator(generation, vector_index, conversations),
    )


def services() -> Services:
    return current_app.extensions["docchat"]


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateChatRequest(_Body):
    title: Optional[str] = None
    model: Optional[str] = None
    use_rag: bool = Field(True, alias="useRAG")


class UpdateChatRequest(_Body):
    title: Optional[str] = Field(None, min_length=1)
    model: Optional[str] = Field(None, min_length=1)
    use_rag: Optional[bool] = Field(None, alias="useRAG")


class SendMessageRequest(_Body):
    message: str
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, alias="maxTokens", gt=0)
    top_p: Optional[float] = Field(None, alias="topP", gt=0.0, le=1.0)
    max_results: Optional[int] = Field(None, alias="maxResults", ge=1, le=50)


class SearchRequest(_Body):
    query: str = Field(..., min_length=1)
    limit: Optional[int] = Field(None, ge=1, le=50)


async def _parse(model: type[BaseModel]):
    data = await request.get_json(silent=True)
    return model.model_validate(data or {})


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@api.route("/api/files", methods=["POST"])
async def upload_file():
    """Upload a file (multipart field ``file``), extract, chunk and index it."""
    files = await request.files
    upload = files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "No file uploaded", "kind": "upload_rejected"}), 400

    data = upload.read()
    result = await services().documents.upload_document(
        data, upload.filename, upload.content_type or upload.mimetype
    )
    return jsonify(result.to_dict()), 201


@api.route("/api/files", methods=["GET"])
async def list_files():
    documents = db.list_documents()
    return jsonify({"files": [d.to_dict() for d in documents]})


@api.route("/api/files/<document_id>", methods=["GET"])
async def get_file(document_id: str):
    document = db.get_document(document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document not found: {document_id}")
    return jsonify(document.to_dict(include_content=True))


@api.route("/api/files/<document_id>", methods=["DELETE"])
async def delete_file(document_id: str):
    result = await services().documents.delete_document(document_id)
    return jsonify({
        "documentId": result.document_id,
        "removedChunks": result.removed_chunks,
        "indexing": result.indexing.value,
    })


@api.route("/api/search", methods=["POST"])
async def search():
    body = await _parse(SearchRequest)
    outcome = await services().documents.search_documents(body.query, body.limit)
    return jsonify({
        "results": outcome.results,
        "status": outcome.status.value,
        "error": outcome.error,
    })


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------

@api.route("/api/chats", methods=["POST"])
async def create_chat():
    body = await _parse(CreateChatRequest)
    session = services().conversations.create_session(body.title, body.model, body.use_rag)
    return jsonify(session.to_dict()), 201


@api.route("/api/chats", methods=["GET"])
async def list_chats():
    sessions = services().conversations.list_sessions()
    return jsonify({"chats": [s.to_dict(include_messages=False) for s in sessions]})


@api.route("/api/chats/<session_id>", methods=["GET"])
async def get_chat(session_id: str):
    session = services().conversations.get_session(session_id)
    return jsonify(session.to_dict())


@api.route("/api/chats/<session_id>", methods=["PATCH"])
async def update_chat(session_id: str):
    body = await _parse(UpdateChatRequest)
    session = services().conversations.update_session(
        session_id, title=body.title, model=body.model, use_rag=body.use_rag
    )
    return jsonify(session.to_dict(include_messages=False))


@api.route("/api/chats/<session_id>", methods=["DELETE"])
async def delete_chat(session_id: str):
    services().conversations.delete_session(session_id)
    return "", 204


@api.route("/api/chats/<session_id>/messages", methods=["POST"])
async def send_message(session_id: str):
    """Send a user message and return the assistant reply with relevant docs."""
    body = await _parse(SendMessageRequest)

    if len(body.message) > config.MAX_MESSAGE_CHARS:
        raise InvalidMessageError(
            f"Message too long (max {config.MAX_MESSAGE_CHARS} characters)"
        )

    logger.info(
        "chat_request_received",
        session_id=session_id,
        message_length=len(body.message),
        user_message_preview=body.message[:100],
    )

    result = await services().orchestrator.send_turn(
        session_id,
        body.message,
        TurnOptions(
            model=body.model,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
            top_p=body.top_p,
            max_results=body.max_results,
        ),
    )
    return jsonify(result.to_dict())


# ---------------------------------------------------------------------------
# Models and health
# ---------------------------------------------------------------------------

@api.route("/api/models", methods=["GET"])
async def list_models():
    try:
        models = await services().generation.list_models()
    except DocChatError as e:
        logger.error("list_models_failed", error=e.message)
        return jsonify({"error": "Model list unavailable", "kind": e.kind}), 503
    return jsonify({"models": models})


@api.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@api.route("/health/ready")
async def health_ready():
    """Readiness probe - the generation backend is reachable."""
    try:
        models = await services().generation.list_models()
    except DocChatError as e:
        return jsonify({"status": "unhealthy", "error": e.message}), 503
    return jsonify({"status": "healthy", "models": len(models)}), 200


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@api.app_errorhandler(DocChatError)
async def handle_docchat_error(error: DocChatError):
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)), 500
    )
    return jsonify(error.to_dict()), status


@api.app_errorhandler(ValidationError)
async def handle_validation_error(error: ValidationError):
    return jsonify({
        "error": "Invalid request body",
        "kind": "invalid_request",
        "details": error.errors(include_url=False, include_context=False),
    }), 400


def create_app(
    generation: Optional[GenerationGateway] = None,
    vector_index: Optional[VectorIndexGateway] = None,
) -> Quart:
    """Build the Quart app with its services.

    Args:
        generation: Generation gateway (default: OllamaClient)
        vector_index: Vector index gateway (default: FAISS-backed VectorIndex)
    """
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES + 1024 * 1024
    app.extensions["docchat"] = build_services(generation, vector_index)
    app.register_blueprint(api)

    @app.before_serving
    async def startup():
        db.init_database()
        logger.info("docchat_started", chat_model=config.CHAT_MODEL)

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    # For development; serve with hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
