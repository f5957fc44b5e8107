"""Error taxonomy for the document chat core.

Every error carries a stable ``kind`` string and a human readable message so
callers (the HTTP layer, scripts) can decide on retry or reporting without
parsing text.
"""


class DocChatError(Exception):
    """Base class for all errors raised by docchat."""

    kind = "docchat_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message}


# Documents

class ExtractionEmptyError(DocChatError):
    """Chunking was requested for text that does not exist."""

    kind = "extraction_empty"


class UnsupportedTypeError(DocChatError):
    """No text extractor for the given media type (recoverable)."""

    kind = "unsupported_type"


class DuplicateContentError(DocChatError):
    """A document with the same content fingerprint already exists."""

    kind = "duplicate_content"

    def __init__(self, message: str = "", existing_id: str = None):
        super().__init__(message)
        self.existing_id = existing_id


class UploadRejectedError(DocChatError):
    """Upload refused before extraction (empty or oversized file)."""

    kind = "upload_rejected"


class DocumentNotFoundError(DocChatError):
    kind = "document_not_found"


# Vector index

class IndexUnavailableError(DocChatError):
    """The similarity search engine (or its embedder) cannot be reached."""

    kind = "index_unavailable"


# Chat

class SessionNotFoundError(DocChatError):
    kind = "session_not_found"


class InvalidMessageError(DocChatError):
    kind = "invalid_message"


class NoQueryFoundError(DocChatError):
    kind = "no_query_found"


class GenerationError(DocChatError):
    """The language model backend failed to produce a completion."""

    kind = "generation_failed"


# Generation backend (gateway level)

class BackendUnavailableError(DocChatError):
    """Transport-level failure talking to the backend (connect, timeout)."""

    kind = "backend_unavailable"


class BackendRejectedError(DocChatError):
    """The backend answered with a structured error payload."""

    kind = "backend_rejected"

    def __init__(self, message: str = "", status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
