"""Ollama LLM client wrapper with error handling."""
import httpx
from typing import List, Dict, Any, Optional
import structlog

from docchat import config
from docchat.errors import BackendUnavailableError, BackendRejectedError
from docchat.gateways import GenerationGateway

logger = structlog.get_logger()


class OllamaClient(GenerationGateway):
    """Async client for interacting with the Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            transport: Optional httpx transport, used to stub the backend in tests
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Issue one request and translate transport and API failures.

        Raises:
            BackendUnavailableError: connection refused, timeout, other transport errors
            BackendRejectedError: non-2xx response or unreadable body
        """
        url = f"{self.base_url}{path}"
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, url, json=payload)
        except httpx.TransportError as e:
            logger.error(
                "ollama_connection_error",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            raise BackendUnavailableError(
                f"Ollama unreachable at {self.base_url}: {e}"
            ) from e

        if response.is_error:
            detail = _error_detail(response)
            logger.error(
                "ollama_http_error",
                status_code=response.status_code,
                error=detail,
                path=path,
            )
            raise BackendRejectedError(
                f"Ollama API error: {detail}", status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error("ollama_invalid_response", path=path, error=str(e))
            raise BackendRejectedError(
                "Ollama returned a non-JSON response", status_code=response.status_code
            ) from e

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate (Ollama ``num_predict``)
            top_p: Nucleus sampling threshold

        Returns:
            Dict with 'content' (never None) and 'model'

        Raises:
            BackendUnavailableError: If Ollama cannot be reached
            BackendRejectedError: If Ollama answers with an error payload
        """
        model = model or config.CHAT_MODEL

        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if top_p is not None:
            options["top_p"] = top_p

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if options:
            payload["options"] = options

        logger.info(
            "ollama_chat_request",
            model=model,
            message_count=len(messages),
            **options,
        )

        data = await self._request("POST", "/api/chat", payload)

        message = data.get("message") or {}
        content = message.get("content")
        if content is None:
            content = data.get("response") or ""

        logger.info(
            "ollama_chat_response",
            model=data.get("model", model),
            response_length=len(content),
        )

        return {"content": content, "model": data.get("model", model)}

    async def embeddings(self, prompt: str, model: str = None) -> List[float]:
        """Generate an embedding vector for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            The embedding vector

        Raises:
            BackendUnavailableError, BackendRejectedError: as for chat_completion
        """
        model = model or config.EMBEDDING_MODEL

        logger.debug("ollama_embedding_request", model=model, prompt_length=len(prompt))

        data = await self._request(
            "POST", "/api/embeddings", {"model": model, "prompt": prompt}
        )
        embedding = data.get("embedding") or []
        if not embedding:
            raise BackendRejectedError(f"Empty embedding returned by {model}")

        logger.debug("ollama_embedding_response", model=model, dimension=len(embedding))
        return embedding

    async def list_models(self) -> List[Dict[str, Any]]:
        """List all available Ollama models.

        Returns:
            List of model descriptors as returned by ``/api/tags``
        """
        data = await self._request("GET", "/api/tags", timeout=5.0)
        return data.get("models", [])


def _error_detail(response: httpx.Response) -> str:
    """Pull the ``error`` field out of an Ollama error body, falling back to the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or f"HTTP {response.status_code}"
