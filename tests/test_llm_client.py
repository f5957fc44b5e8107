"""Tests for the Ollama client, with the HTTP layer stubbed by httpx.MockTransport."""
import asyncio
import json

import httpx
import pytest

from docchat.errors import BackendRejectedError, BackendUnavailableError
from docchat.llm_client import OllamaClient


def _client(handler):
    return OllamaClient(base_url="http://ollama.test/", transport=httpx.MockTransport(handler))


def test_chat_completion_payload_and_reply():
    """Test that options are mapped to Ollama names and the reply content is returned."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={
            "model": "deepseek-r1",
            "message": {"role": "assistant", "content": "Paris"},
            "done": True,
        })

    client = _client(handler)
    reply = asyncio.run(client.chat_completion(
        [{"role": "user", "content": "Capital of France?"}],
        model="deepseek-r1",
        temperature=0.2,
        max_tokens=128,
        top_p=0.8,
    ))

    assert reply == {"content": "Paris", "model": "deepseek-r1"}
    assert str(requests[0].url) == "http://ollama.test/api/chat"
    body = json.loads(requests[0].content)
    assert body["stream"] is False
    assert body["messages"] == [{"role": "user", "content": "Capital of France?"}]
    assert body["options"] == {"temperature": 0.2, "num_predict": 128, "top_p": 0.8}


def test_chat_completion_missing_content_is_empty_string():
    """Test that a reply without message content yields an empty string, never None."""
    client = _client(lambda request: httpx.Response(200, json={"model": "m", "message": {}}))

    reply = asyncio.run(client.chat_completion([{"role": "user", "content": "hi"}]))

    assert reply["content"] == ""


def test_error_payload_is_rejected():
    """Test that a structured error response raises BackendRejectedError."""
    client = _client(lambda request: httpx.Response(404, json={"error": "model 'nope' not found"}))

    with pytest.raises(BackendRejectedError) as excinfo:
        asyncio.run(client.chat_completion([{"role": "user", "content": "hi"}], model="nope"))

    assert excinfo.value.status_code == 404
    assert "model 'nope' not found" in excinfo.value.message


def test_connection_failure_is_unavailable():
    """Test that transport failures raise BackendUnavailableError."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendUnavailableError):
        asyncio.run(_client(handler).list_models())


def test_non_json_body_is_rejected():
    """Test that an unreadable success body raises BackendRejectedError."""
    client = _client(lambda request: httpx.Response(200, text="<html>proxy</html>"))

    with pytest.raises(BackendRejectedError):
        asyncio.run(client.list_models())


def test_list_models():
    """Test that model descriptors come from /api/tags."""
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "deepseek-r1:latest"}]})

    assert asyncio.run(_client(handler).list_models()) == [{"name": "deepseek-r1:latest"}]


def test_embeddings():
    """Test that embeddings are returned as-is and empty vectors are rejected."""
    def handler(request):
        prompt = json.loads(request.content)["prompt"]
        return httpx.Response(200, json={"embedding": [0.1, 0.2] if prompt else []})

    client = _client(handler)

    assert asyncio.run(client.embeddings("hello", model="nomic-embed-text")) == [0.1, 0.2]
    with pytest.raises(BackendRejectedError):
        asyncio.run(client.embeddings(""))
