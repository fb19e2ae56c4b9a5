"""Ollama and Bedrock providers against faked transports."""

import io
import json
import urllib.error

import pytest
from botocore.exceptions import ClientError

import ollama_service
import providers
from bedrock_service import BedrockError, BedrockService
from ollama_service import OllamaService
from providers import GenerationConfig, ProviderError


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def urlopen(monkeypatch):
    """Replace urlopen; returns the list of (url, payload) requests seen."""
    seen = []
    replies = []

    def fake_urlopen(req, timeout=None):
        payload = json.loads(req.data.decode("utf-8")) if req.data else None
        seen.append((req.full_url, payload))
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return _FakeResponse(reply)

    monkeypatch.setattr(ollama_service.urllib.request, "urlopen", fake_urlopen)
    return seen, replies


def test_ollama_generate(urlopen):
    seen, replies = urlopen
    replies.append(json.dumps({"message": {"role": "assistant", "content": "hello there"}}).encode())
    service = OllamaService(model="codellama", host="http://ollama:11434/")
    text = service.generate([{"role": "user", "content": "hi"}], GenerationConfig(max_tokens=64, temperature=0.1))

    assert text == "hello there"
    url, payload = seen[0]
    assert url == "http://ollama:11434/api/chat"
    assert payload["model"] == "codellama"
    assert payload["stream"] is False
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert payload["options"]["num_predict"] == 64
    assert payload["options"]["temperature"] == 0.1


def test_ollama_error_body(urlopen):
    _, replies = urlopen
    replies.append(json.dumps({"error": "model 'nope' not found"}).encode())
    with pytest.raises(ProviderError, match="not found"):
        OllamaService(model="nope", host="http://ollama:11434").generate([{"role": "user", "content": "hi"}])


def test_ollama_unreachable(urlopen):
    _, replies = urlopen
    replies.append(urllib.error.URLError("connection refused"))
    with pytest.raises(ProviderError, match="Could not reach Ollama"):
        OllamaService(host="http://ollama:11434").generate([{"role": "user", "content": "hi"}])


def test_ollama_http_error(urlopen):
    _, replies = urlopen
    replies.append(urllib.error.HTTPError("http://ollama:11434/api/chat", 500, "boom", {},
                                          io.BytesIO(b"out of memory")))
    with pytest.raises(ProviderError, match="500: out of memory"):
        OllamaService(host="http://ollama:11434").generate([{"role": "user", "content": "hi"}])


def test_ollama_stream(urlopen):
    seen, replies = urlopen
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": "lo"}, "done": False},
        {"message": {"content": ""}, "done": True},
    ]
    replies.append(b"\n".join(json.dumps(l).encode() for l in lines) + b"\nnot json\n")
    chunks = list(OllamaService(host="http://ollama:11434").generate_stream([{"role": "user", "content": "hi"}]))
    assert chunks == ["Hel", "lo"]
    assert seen[0][1]["stream"] is True


def test_ollama_embed(urlopen):
    seen, replies = urlopen
    replies.append(json.dumps({"embedding": [0.1, 0.2, 0.3]}).encode())
    service = OllamaService(host="http://ollama:11434", embed_model="nomic-embed-text")
    assert service.embed("some text") == [0.1, 0.2, 0.3]
    assert seen[0] == ("http://ollama:11434/api/embeddings", {"model": "nomic-embed-text", "prompt": "some text"})


def test_ollama_health(urlopen):
    _, replies = urlopen
    replies.append(json.dumps({"models": [{"name": "codellama:latest"}]}).encode())
    replies.append(urllib.error.URLError("down"))
    service = OllamaService(host="http://ollama:11434")
    assert service.check_health() is True
    assert service.check_health() is False


# ---------------------------------------------------------------------------
# Bedrock
# ---------------------------------------------------------------------------

class FakeBedrockClient:
    def __init__(self, bodies=None, error=None):
        self.bodies = list(bodies or [])
        self.error = error
        self.requests = []

    def invoke_model(self, modelId, body, contentType, accept):
        self.requests.append((modelId, json.loads(body)))
        if self.error is not None:
            raise self.error
        return {"body": io.BytesIO(json.dumps(self.bodies.pop(0)).encode())}


def test_bedrock_generate_lifts_system_turns():
    client = FakeBedrockClient([{"content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}]}])
    service = BedrockService(model_id="anthropic.test", embed_model_id="cohere.embed-english-v3", client=client)
    text = service.generate([
        {"role": "system", "content": "Be terse."},
        {"role": "user", "content": "one"},
        {"role": "user", "content": "two"},
    ], GenerationConfig(max_tokens=100, temperature=0.0))

    assert text == "Hi there"
    model_id, body = client.requests[0]
    assert model_id == "anthropic.test"
    assert body["system"] == "Be terse."
    assert body["messages"] == [{"role": "user", "content": "one\n\ntwo"}]
    assert body["max_tokens"] == 100
    assert body["anthropic_version"] == "bedrock-2023-05-31"


def test_bedrock_conversation_must_open_with_user():
    _, turns = BedrockService._split_system([{"role": "assistant", "content": "earlier"}])
    assert turns[0]["role"] == "user"
    assert turns[1] == {"role": "assistant", "content": "earlier"}


def test_bedrock_cohere_embed():
    client = FakeBedrockClient([{"embeddings": [[0.5, 0.25]]}])
    service = BedrockService(model_id="m", embed_model_id="cohere.embed-english-v3", client=client)
    assert service.embed("text") == [0.5, 0.25]
    assert client.requests[0][1] == {"texts": ["text"], "input_type": "search_document"}


def test_bedrock_titan_embed():
    client = FakeBedrockClient([{"embedding": [1, 2]}])
    service = BedrockService(model_id="m", embed_model_id="amazon.titan-embed-text-v2:0", client=client)
    assert service.embed("text") == [1.0, 2.0]
    assert client.requests[0][1] == {"inputText": "text"}


def test_bedrock_client_error_is_a_provider_error():
    error = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "InvokeModel")
    service = BedrockService(model_id="m", embed_model_id="cohere.embed-english-v3",
                             client=FakeBedrockClient(error=error))
    with pytest.raises(ProviderError, match="slow down"):
        service.generate([{"role": "user", "content": "hi"}])
    with pytest.raises(BedrockError):
        service.embed("text")
    assert service.check_health() is False


def test_get_provider_defaults_to_ollama():
    assert isinstance(providers.get_provider("ollama"), OllamaService)
    assert isinstance(providers.get_provider("something-else"), OllamaService)
