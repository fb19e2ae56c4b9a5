"""
Ollama service module.
Talks to a local Ollama server over its HTTP API (chat, streaming chat, embeddings).
"""

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Iterator, List, Optional

from config import ollama_config
from providers import GenerationConfig, ModelProvider, ProviderError

logger = logging.getLogger(__name__)


class OllamaService(ModelProvider):
    """Service class for a local Ollama server."""

    def __init__(
        self,
        model: Optional[str] = None,
        host: Optional[str] = None,
        embed_model: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.model = model or ollama_config.model
        self.host = (host or ollama_config.host).rstrip("/")
        self.embed_model = embed_model or ollama_config.embed_model
        self.timeout = timeout or ollama_config.request_timeout
        logger.info(f"OllamaService initialized with model: {self.model} at {self.host}")

    @property
    def name(self) -> str:
        return f"Ollama ({self.model})"

    def _request(self, path: str, payload: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        """Open a request against the server. Caller closes the response."""
        url = f"{self.host}{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST" if data is not None else "GET",
        )
        try:
            return urllib.request.urlopen(req, timeout=timeout or self.timeout)
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            raise ProviderError(f"Ollama API error {e.code}: {detail}")
        except (urllib.error.URLError, OSError) as e:
            raise ProviderError(f"Could not reach Ollama at {self.host}: {e}")

    def _chat_payload(self, messages: List[Dict[str, str]], config: GenerationConfig, stream: bool) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "num_predict": config.max_tokens,
            "num_ctx": ollama_config.num_ctx,
        }
        if config.temperature is not None:
            options["temperature"] = config.temperature
        if config.stop_sequences:
            options["stop"] = list(config.stop_sequences)
        return {"model": self.model, "messages": messages, "stream": stream, "options": options}

    def generate(self, messages: List[Dict[str, str]],
                 config: Optional[GenerationConfig] = None) -> str:
        gen_config = config or GenerationConfig()
        logger.info(f"Invoking model: {self.model}")
        with self._request("/api/chat", self._chat_payload(messages, gen_config, stream=False)) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
        try:
            body = json.loads(raw)
        except json.JSONDecodeError:
            # Some proxies return plain text
            return raw
        if body.get("error"):
            raise ProviderError(f"Ollama error: {body['error']}")
        return (body.get("message") or {}).get("content") or body.get("response") or ""

    def generate_stream(self, messages: List[Dict[str, str]],
                        config: Optional[GenerationConfig] = None) -> Iterator[str]:
        """Yield content deltas from Ollama's NDJSON stream."""
        gen_config = config or GenerationConfig()
        logger.info(f"Streaming from model: {self.model}")
        with self._request("/api/chat", self._chat_payload(messages, gen_config, stream=True)) as resp:
            for line in resp:
                line = line.strip()
                if not line:
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping malformed stream line: {line[:200]!r}")
                    continue
                if chunk.get("error"):
                    raise ProviderError(f"Ollama error: {chunk['error']}")
                text = (chunk.get("message") or {}).get("content", "")
                if text:
                    yield text
                if chunk.get("done"):
                    break

    def embed(self, text: str) -> List[float]:
        with self._request("/api/embeddings", {"model": self.embed_model, "prompt": text}) as resp:
            body = json.loads(resp.read().decode("utf-8", errors="replace"))
        embedding = body.get("embedding") or []
        return [float(x) for x in embedding]

    def list_models(self) -> List[str]:
        with self._request("/api/tags", timeout=5) as resp:
            body = json.loads(resp.read().decode("utf-8", errors="replace"))
        return [m.get("name", "") for m in body.get("models", [])]

    def check_health(self) -> bool:
        try:
            self.list_models()
            return True
        except (ProviderError, ValueError) as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False
