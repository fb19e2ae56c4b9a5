"""
Model provider interface shared by the Ollama and Bedrock services.
The orchestration loop and the memory store only talk to this interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from config import get_provider_name

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the model or embedding endpoint cannot serve a request"""
    pass


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = 4096
    temperature: Optional[float] = 0.2
    stop_sequences: Optional[List[str]] = None


class ModelProvider(ABC):
    """Chat inference and embeddings for one backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider/model name."""

    @abstractmethod
    def generate(self, messages: List[Dict[str, str]],
                 config: Optional[GenerationConfig] = None) -> str:
        """Return the full response text for an ordered {role, content} list."""

    def generate_stream(self, messages: List[Dict[str, str]],
                        config: Optional[GenerationConfig] = None) -> Iterator[str]:
        """Yield response text incrementally. Default: one chunk."""
        yield self.generate(messages, config)

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embedding vector for text. Empty list when embeddings are unavailable."""

    def check_health(self) -> bool:
        """True when the endpoint is reachable."""
        return True


def get_provider(name: Optional[str] = None, model: Optional[str] = None) -> ModelProvider:
    """Build the configured provider. Defaults to Ollama."""
    key = (name or get_provider_name()).strip().lower()
    if key == "bedrock":
        from bedrock_service import BedrockService
        return BedrockService(model_id=model)
    if key != "ollama":
        logger.warning(f"Unknown provider {key!r}, falling back to ollama")
    from ollama_service import OllamaService
    return OllamaService(model=model)
