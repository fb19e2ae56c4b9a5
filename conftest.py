"""Shared fixtures: scripted model provider, deterministic embedder, temp project."""

import hashlib
import re
import threading
from typing import Dict, Iterator, List, Optional, Union

import pytest

from backend import LocalBackend
from providers import GenerationConfig, ModelProvider, ProviderError


def _bag_of_words(text: str, dims: int = 64) -> List[float]:
    vector = [0.0] * dims
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dims
        vector[bucket] += 1.0
    return vector


class FakeProvider(ModelProvider):
    """Replays scripted responses. The last response repeats once the script runs out.
    An Exception in the script is raised instead of returned."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None,
                 embeddings: bool = True, block: Optional[threading.Event] = None):
        self.responses = list(responses or ["Nothing to do."])
        self.calls: List[List[Dict[str, str]]] = []
        self.embed_calls: List[str] = []
        self.embeddings = embeddings
        self.block = block

    @property
    def name(self) -> str:
        return "Fake"

    def generate(self, messages: List[Dict[str, str]],
                 config: Optional[GenerationConfig] = None) -> str:
        self.calls.append([dict(m) for m in messages])
        if self.block is not None:
            self.block.wait(5)
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response

    def generate_stream(self, messages: List[Dict[str, str]],
                        config: Optional[GenerationConfig] = None) -> Iterator[str]:
        text = self.generate(messages, config)
        for i in range(0, len(text), 7):
            yield text[i:i + 7]

    def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if not self.embeddings:
            raise ProviderError("embeddings unavailable")
        return _bag_of_words(text)


@pytest.fixture
def project(tmp_path):
    """Empty working directory as a string path."""
    return str(tmp_path)


@pytest.fixture
def backend(project):
    return LocalBackend(project)


@pytest.fixture
def fake_provider_cls():
    return FakeProvider
