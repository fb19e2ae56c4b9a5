"""
Semantic memory: an append-only index of (text, embedding) entries with
brute-force cosine nearest-neighbour recall.

The index is a JSON array on disk. Embeddings come from the model provider;
when the provider cannot embed, remember() and recall() quietly do nothing.
"""

import asyncio
import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class MemoryEntry:
    """One remembered piece of text"""
    id: str
    content: str
    embedding: List[float] = field(default_factory=list)
    source: str = "chat"
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": self.embedding,
            "metadata": {"source": self.source, "timestamp": self.timestamp},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        meta = data.get("metadata") or {}
        return cls(
            id=str(data.get("id", "")),
            content=str(data.get("content", "")),
            embedding=list(data.get("embedding") or []),
            source=meta.get("source", "chat"),
            timestamp=meta.get("timestamp", ""),
        )

    def format(self) -> str:
        return f"[Memory: {self.timestamp}] {self.content}"


def cosine_scores(query: List[float], embeddings: List[List[float]]) -> np.ndarray:
    """Cosine similarity of query against each row. Rows that cannot be
    compared (wrong dimension, zero norm, non-finite) score -inf."""
    scores = np.full(len(embeddings), -np.inf)
    q = np.asarray(query, dtype=float)
    q_norm = np.linalg.norm(q)
    if q.ndim != 1 or q.size == 0 or not np.isfinite(q_norm) or q_norm == 0:
        return scores
    valid = [i for i, e in enumerate(embeddings) if len(e) == q.size]
    if not valid:
        return scores
    matrix = np.asarray([embeddings[i] for i in valid], dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = (matrix @ q) / (norms * q_norm)
    sims[~np.isfinite(sims)] = -np.inf
    scores[valid] = sims
    return scores


class SemanticMemoryStore:
    """
    Similarity memory persisted at index_path.

    Retention is capacity-bounded: once the index holds more than max_entries,
    the oldest entries are dropped on append. One writer process is assumed.
    """

    def __init__(self, provider: Any, index_path: str, max_entries: int = 1000,
                 min_content_length: int = 10):
        self.provider = provider
        self.index_path = index_path
        self.max_entries = max_entries
        self.min_content_length = min_content_length
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Index file
    # ------------------------------------------------------------------

    def load_index(self) -> List[MemoryEntry]:
        if not os.path.exists(self.index_path):
            return []
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [MemoryEntry.from_dict(d) for d in data if isinstance(d, dict)]
        except Exception as e:
            logger.warning(f"Failed to read memory index {self.index_path}: {e}")
            return []

    def _save_index(self, entries: List[MemoryEntry]) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.index_path)), exist_ok=True)
        tmp_path = self.index_path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([e.to_dict() for e in entries], f, ensure_ascii=False)
            os.replace(tmp_path, self.index_path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def __len__(self) -> int:
        return len(self.load_index())

    def clear(self) -> None:
        with self._lock:
            self._save_index([])

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def _embed(self, text: str) -> List[float]:
        try:
            vector = self.provider.embed(text) if self.provider is not None else []
        except Exception as e:
            logger.warning(f"Embedding unavailable: {e}")
            return []
        return list(vector or [])

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def remember_sync(self, content: str, source: str = "chat") -> Optional[MemoryEntry]:
        if not content or len(content.strip()) < self.min_content_length:
            return None
        embedding = self._embed(content)
        if not embedding:
            return None
        entry = MemoryEntry(
            id=uuid.uuid4().hex[:12],
            content=content,
            embedding=[float(x) for x in embedding],
            source=source,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            with self._lock:
                entries = self.load_index()
                entries.append(entry)
                if self.max_entries and len(entries) > self.max_entries:
                    dropped = len(entries) - self.max_entries
                    entries = entries[dropped:]
                    logger.debug(f"Pruned {dropped} oldest memory entries")
                self._save_index(entries)
        except Exception as e:
            logger.warning(f"Failed to store memory: {e}")
            return None
        return entry

    def recall_entries_sync(self, query: str, k: int = 5) -> List[Tuple[MemoryEntry, float]]:
        if not query or k <= 0:
            return []
        entries = self.load_index()
        if not entries:
            return []
        q = self._embed(query)
        if not q:
            return []
        try:
            scores = cosine_scores(q, [e.embedding for e in entries])
        except Exception as e:
            logger.warning(f"Memory scoring failed: {e}")
            return []
        order = np.argsort(-scores, kind="stable")
        return [(entries[i], float(scores[i])) for i in order[:k] if np.isfinite(scores[i])]

    async def remember(self, content: str, source: str = "chat") -> Optional[MemoryEntry]:
        """Embed and append content. Returns the stored entry, or None if skipped."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.remember_sync, content, source)

    async def recall_entries(self, query: str, k: int = 5) -> List[Tuple[MemoryEntry, float]]:
        """Top-k (entry, similarity) pairs, best first."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.recall_entries_sync, query, k)

    async def recall(self, query: str, k: int = 5) -> List[str]:
        """Top-k memories formatted for a prompt, best first."""
        return [entry.format() for entry, _ in await self.recall_entries(query, k)]
