"""
Short-term conversation memory: the last few user/assistant turns, kept in a
small JSON file so the next session can pick up the thread.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List

logger = logging.getLogger(__name__)


class ConversationMemory:
    def __init__(self, path: str, max_items: int = 20):
        self.path = path
        self.max_items = max_items

    def load(self) -> List[Dict[str, str]]:
        """Last max_items turns. A missing or corrupt file reads as empty."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                items = json.load(f)
        except Exception as e:
            logger.warning(f"Failed to read conversation memory {self.path}: {e}")
            return []
        if not isinstance(items, list):
            return []
        items = [i for i in items if isinstance(i, dict) and i.get("role") in ("user", "assistant")]
        return items[-self.max_items:]

    def _save(self, items: List[Dict[str, str]]) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp_path = self.path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def append(self, role: str, content: str) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported role: {role}")
        items = self.load()
        items.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "role": role,
            "content": content,
        })
        try:
            self._save(items[-self.max_items:])
        except OSError as e:
            logger.warning(f"Failed to save conversation memory: {e}")

    def as_messages(self) -> List[Dict[str, str]]:
        return [{"role": i["role"], "content": str(i.get("content", ""))} for i in self.load()]

    def clear(self) -> None:
        self._save([])
