"""
Run outcome, loop state and host callback types.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class LoopState(Enum):
    THINKING = "thinking"
    EXECUTING = "executing"
    CONTINUING = "continuing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    PARTIAL_COMPLETION = "partial_completion"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunStatus(Enum):
    """Terminal status of one orchestration run"""
    COMPLETED = "completed"
    PARTIAL_COMPLETION = "partial_completion"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunOutcome:
    """Result of AgentLoop.run"""
    status: RunStatus
    summary: str = ""
    modified_files: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    steps: int = 0
    messages: List[Dict[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def describe(self) -> str:
        """One-line text for front ends and the memory store."""
        if self.status == RunStatus.COMPLETED:
            return self.summary or "Task completed"
        if self.status == RunStatus.PARTIAL_COMPLETION:
            return f"Partial completion: modified {len(self.modified_files)} file(s)"
        if self.status == RunStatus.CANCELLED:
            return "Cancelled by user"
        return f"Failed: {self.reason or 'unknown error'}"


@dataclass
class HostCallbacks:
    """Narrow interface to the front end. Each hook may be sync or async."""
    on_editing: Optional[Callable[[str], Any]] = None
    on_progress: Optional[Callable[[str], Any]] = None
    on_ask: Optional[Callable[[str], Any]] = None
    on_summary: Optional[Callable[[List[str], List[str]], Any]] = None
    on_response: Optional[Callable[[str], Any]] = None
    on_chunk: Optional[Callable[[str], Any]] = None
    _pending: Set["asyncio.Future[None]"] = field(default_factory=set, init=False, repr=False, compare=False)

    async def _call(self, hook: Optional[Callable[..., Any]], *args: Any) -> Any:
        if hook is None:
            return None
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception:
            logger.exception("Host callback failed")
            return None

    async def editing(self, path: str) -> None:
        await self._call(self.on_editing, path)

    async def progress(self, message: str) -> None:
        await self._call(self.on_progress, message)

    async def ask(self, question: str) -> Optional[str]:
        answer = await self._call(self.on_ask, question)
        return answer if isinstance(answer, str) and answer.strip() else None

    async def summary(self, lines: List[str], files: List[str]) -> None:
        await self._call(self.on_summary, lines, files)

    async def response(self, text: str) -> None:
        await self._call(self.on_response, text)

    async def chunk(self, text: str) -> None:
        await self._call(self.on_chunk, text)

    def progress_nowait(self, message: str) -> None:
        """Fire-and-forget progress from code already running on the event loop."""
        if self.on_progress is None:
            return
        task = asyncio.ensure_future(self.progress(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for fire-and-forget progress still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
