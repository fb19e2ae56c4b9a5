"""
Concurrent/sequential execution of one batch of tool invocations.

Read-only calls run together in executor threads; mutating calls (writes,
edits, directory creation, shell commands) run one at a time in the order the
model listed them. Results come back aligned with the submitted order.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from backend import Backend, LocalBackend
from tools import ToolResult, EditorHost, execute_tool, normalize_tool_name, DEPENDENT_TOOLS
from .cancellation import CancellationToken, OperationCancelled, race_cancel
from .parser import ToolInvocation

logger = logging.getLogger(__name__)

# Extra time a command gets over its own timeout before the scheduler gives up on it
_COMMAND_GRACE_SECONDS = 2.0


def is_dependent(invocation: ToolInvocation) -> bool:
    return normalize_tool_name(invocation.name) in DEPENDENT_TOOLS


def partition(invocations: List[ToolInvocation]) -> Tuple[List[Tuple[int, ToolInvocation]], List[Tuple[int, ToolInvocation]]]:
    """Split into (independent, dependent) lists of (position, invocation)."""
    independent, dependent = [], []
    for i, inv in enumerate(invocations):
        (dependent if is_dependent(inv) else independent).append((i, inv))
    return independent, dependent


class Scheduler:
    def __init__(
        self,
        working_directory: str = ".",
        backend: Optional[Backend] = None,
        per_tool_timeout: float = 30.0,
        editor: Optional[EditorHost] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[str], None]] = None,
    ):
        self.backend = backend or LocalBackend(working_directory)
        self.working_directory = self.backend.working_directory
        self.per_tool_timeout = per_tool_timeout
        self.editor = editor
        self.cancel_token = cancel_token
        self.on_progress = on_progress

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    async def run(self, invocations: List[ToolInvocation]) -> List[ToolResult]:
        """Execute a batch: independents concurrently, then dependents in order."""
        loop = asyncio.get_running_loop()
        results: List[Optional[ToolResult]] = [None] * len(invocations)
        independent, dependent = partition(invocations)
        logger.debug(f"Scheduling {len(independent)} independent, {len(dependent)} dependent call(s)")

        if independent:
            gathered = await asyncio.gather(*[self._run_one(inv, loop) for _, inv in independent])
            for (i, _), result in zip(independent, gathered):
                results[i] = result

        for i, inv in dependent:
            results[i] = await self._run_one(inv, loop)

        return [r if r is not None else ToolResult(success=False, output="", error="Cancelled") for r in results]

    def _threadsafe_progress(self, loop: asyncio.AbstractEventLoop) -> Optional[Callable[[str], None]]:
        if self.on_progress is None:
            return None
        on_progress = self.on_progress

        def _emit(message: str) -> None:
            try:
                loop.call_soon_threadsafe(on_progress, message)
            except RuntimeError:
                # Event loop already closed
                pass
        return _emit

    async def _run_one(self, inv: ToolInvocation, loop: asyncio.AbstractEventLoop) -> ToolResult:
        if self.cancelled:
            return ToolResult(success=False, output="", error="Cancelled")

        name = normalize_tool_name(inv.name)
        args = dict(inv.args or {})
        limit = self.per_tool_timeout
        if name == "run_command":
            try:
                command_timeout = float(args.get("timeout") or self.per_tool_timeout)
            except (TypeError, ValueError):
                command_timeout = self.per_tool_timeout
            args["timeout"] = command_timeout
            limit = command_timeout + _COMMAND_GRACE_SECONDS

        progress = self._threadsafe_progress(loop)
        call = loop.run_in_executor(
            None,
            lambda: execute_tool(name, args, self.working_directory, self.backend,
                                 editor=self.editor, on_progress=progress),
        )
        try:
            return await race_cancel(asyncio.wait_for(call, limit), self.cancel_token)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name} timed out after {limit:g}s")
            if name == "run_command":
                self.backend.cancel_running_command()
            return ToolResult(success=False, output="", error=f"Tool timed out after {limit:g}s")
        except OperationCancelled:
            if name == "run_command":
                self.backend.cancel_running_command()
            return ToolResult(success=False, output="", error="Cancelled")
