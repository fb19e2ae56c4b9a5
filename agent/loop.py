"""
The orchestration loop: ask the model, run the tools it asks for, fold the
results back in, and decide whether to continue, retry or stop.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from backend import Backend, LocalBackend
from config import LoopConfig
from providers import GenerationConfig, ModelProvider
from tools import (
    EditorHost,
    TOOL_NAMES,
    TOOL_NAME_NORMALIZE,
    COMPLETE_TOOL_NAME,
    FILE_MUTATING_TOOLS,
    normalize_tool_name,
    normalize_tool_inputs,
)
from .cancellation import CancellationToken, OperationCancelled, race_cancel
from .context import build_project_context, load_file_context, retrieve_code_context
from .events import HostCallbacks, LoopState, RunOutcome, RunStatus
from .parser import ToolInvocation, parse_tool_calls
from .prompts import (
    CONTINUE_INSTRUCTION,
    CORRECTIVE_INSTRUCTION,
    NUDGE_INSTRUCTION,
    build_system_prompt,
    format_tool_results,
    looks_complete,
    trailing_question,
    trim_history,
)
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

_KNOWN_TOOL_NAMES = frozenset(TOOL_NAMES) | frozenset(TOOL_NAME_NORMALIZE)


def _call_in_thread(loop: asyncio.AbstractEventLoop, fn: Callable[[], Any]) -> "asyncio.Future[Any]":
    """Run a blocking call on a daemon thread and settle a future with its result.

    Nothing joins the thread: if the future is abandoned (the run was
    cancelled) the call finishes on its own and its result is dropped.
    """
    future = loop.create_future()

    def _settle(result: Any, error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _target() -> None:
        try:
            result, error = fn(), None
        except Exception as exc:
            result, error = None, exc
        try:
            loop.call_soon_threadsafe(_settle, result, error)
        except RuntimeError:
            logger.debug("Event loop closed before a background call finished")

    threading.Thread(target=_target, daemon=True, name="local-codex-call").start()
    return future


class AgentLoop:
    """Step-bounded agent run over one provider, backend and memory store.

    Configuration is captured at construction (or via reconfigure) and is
    never read from globals during a run.
    """

    def __init__(
        self,
        provider: ModelProvider,
        config: Optional[LoopConfig] = None,
        working_directory: str = ".",
        backend: Optional[Backend] = None,
        memory: Optional[Any] = None,
        editor: Optional[EditorHost] = None,
        generation_config: Optional[GenerationConfig] = None,
        memory_top_k: int = 5,
        max_context_chars: int = 6000,
        repo_index: Optional[Any] = None,
        code_top_k: int = 3,
        include_project_context: bool = True,
        max_file_context_chars: int = 6000,
    ):
        self.provider = provider
        self.config = config or LoopConfig()
        self.config.validate()
        self.backend = backend or LocalBackend(working_directory)
        self.working_directory = self.backend.working_directory
        self.memory = memory
        self.editor = editor
        self.generation_config = generation_config or GenerationConfig()
        self.memory_top_k = memory_top_k
        self.max_context_chars = max_context_chars
        self.repo_index = repo_index
        self.code_top_k = code_top_k
        self.include_project_context = include_project_context
        self.max_file_context_chars = max_file_context_chars
        self.state = LoopState.THINKING

    def reconfigure(self, config: LoopConfig) -> None:
        """Replace the loop ceilings. Takes effect on the next run."""
        config.validate()
        self.config = config
        logger.info(f"Loop reconfigured: steps={config.step_ceiling} retries={config.retry_ceiling} "
                    f"tool_timeout={config.per_tool_timeout:g}s stream={config.stream}")

    def _transition(self, state: LoopState) -> None:
        if state != self.state:
            logger.debug(f"Loop state {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def _recall(self, task: str) -> List[str]:
        if self.memory is None:
            return []
        try:
            return await self.memory.recall(task, self.memory_top_k)
        except Exception as e:
            logger.warning(f"Memory recall failed: {e}")
            return []

    async def _remember(self, task: str, outcome: RunOutcome) -> None:
        if self.memory is None or outcome.status == RunStatus.CANCELLED:
            return
        try:
            await self.memory.remember(f"Task: {task}\nOutcome: {outcome.describe()}", "agent")
        except Exception as e:
            logger.warning(f"Memory append failed: {e}")

    async def _project_context(self) -> Optional[str]:
        if not self.include_project_context:
            return None
        try:
            return await _call_in_thread(asyncio.get_running_loop(),
                                         lambda: build_project_context(self.backend))
        except Exception as e:
            logger.warning(f"Project context unavailable: {e}")
            return None

    async def _file_context(self, file_paths: Optional[List[str]]) -> Optional[str]:
        if not file_paths:
            return None
        try:
            text = await _call_in_thread(
                asyncio.get_running_loop(),
                lambda: load_file_context(file_paths, self.backend, max_chars=self.max_file_context_chars),
            )
        except Exception as e:
            logger.warning(f"File context unavailable: {e}")
            return None
        return text or None

    async def _code_context(self, task: str) -> List[str]:
        if self.repo_index is None:
            return []
        try:
            return await retrieve_code_context(self.repo_index, task, self.code_top_k)
        except Exception as e:
            logger.warning(f"Repository index lookup failed: {e}")
            return []

    async def _initial_messages(self, task: str, history: Optional[List[Dict[str, str]]],
                                file_paths: Optional[List[str]]) -> List[Dict[str, str]]:
        system_prompt = build_system_prompt(
            memories=await self._recall(task),
            working_directory=self.working_directory,
            project_context=await self._project_context(),
            file_context=await self._file_context(file_paths),
            code_context=await self._code_context(task),
        )
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(trim_history(history or [], self.max_context_chars))
        messages.append({"role": "user", "content": task})
        return messages

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    async def _generate(self, messages: List[Dict[str, str]], config: LoopConfig,
                        callbacks: HostCallbacks) -> str:
        loop = asyncio.get_running_loop()
        snapshot = list(messages)
        gen_config = self.generation_config
        if not config.stream:
            return await _call_in_thread(loop, lambda: self.provider.generate(snapshot, gen_config))

        chunk_queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()

        def _put(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(chunk_queue.put_nowait, item)
            except RuntimeError:
                stop.set()

        def _stream_producer():
            """Run the sync generator in a background thread, forwarding chunks to the queue."""
            try:
                for c in self.provider.generate_stream(snapshot, gen_config):
                    if stop.is_set():
                        return
                    _put(c)
                _put(None)  # sentinel: stream complete
            except Exception as exc:
                _put(exc)

        threading.Thread(target=_stream_producer, daemon=True, name="local-codex-stream").start()
        parts: List[str] = []
        try:
            while True:
                chunk = await chunk_queue.get()
                if chunk is None:
                    break
                if isinstance(chunk, Exception):
                    raise chunk
                parts.append(chunk)
                await callbacks.chunk(chunk)
        finally:
            stop.set()
        return "".join(parts)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        task: str,
        callbacks: Optional[HostCallbacks] = None,
        cancel_token: Optional[CancellationToken] = None,
        history: Optional[List[Dict[str, str]]] = None,
        file_paths: Optional[List[str]] = None,
    ) -> RunOutcome:
        """Drive the model through tool calls until a terminal state.

        file_paths are pasted into the system prompt as file context.
        """
        callbacks = callbacks or HostCallbacks()
        token = cancel_token or CancellationToken()
        config = self.config
        self._transition(LoopState.THINKING)

        if token.cancelled:
            return self._finish(LoopState.CANCELLED, RunStatus.CANCELLED, {}, [], 0, reason="Cancelled by user")

        messages = await self._initial_messages(task, history, file_paths)
        modified: Dict[str, None] = {}
        scheduler = Scheduler(
            backend=self.backend,
            per_tool_timeout=config.per_tool_timeout,
            editor=self.editor,
            cancel_token=token,
            on_progress=callbacks.progress_nowait,
        )
        outcome = await self._steps(task, messages, modified, scheduler, config, callbacks, token)
        await callbacks.drain()

        if outcome.status in (RunStatus.COMPLETED, RunStatus.PARTIAL_COMPLETION):
            lines = [outcome.summary] if outcome.summary else []
            await callbacks.summary(lines, outcome.modified_files)
        await self._remember(task, outcome)
        logger.info(f"Run finished: {outcome.status.value} after {outcome.steps} step(s), "
                    f"{len(outcome.modified_files)} file(s) modified")
        return outcome

    def _finish(self, state: LoopState, status: RunStatus, modified: Dict[str, None],
                messages: List[Dict[str, str]], steps: int, summary: str = "",
                reason: Optional[str] = None) -> RunOutcome:
        self._transition(state)
        return RunOutcome(status=status, summary=summary, modified_files=list(modified),
                          reason=reason, steps=steps, messages=messages)

    async def _steps(self, task: str, messages: List[Dict[str, str]], modified: Dict[str, None],
                     scheduler: Scheduler, config: LoopConfig, callbacks: HostCallbacks,
                     token: CancellationToken) -> RunOutcome:
        retries = 0
        for step in range(1, config.step_ceiling + 1):
            if token.cancelled:
                return self._finish(LoopState.CANCELLED, RunStatus.CANCELLED, modified, messages,
                                    step - 1, reason="Cancelled by user")

            self._transition(LoopState.THINKING)
            await callbacks.progress(f"Step {step}/{config.step_ceiling}...")
            try:
                response = await race_cancel(self._generate(messages, config, callbacks), token)
            except OperationCancelled:
                return self._finish(LoopState.CANCELLED, RunStatus.CANCELLED, modified, messages,
                                    step, reason="Cancelled by user")
            except Exception as e:
                logger.error(f"Model request failed at step {step}: {e}")
                return self._finish(LoopState.FAILED, RunStatus.FAILED, modified, messages, step,
                                    reason=f"Model request failed: {e}")

            response = response or ""
            messages.append({"role": "assistant", "content": response})
            invocations = [
                ToolInvocation(normalize_tool_name(inv.name), normalize_tool_inputs(inv.args))
                for inv in parse_tool_calls(response, _KNOWN_TOOL_NAMES)
            ]

            complete = next((inv for inv in invocations if inv.name == COMPLETE_TOOL_NAME), None)
            if complete is not None:
                summary = str(complete.args.get("summary") or "Task completed")
                return self._finish(LoopState.COMPLETED, RunStatus.COMPLETED, modified, messages, step,
                                    summary=summary)

            if invocations:
                self._transition(LoopState.EXECUTING)
                await callbacks.progress(f"Executing {len(invocations)} tool(s)...")
                results = await scheduler.run(invocations)

                if token.cancelled:
                    return self._finish(LoopState.CANCELLED, RunStatus.CANCELLED, modified, messages,
                                        step, reason="Cancelled by user")

                for inv, result in zip(invocations, results):
                    if result.success and inv.name in FILE_MUTATING_TOOLS:
                        path = self.backend.relative_path(str(inv.args.get("path", "")))
                        if path not in modified:
                            modified[path] = None
                        await callbacks.editing(path)

                report = format_tool_results([inv.name for inv in invocations], results)
                failures = [r for r in results if not r.success]
                if failures:
                    retries += 1
                    last_error = failures[-1].error or "Unknown error"
                    if retries > config.retry_ceiling:
                        return self._finish(LoopState.FAILED, RunStatus.FAILED, modified, messages, step,
                                            reason=last_error)
                    self._transition(LoopState.RETRYING)
                    messages.append({"role": "user",
                                     "content": f"Tool results:\n{report}\n\n{CORRECTIVE_INSTRUCTION}"})
                else:
                    retries = 0
                    self._transition(LoopState.CONTINUING)
                    messages.append({"role": "user",
                                     "content": f"Tool results:\n{report}\n\n{CONTINUE_INSTRUCTION}"})
                continue

            # Conversational turn
            await callbacks.response(response)
            if modified and looks_complete(response):
                return self._finish(LoopState.COMPLETED, RunStatus.COMPLETED, modified, messages, step,
                                    summary=response.strip())

            question = trailing_question(response)
            if question:
                answer = await callbacks.ask(question)
                if answer:
                    messages.append({"role": "user", "content": answer})
                    continue
            messages.append({"role": "user", "content": NUDGE_INSTRUCTION})

        if modified:
            return self._finish(LoopState.PARTIAL_COMPLETION, RunStatus.PARTIAL_COMPLETION, modified, messages,
                                config.step_ceiling, summary="Partial completion",
                                reason=f"Step limit of {config.step_ceiling} reached")
        return self._finish(LoopState.FAILED, RunStatus.FAILED, modified, messages, config.step_ceiling,
                            reason=f"Step limit of {config.step_ceiling} reached without completing the task")
