"""
Agent package - the orchestration core of Local Codex.

- parser: tool-call extraction from model text
- scheduler: concurrent/sequential execution of a tool batch
- cancellation: cancellation token and cancel-aware awaiting
- events: loop states, run outcome and host callbacks
- prompts: system prompt and loop instructions
- loop: the AgentLoop state machine
- intent: fast-path answers for trivial requests
- context: project summary, file context and repository index
"""

from .parser import ToolInvocation, parse_tool_calls
from .cancellation import CancellationToken, OperationCancelled, race_cancel
from .events import HostCallbacks, LoopState, RunOutcome, RunStatus
from .scheduler import Scheduler, partition, is_dependent
from .prompts import build_system_prompt, CORRECTIVE_INSTRUCTION, CONTINUE_INSTRUCTION, NUDGE_INSTRUCTION
from .loop import AgentLoop
from .intent import route_intent, evaluate_math
from .context import (
    build_project_context, load_file_context, index_repository, repo_index_path, retrieve_code_context,
)

__all__ = [
    # Parsing
    "ToolInvocation",
    "parse_tool_calls",

    # Cancellation
    "CancellationToken",
    "OperationCancelled",
    "race_cancel",

    # Data types
    "HostCallbacks",
    "LoopState",
    "RunOutcome",
    "RunStatus",

    # Execution
    "Scheduler",
    "partition",
    "is_dependent",
    "AgentLoop",

    # Prompts
    "build_system_prompt",
    "CORRECTIVE_INSTRUCTION",
    "CONTINUE_INSTRUCTION",
    "NUDGE_INSTRUCTION",

    # Intent routing
    "route_intent",
    "evaluate_math",

    # Context
    "build_project_context",
    "load_file_context",
    "index_repository",
    "repo_index_path",
    "retrieve_code_context",
]
