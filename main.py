"""
Local Codex - terminal front end.

One-shot:    local-codex "add a /health endpoint to app.py"
Interactive: local-codex            (REPL; /help for commands)
Health:      local-codex --doctor
"""

import asyncio
import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from agent import (
    AgentLoop, CancellationToken, HostCallbacks, RunOutcome, RunStatus,
    index_repository, repo_index_path, route_intent,
)
from backend import LocalBackend
from config import (
    LoopConfig, app_config, loop_config, memory_config, model_config,
    get_model_name, reload_config,
)
from conversation_memory import ConversationMemory
from memory_store import SemanticMemoryStore
from providers import GenerationConfig, ModelProvider, ProviderError, get_provider

# Configure logging to file so it doesn't interfere with the console output
logging.basicConfig(
    filename=app_config.log_file,
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

console = Console()

_STATUS_STYLES = {
    RunStatus.COMPLETED: ("Completed", "green"),
    RunStatus.PARTIAL_COMPLETION: ("Partial completion", "yellow"),
    RunStatus.FAILED: ("Failed", "red"),
    RunStatus.CANCELLED: ("Cancelled", "magenta"),
}

REPL_HELP = """Commands:
  /help     Show this help
  /clear    Forget the short-term conversation
  /reload   Re-read .env and apply new loop settings
  /index    Rebuild the code index for this directory
  /exit     Quit"""


# ============================================================
# Callbacks and rendering
# ============================================================

def _make_callbacks(interactive: bool, stream: bool) -> HostCallbacks:
    def on_progress(message: str) -> None:
        console.print(f"[dim]  {message}[/dim]")

    def on_editing(path: str) -> None:
        console.print(f"[cyan]  ✏ {path}[/cyan]")

    def on_response(text: str) -> None:
        if not stream:
            console.print(Markdown(text))
        else:
            console.print()

    def on_chunk(text: str) -> None:
        console.print(text, end="", markup=False, highlight=False)

    def on_ask(question: str) -> Optional[str]:
        if not interactive:
            return None
        return Prompt.ask(f"[bold yellow]?[/bold yellow] {question}", default="", console=console)

    return HostCallbacks(
        on_editing=on_editing,
        on_progress=on_progress,
        on_ask=on_ask,
        on_response=on_response,
        on_chunk=on_chunk if stream else None,
    )


def render_outcome(outcome: RunOutcome) -> None:
    label, style = _STATUS_STYLES[outcome.status]
    body = outcome.summary if outcome.status == RunStatus.COMPLETED else outcome.describe()
    if outcome.reason and outcome.status == RunStatus.FAILED:
        body = outcome.reason
    console.print(Panel(body or label, title=f"[bold {style}]{label}[/bold {style}]",
                        subtitle=f"{outcome.steps} step(s)", border_style=style))
    if outcome.modified_files:
        table = Table(title="Modified files", show_header=False, box=None)
        for path in outcome.modified_files:
            table.add_row(f"[cyan]{path}[/cyan]")
        console.print(table)


# ============================================================
# Wiring
# ============================================================

def loop_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Loop settings given on the command line. Re-applied on /reload."""
    return {
        "step_ceiling": args.max_steps,
        "retry_ceiling": args.max_retries,
        "per_tool_timeout": args.tool_timeout,
        "stream": True if args.stream else None,
    }


def build_agent(args: argparse.Namespace, provider: ModelProvider, working_dir: str) -> AgentLoop:
    config = loop_config.with_overrides(**loop_overrides(args))

    memory = None
    repo_index = None
    if memory_config.enabled and not args.no_memory:
        memory = SemanticMemoryStore(
            provider,
            memory_config.index_file,
            max_entries=memory_config.max_entries,
            min_content_length=memory_config.min_content_length,
        )
        index_path = repo_index_path(working_dir, memory_config.repo_index_dir)
        if args.index or os.path.exists(index_path):
            repo_index = SemanticMemoryStore(
                provider,
                index_path,
                max_entries=memory_config.max_entries,
                min_content_length=memory_config.min_content_length,
            )

    return AgentLoop(
        provider,
        config,
        working_directory=working_dir,
        backend=LocalBackend(working_dir),
        memory=memory,
        generation_config=GenerationConfig(
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
        ),
        memory_top_k=memory_config.top_k,
        max_context_chars=memory_config.max_context_chars,
        repo_index=repo_index,
        code_top_k=memory_config.code_top_k,
        include_project_context=app_config.project_context_enabled and not args.no_project_context,
        max_file_context_chars=memory_config.max_context_chars,
    )


def build_repo_index(agent: AgentLoop) -> int:
    """(Re)index the working directory into the agent's repository index."""
    if agent.repo_index is None:
        console.print("[yellow]Repository indexing needs memory enabled.[/yellow]")
        return 0
    with console.status("[dim]Indexing repository...[/dim]"):
        count = index_repository(agent.repo_index, agent.backend,
                                 max_files=memory_config.repo_index_max_files, force=True)
    if count:
        console.print(f"[dim]Indexed {count} chunk(s) into {agent.repo_index.index_path}[/dim]")
    else:
        console.print("[yellow]Nothing indexed (no source files, or embeddings unavailable).[/yellow]")
    return count


async def run_task(agent: AgentLoop, task: str, conversation: Optional[ConversationMemory],
                   interactive: bool, file_paths: Optional[List[str]] = None) -> RunOutcome:
    """Run one task with Ctrl+C wired to the cancellation token."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    history = conversation.as_messages() if conversation else None
    try:
        outcome = await agent.run(task, _make_callbacks(interactive, agent.config.stream), token, history,
                                  file_paths=file_paths)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    if conversation and outcome.status != RunStatus.CANCELLED:
        conversation.append("user", task)
        conversation.append("assistant", outcome.describe())
    return outcome


def answer_locally(task: str, working_dir: str) -> Optional[str]:
    if not app_config.intent_routing_enabled:
        return None
    try:
        return route_intent(task, working_dir)
    except Exception as e:
        logger.warning(f"Intent routing failed: {e}")
        return None


def run_doctor(provider: ModelProvider, working_dir: str) -> int:
    """Check provider, embeddings and local tooling. Returns an exit code."""
    table = Table(title="Local Codex doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail")
    ok = True

    healthy = False
    try:
        healthy = provider.check_health()
    except Exception as e:
        logger.warning(f"Health check raised: {e}")
    ok &= healthy
    table.add_row("Model provider", "[green]ok[/green]" if healthy else "[red]unreachable[/red]", provider.name)

    try:
        dims = len(provider.embed("local codex doctor"))
    except (ProviderError, ValueError) as e:
        logger.warning(f"Embedding check failed: {e}")
        dims = 0
    table.add_row("Embeddings", "[green]ok[/green]" if dims else "[yellow]unavailable[/yellow]",
                  f"{dims} dimensions" if dims else "semantic memory disabled")

    backend = LocalBackend(working_dir)
    _, _, rc = backend.run_command("rg --version", timeout=10)
    table.add_row("ripgrep", "[green]ok[/green]" if rc == 0 else "[yellow]missing[/yellow]",
                  "text_search" if rc == 0 else "falling back to grep")
    _, _, rc = backend.run_command("git --version", timeout=10)
    table.add_row("git", "[green]ok[/green]" if rc == 0 else "[yellow]missing[/yellow]", "git_changes")

    config_ok = True
    try:
        os.makedirs(app_config.config_dir, exist_ok=True)
    except OSError:
        config_ok = False
    ok &= config_ok
    table.add_row("Config dir", "[green]ok[/green]" if config_ok else "[red]not writable[/red]",
                  app_config.config_dir)

    console.print(table)
    return 0 if ok else 1


async def repl(agent: AgentLoop, conversation: Optional[ConversationMemory], working_dir: str,
               args: argparse.Namespace) -> None:
    console.print(Panel(f"{app_config.title} • {agent.provider.name}\n{working_dir}\n\n{REPL_HELP}",
                        border_style="blue"))
    while True:
        try:
            task = Prompt.ask("[bold blue]>[/bold blue]", console=console).strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            return
        if not task:
            continue
        if task in ("/exit", "/quit"):
            return
        if task == "/help":
            console.print(REPL_HELP)
            continue
        if task == "/clear":
            if conversation:
                conversation.clear()
            console.print("[dim]Conversation cleared.[/dim]")
            continue
        if task == "/reload":
            reload_config()
            agent.reconfigure(LoopConfig.from_env().with_overrides(**loop_overrides(args)))
            console.print("[dim]Configuration reloaded.[/dim]")
            continue
        if task == "/index":
            build_repo_index(agent)
            continue

        local = answer_locally(task, working_dir)
        if local is not None:
            console.print(local)
            continue
        outcome = await run_task(agent, task, conversation, interactive=True, file_paths=args.file_paths)
        render_outcome(outcome)


# ============================================================
# Entry Point
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Local Codex - local AI coding assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  local-codex                              Interactive session in the current directory
  local-codex "add tests for utils.py"     Run one task and exit
  local-codex -d ~/proj --provider bedrock Use Amazon Bedrock in ~/proj
  local-codex --file src "explain this"    Put src/ in the prompt as context
  local-codex --index                      Index the repository, then start a session
  local-codex --doctor                     Check the model server and tools
        """,
    )
    parser.add_argument("task", nargs="*", help="Task to run (omit for interactive mode)")
    parser.add_argument("-d", "--directory", default=app_config.working_directory,
                        help="Working directory for the agent (default: current directory)")
    parser.add_argument("--provider", choices=["ollama", "bedrock"], help="Model provider")
    parser.add_argument("--model", help="Model name or Bedrock model id")
    parser.add_argument("--max-steps", type=int, help="Step ceiling per task")
    parser.add_argument("--max-retries", type=int, help="Consecutive failed tool batches allowed")
    parser.add_argument("--tool-timeout", type=float, help="Per-tool timeout in seconds")
    parser.add_argument("--file", dest="file_paths", action="append", metavar="PATH",
                        help="File or directory to include as context (repeatable)")
    parser.add_argument("--index", action="store_true",
                        help="Index the repository for code retrieval before running")
    parser.add_argument("--no-project-context", action="store_true",
                        help="Leave the project summary out of the system prompt")
    parser.add_argument("--no-memory", action="store_true", help="Disable semantic and conversation memory")
    parser.add_argument("--stream", action="store_true", help="Stream model output as it is generated")
    parser.add_argument("--doctor", action="store_true", help="Check provider health and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    working_dir = os.path.abspath(os.path.expanduser(args.directory))
    if not os.path.isdir(working_dir):
        console.print(f"[red]Error: {working_dir} is not a directory[/red]")
        return 1

    try:
        provider = get_provider(args.provider, args.model)
    except ProviderError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    if args.doctor:
        return run_doctor(provider, working_dir)

    try:
        agent = build_agent(args, provider, working_dir)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        return 2

    conversation = None
    if memory_config.enabled and not args.no_memory:
        conversation = ConversationMemory(memory_config.short_term_file, memory_config.max_short_term_items)

    logger.info(f"Starting in {working_dir} with {provider.name} (model {args.model or get_model_name()})")

    if args.index:
        build_repo_index(agent)

    task = " ".join(args.task).strip()
    if not task:
        asyncio.run(repl(agent, conversation, working_dir, args))
        return 0

    local = answer_locally(task, working_dir)
    if local is not None:
        console.print(local)
        return 0
    outcome = asyncio.run(run_task(agent, task, conversation, interactive=sys.stdin.isatty(),
                                   file_paths=args.file_paths))
    render_outcome(outcome)
    return 0 if outcome.status == RunStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
