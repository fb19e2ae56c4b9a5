"""Command line wiring: arguments, agent construction and REPL commands."""

import asyncio
import os

import pytest

import main
from agent import AgentLoop, repo_index_path
from config import LoopConfig
from conftest import FakeProvider
from memory_store import SemanticMemoryStore


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point the memory files at a scratch directory."""
    monkeypatch.setattr(main.memory_config, "enabled", True)
    monkeypatch.setattr(main.memory_config, "index_file", str(tmp_path / "home" / "index.json"))
    monkeypatch.setattr(main.memory_config, "repo_index_dir", str(tmp_path / "home" / "rag"))
    return str(tmp_path / "home")


def test_parser_context_flags():
    args = main.build_parser().parse_args([
        "--file", "src", "--file", "README.md", "--index", "--no-project-context", "explain", "this",
    ])
    assert args.file_paths == ["src", "README.md"]
    assert args.index and args.no_project_context
    assert args.task == ["explain", "this"]


def test_loop_overrides_only_set_flags():
    args = main.build_parser().parse_args(["--max-steps", "3", "--tool-timeout", "9"])
    assert main.loop_overrides(args) == {
        "step_ceiling": 3, "retry_ceiling": None, "per_tool_timeout": 9.0, "stream": None,
    }
    assert main.loop_overrides(main.build_parser().parse_args(["--stream"]))["stream"] is True


def test_build_agent_wires_context_options(project, home):
    args = main.build_parser().parse_args(["--index", "--no-project-context", "--max-retries", "5"])
    agent = main.build_agent(args, FakeProvider(), project)
    assert agent.include_project_context is False
    assert agent.config.retry_ceiling == 5
    assert agent.repo_index.index_path == repo_index_path(project, os.path.join(home, "rag"))


def test_build_agent_without_index_file_has_no_repo_index(project, home):
    agent = main.build_agent(main.build_parser().parse_args([]), FakeProvider(), project)
    assert agent.repo_index is None
    assert agent.memory is not None


def test_build_repo_index_counts_chunks(project, tmp_path):
    with open(os.path.join(project, "app.py"), "w") as f:
        f.write("def handler(event):\n    return event\n")
    store = SemanticMemoryStore(FakeProvider(), str(tmp_path / "rag" / "repo.json"))
    agent = AgentLoop(FakeProvider(), LoopConfig(), working_directory=project, repo_index=store)
    assert main.build_repo_index(agent) == 1
    assert len(store) == 1


def test_build_repo_index_without_store(project):
    agent = AgentLoop(FakeProvider(), LoopConfig(), working_directory=project)
    assert main.build_repo_index(agent) == 0


def test_reload_keeps_command_line_overrides(project, monkeypatch):
    answers = iter(["/reload", "/exit"])
    monkeypatch.setattr(main.Prompt, "ask", lambda *a, **k: next(answers))
    monkeypatch.setattr(main, "reload_config", lambda: None)
    monkeypatch.setenv("AGENT_MAX_STEPS", "7")
    monkeypatch.setenv("AGENT_MAX_RETRIES", "4")

    args = main.build_parser().parse_args(["--max-steps", "3"])
    agent = AgentLoop(FakeProvider(), LoopConfig(step_ceiling=3), working_directory=project)
    asyncio.run(main.repl(agent, None, project, args))

    assert agent.config.step_ceiling == 3
    assert agent.config.retry_ceiling == 4
