"""Tool schema definitions, the closed capability registry and scheduling classes."""

import json
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping

from tools._common import ToolResult
from tools.file_ops import read_file, write_file, edit_file, create_directory
from tools.search_ops import list_directory, file_search, text_search, codebase_overview
from tools.external_ops import run_command, git_changes, web_fetch, web_search
from tools.editor_ops import get_selection, get_current_file, get_problems

COMPLETE_TOOL_NAME = "complete"


def _complete(summary: str = "Task completed", **kw: Any) -> ToolResult:
    """Pseudo-tool. The orchestration loop intercepts it before execution."""
    return ToolResult(success=True, output=summary or "Task completed")


def _schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_PATH = {"type": "string", "description": "File path relative to the working directory"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "read_file",
        "description": "Read the contents of a file. Optionally pass offset (1-based line) and limit to read a window.",
        "input_schema": _schema({
            "path": _PATH,
            "offset": {"type": "integer", "description": "First line to read (1-based)"},
            "limit": {"type": "integer", "description": "Number of lines to read"},
        }, ["path"]),
    },
    {
        "name": "write_file",
        "description": "Create or overwrite a file with COMPLETE content. Existing files are backed up first. Placeholders are rejected.",
        "input_schema": _schema({
            "path": _PATH,
            "content": {"type": "string", "description": "The full file content"},
        }, ["path", "content"]),
    },
    {
        "name": "edit_file",
        "description": "Edit part of a file by replacing search text with replacement text. Read the file first.",
        "input_schema": _schema({
            "path": _PATH,
            "search": {"type": "string", "description": "Exact text to find"},
            "replace": {"type": "string", "description": "Replacement text"},
            "replace_all": {"type": "boolean", "description": "Replace every occurrence (default false)"},
        }, ["path", "search", "replace"]),
    },
    {
        "name": "create_directory",
        "description": "Create a new directory (parents included).",
        "input_schema": _schema({"path": _PATH}, ["path"]),
    },
    {
        "name": "list_directory",
        "description": "List files and directories in a path (defaults to the project root).",
        "input_schema": _schema({
            "path": {"type": "string", "description": "Directory path (optional, defaults to root)"},
        }, []),
    },
    {
        "name": "file_search",
        "description": "Find files by name pattern (glob), e.g. '*.py' or 'src/**/*.ts'.",
        "input_schema": _schema({
            "pattern": {"type": "string", "description": "Glob pattern"},
            "max_results": {"type": "integer", "description": "Maximum results (default 30)"},
        }, ["pattern"]),
    },
    {
        "name": "text_search",
        "description": "Search for text (regex) across workspace files.",
        "input_schema": _schema({
            "query": {"type": "string", "description": "Text or regex to search for"},
            "include": {"type": "string", "description": "Optional glob filter, e.g. '*.py'"},
            "max_results": {"type": "integer", "description": "Maximum matching lines (default 20)"},
        }, ["query"]),
    },
    {
        "name": "codebase_overview",
        "description": "Analyze the codebase structure and give an overview (language, manifests, directories).",
        "input_schema": _schema({}, []),
    },
    {
        "name": "run_command",
        "description": "Execute a shell command in the project directory. Destructive commands are blocked.",
        "input_schema": _schema({
            "command": {"type": "string", "description": "Shell command to run"},
            "timeout": {"type": "integer", "description": "Timeout in seconds (optional)"},
        }, ["command"]),
    },
    {
        "name": "git_changes",
        "description": "Get current git changes (staged and unstaged).",
        "input_schema": _schema({}, []),
    },
    {
        "name": "web_search",
        "description": "Search the internet for information, documentation, or code examples.",
        "input_schema": _schema({
            "query": {"type": "string", "description": "Search query"},
            "max_results": {"type": "integer", "description": "Number of results (default 5, max 10)"},
        }, ["query"]),
    },
    {
        "name": "web_fetch",
        "description": "Fetch readable text from a URL (documentation, API docs, etc).",
        "input_schema": _schema({"url": {"type": "string", "description": "http(s) URL to fetch"}}, ["url"]),
    },
    {
        "name": "get_selection",
        "description": "Get the currently selected text in the editor.",
        "input_schema": _schema({}, []),
    },
    {
        "name": "get_current_file",
        "description": "Get the currently open file and its content.",
        "input_schema": _schema({}, []),
    },
    {
        "name": "get_problems",
        "description": "Get current errors and warnings from editor diagnostics.",
        "input_schema": _schema({}, []),
    },
    {
        "name": COMPLETE_TOOL_NAME,
        "description": "Finish the task. Give a short summary of what was done.",
        "input_schema": _schema({
            "summary": {"type": "string", "description": "What was accomplished"},
        }, ["summary"]),
    },
]

TOOL_IMPLEMENTATIONS: Mapping[str, Callable[..., ToolResult]] = MappingProxyType({
    "read_file": read_file,
    "write_file": write_file,
    "edit_file": edit_file,
    "create_directory": create_directory,
    "list_directory": list_directory,
    "file_search": file_search,
    "text_search": text_search,
    "codebase_overview": codebase_overview,
    "run_command": run_command,
    "git_changes": git_changes,
    "web_search": web_search,
    "web_fetch": web_fetch,
    "get_selection": get_selection,
    "get_current_file": get_current_file,
    "get_problems": get_problems,
    COMPLETE_TOOL_NAME: _complete,
})

TOOL_NAMES = frozenset(TOOL_IMPLEMENTATIONS)

# Map names models commonly emit to canonical tool names
TOOL_NAME_NORMALIZE = {
    "readFile": "read_file",
    "writeFile": "write_file",
    "createFile": "write_file",
    "editFile": "edit_file",
    "createDirectory": "create_directory",
    "mkdir": "create_directory",
    "listDirectory": "list_directory",
    "listFiles": "list_directory",
    "list_files": "list_directory",
    "fileSearch": "file_search",
    "glob": "file_search",
    "textSearch": "text_search",
    "search": "text_search",
    "grep": "text_search",
    "codebase": "codebase_overview",
    "runInTerminal": "run_command",
    "runCommand": "run_command",
    "bash": "run_command",
    "changes": "git_changes",
    "webSearch": "web_search",
    "fetchUrl": "web_fetch",
    "fetchWebpage": "web_fetch",
    "selection": "get_selection",
    "currentFile": "get_current_file",
    "problems": "get_problems",
    "done": COMPLETE_TOOL_NAME,
}

# Mutating calls: serialized in submitted order
DEPENDENT_TOOLS = frozenset({"write_file", "edit_file", "create_directory", "run_command"})
# Successful calls to these add the path to the run's modified-file set
FILE_MUTATING_TOOLS = frozenset({"write_file", "edit_file"})
INDEPENDENT_TOOLS = TOOL_NAMES - DEPENDENT_TOOLS - {COMPLETE_TOOL_NAME}


def normalize_tool_name(name: str) -> str:
    name = (name or "").strip()
    return TOOL_NAME_NORMALIZE.get(name, name)


def _example_args(definition: Dict[str, Any]) -> str:
    props = definition["input_schema"]["properties"]
    required = definition["input_schema"]["required"]
    example = {k: props[k]["description"] for k in props if k in required}
    return json.dumps(example)


def get_tool_descriptions() -> str:
    """Tool list for the system prompt, one entry per capability."""
    lines = []
    for d in TOOL_DEFINITIONS:
        lines.append(f"- {d['name']}: {d['description']}\n  args: {_example_args(d)}")
    return "\n".join(lines)
