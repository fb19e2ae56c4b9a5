"""Tool execution dispatch."""

import logging
from typing import Any, Dict, Optional

from backend import Backend
from tools._common import ToolResult, ProgressFn
from tools.editor_ops import EditorHost
from tools.schemas import TOOL_IMPLEMENTATIONS, normalize_tool_name

logger = logging.getLogger(__name__)

# Argument names models borrow from other agent tool sets
_ARG_ALIASES = {
    "old_string": "search",
    "old_str": "search",
    "new_string": "replace",
    "new_str": "replace",
    "file_path": "path",
    "filePath": "path",
    "file_text": "content",
    "cmd": "command",
}

# Tools that read from the attached editor
_EDITOR_TOOLS = {"get_selection", "get_current_file", "get_problems"}


def normalize_tool_inputs(inputs: Dict[str, Any]) -> Dict[str, Any]:
    """Rename legacy argument keys to the canonical ones. Canonical keys win."""
    normalized: Dict[str, Any] = {}
    for key, value in (inputs or {}).items():
        canonical = _ARG_ALIASES.get(key, key)
        if canonical in normalized and canonical != key:
            continue
        normalized[canonical] = value
    return normalized


def execute_tool(
    name: str,
    inputs: Dict[str, Any],
    working_directory: str = ".",
    backend: Optional[Backend] = None,
    *,
    editor: Optional[EditorHost] = None,
    on_progress: Optional[ProgressFn] = None,
) -> ToolResult:
    """Execute a tool by name with the given inputs. Never raises."""
    name = normalize_tool_name(name)
    impl = TOOL_IMPLEMENTATIONS.get(name)
    if not impl:
        return ToolResult(success=False, output="", error=f"Unknown tool: {name}")
    if inputs is not None and not isinstance(inputs, dict):
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: args must be an object")

    kwargs = dict(normalize_tool_inputs(inputs or {}), working_directory=working_directory, backend=backend)
    kwargs["on_progress"] = on_progress
    if name in _EDITOR_TOOLS:
        kwargs["editor"] = editor
    try:
        return impl(**kwargs)
    except TypeError as e:
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: {e}")
    except Exception as e:
        logger.exception(f"Tool execution error: {name}")
        return ToolResult(success=False, output="", error=f"Tool error: {e}")
