"""Editor introspection tools. The editor itself is supplied by the front end."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from tools._common import ToolResult

logger = logging.getLogger(__name__)

_MAX_EDITOR_CHARS = 20_000


class EditorHost(ABC):
    """Read-only view of the host editor state."""

    @abstractmethod
    def get_selection(self) -> Optional[str]:
        """Currently selected text, or None."""

    @abstractmethod
    def get_current_file(self) -> Optional[Tuple[str, str]]:
        """(path, content) of the active document, or None."""

    @abstractmethod
    def get_problems(self) -> List[Dict[str, Any]]:
        """Diagnostics as dicts with path, line, severity and message."""


def _no_editor(what: str) -> ToolResult:
    return ToolResult(success=False, output="", error=f"No editor is attached; {what} is unavailable.")


def get_selection(editor: Optional[EditorHost] = None, **kw: Any) -> ToolResult:
    """Get currently selected text in the editor."""
    if editor is None:
        return _no_editor("the selection")
    try:
        text = editor.get_selection()
        if not text:
            return ToolResult(success=True, output="No text selected.")
        return ToolResult(success=True, output=f"Selected text:\n```\n{text[:_MAX_EDITOR_CHARS]}\n```")
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def get_current_file(editor: Optional[EditorHost] = None, **kw: Any) -> ToolResult:
    """Get the currently open file and its content."""
    if editor is None:
        return _no_editor("the current file")
    try:
        current = editor.get_current_file()
        if not current:
            return ToolResult(success=True, output="No file is open.")
        path, content = current
        return ToolResult(
            success=True,
            output=f"Current file: {path} ({len(content.splitlines())} lines)\n```\n{content[:_MAX_EDITOR_CHARS]}\n```",
        )
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def get_problems(editor: Optional[EditorHost] = None, **kw: Any) -> ToolResult:
    """Get current errors and warnings from the editor diagnostics."""
    if editor is None:
        return _no_editor("diagnostics")
    try:
        problems = editor.get_problems() or []
        if not problems:
            return ToolResult(success=True, output="No problems found.")
        lines = [f"{len(problems)} problem(s):"]
        for p in problems[:50]:
            severity = str(p.get("severity", "error")).upper()
            lines.append(f"  [{severity}] {p.get('path', '?')}:{p.get('line', '?')}: {p.get('message', '')}")
        if len(problems) > 50:
            lines.append(f"  ... and {len(problems) - 50} more")
        return ToolResult(success=True, output="\n".join(lines))
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))
