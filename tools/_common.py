"""Shared types for the tools package."""

from dataclasses import dataclass
from typing import Callable, Optional


ProgressFn = Callable[[str], None]


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None

    def to_text(self) -> str:
        """Text shown to the model for this result."""
        if self.success:
            return self.output or "(no output)"
        return self.error or "Unknown error"


def _report(on_progress: Optional[ProgressFn], message: str) -> None:
    """Send a progress string to the host, ignoring callback failures."""
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception:
        pass


def _require_arg(value: Optional[str], name: str = "path") -> Optional[ToolResult]:
    """Return an error ToolResult if a required string argument is empty; else None."""
    if not isinstance(value, str) or not value.strip():
        return ToolResult(success=False, output="", error=f"{name} is required")
    return None
