"""File operation tools: read, write, edit, create_directory."""

import os
import re
import difflib
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from backend import Backend, LocalBackend
from tools._common import ToolResult, ProgressFn, _report, _require_arg
from tools.gitignore import BACKUP_DIR_NAME

logger = logging.getLogger(__name__)

_READ_MAX_BYTES = 100_000
MIN_CONTENT_LENGTH = 10

# Whole-body placeholders: rejected when the content is nothing but one of these
_PLACEHOLDER_BODIES = {
    "...", "…", "// TODO", "# TODO", "TODO", "/* TODO */",
    "// implementation", "/* code */", "...code here", "// code here", "# code here",
}

# Rejected wherever they appear as a line of their own
_PLACEHOLDER_LINES = {
    "...code here", "// code here", "# code here", "/* code */",
    "// implementation", "// rest of the code", "# rest of the code",
    "// ... rest of the code", "# ... rest of the code",
}


def validate_content(content: Any) -> Optional[str]:
    """Return a rejection reason for write content, or None if it is acceptable."""
    if not isinstance(content, str):
        return "content must be a string"
    stripped = content.strip()
    if len(stripped) < MIN_CONTENT_LENGTH:
        return (f"Content too short ({len(stripped)} chars, minimum {MIN_CONTENT_LENGTH}). "
                "Please provide complete code.")
    if stripped in _PLACEHOLDER_BODIES:
        return f'Placeholder "{stripped}" detected. Please provide complete, working code.'
    lines = [l.strip() for l in stripped.splitlines() if l.strip()]
    for line in lines:
        if line in _PLACEHOLDER_LINES:
            return f'Placeholder "{line}" detected. Please provide complete, working code.'
    if lines and all(l in _PLACEHOLDER_BODIES for l in lines):
        return "Content consists only of placeholders. Please provide complete, working code."
    return None


def _backup_file(path: str, b: Backend) -> str:
    """Copy an existing file into the backup directory. Returns the backup path."""
    ts = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
    backup_rel = os.path.join(BACKUP_DIR_NAME, f"{os.path.basename(path)}.{ts}.bak")
    b.write_file(backup_rel, b.read_file(path))
    logger.debug(f"Backed up {path} -> {backup_rel}")
    return backup_rel


def read_file(path: str, offset: Optional[int] = None, limit: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Read the contents of a file, optionally a window of lines."""
    err = _require_arg(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        if not b.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        if b.is_dir(path):
            return ToolResult(success=False, output="", error=f"{path} is a directory. Use list_directory instead.")
        size = b.file_size(path)
        if size > _READ_MAX_BYTES:
            return ToolResult(success=False, output="",
                error=f"File too large to read ({size} bytes, limit {_READ_MAX_BYTES}). Use text_search to find the relevant part.")

        content = b.read_file(path)
        lines = content.splitlines()
        total_lines = len(lines)

        if offset is not None or limit is not None:
            start = max(int(offset or 1) - 1, 0)
            end = start + int(limit or total_lines)
            selected = lines[start:end]
            header = f"File: {path} (lines {start + 1}-{start + len(selected)} of {total_lines})"
            return ToolResult(success=True, output=header + "\n```\n" + "\n".join(selected) + "\n```")

        return ToolResult(success=True, output=f"File: {path} ({total_lines} lines)\n```\n{content}\n```")
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def _compact_diff(old_content: str, new_content: str, path: str, max_lines: int = 40) -> str:
    """Generate a compact unified diff for the tool result."""
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)
    diff = list(difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path, lineterm=""))
    if not diff:
        return ""
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(line.rstrip() for line in diff)


def write_file(path: str, content: str,
               backend: Optional[Backend] = None, working_directory: str = ".",
               on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Create a new file or completely overwrite an existing file."""
    err = _require_arg(path)
    if err:
        return err
    reason = validate_content(content)
    if reason:
        return ToolResult(success=False, output="", error=reason)
    try:
        _report(on_progress, f"Writing {path}...")
        b = backend or LocalBackend(working_directory)
        if b.is_dir(path):
            return ToolResult(success=False, output="", error=f"{path} is a directory")
        old_content = None
        if b.file_exists(path):
            old_content = b.read_file(path)
            _backup_file(path, b)
        b.write_file(path, content)

        line_count = len(content.splitlines())
        if old_content is None:
            return ToolResult(success=True, output=f"Created {path} ({line_count} lines)")
        summary = f"Overwrote {path} ({line_count} lines, previous version backed up)"
        diff_text = _compact_diff(old_content, content, path)
        return ToolResult(success=True, output=f"{summary}\n{diff_text}" if diff_text else summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def _find_normalized(content: str, search: str) -> Optional[Tuple[int, int]]:
    """Locate search in content treating any whitespace run as equivalent."""
    tokens = search.split()
    if not tokens:
        return None
    pattern = r"\s+".join(re.escape(t) for t in tokens)
    match = re.search(pattern, content)
    return match.span() if match else None


def edit_file(path: str, search: str, replace: str,
              backend: Optional[Backend] = None, working_directory: str = ".",
              replace_all: bool = False, on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Replace search text in a file. By default it must match exactly one location.
    Falls back to a whitespace-normalized match before failing."""
    err = _require_arg(path) or _require_arg(search, "search")
    if err:
        return err
    if not isinstance(replace, str):
        return ToolResult(success=False, output="", error="replace must be a string")
    try:
        _report(on_progress, f"Editing {path}...")
        b = backend or LocalBackend(working_directory)
        if not b.file_exists(path) or b.is_dir(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        content = b.read_file(path)

        count = content.count(search)
        fuzzy = False
        if count == 0:
            span = _find_normalized(content, search)
            if span is None:
                return ToolResult(success=False, output="",
                    error=f"Search text not found in {path}. Try reading the file first; it must match the current content.")
            new_content = content[:span[0]] + replace + content[span[1]:]
            replaced = 1
            fuzzy = True
        elif count > 1 and not replace_all:
            return ToolResult(success=False, output="",
                error=f"Found {count} occurrences of the search text in {path}. Add more surrounding context to make it unique, or set replace_all=true.")
        elif replace_all:
            new_content = content.replace(search, replace)
            replaced = count
        else:
            new_content = content.replace(search, replace, 1)
            replaced = 1

        _backup_file(path, b)
        b.write_file(path, new_content)
        note = " (whitespace-insensitive match)" if fuzzy else ""
        summary = f"Edited {path}: replaced {replaced} occurrence{'s' if replaced != 1 else ''}{note}"
        diff_text = _compact_diff(content, new_content, path)
        return ToolResult(success=True, output=f"{summary}\n{diff_text}" if diff_text else summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def create_directory(path: str, backend: Optional[Backend] = None,
                     working_directory: str = ".", **kw: Any) -> ToolResult:
    """Create a directory (and parents) under the working directory."""
    err = _require_arg(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        if b.file_exists(path) and not b.is_dir(path):
            return ToolResult(success=False, output="", error=f"{path} exists and is a file")
        b.make_dir(path)
        return ToolResult(success=True, output=f"Created directory {path}")
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def list_backups(path: str, backend: Optional[Backend] = None, working_directory: str = ".") -> List[str]:
    """Backup files recorded for path, oldest first."""
    b = backend or LocalBackend(working_directory)
    if not b.is_dir(BACKUP_DIR_NAME):
        return []
    prefix = os.path.basename(path) + "."
    return sorted(
        os.path.join(BACKUP_DIR_NAME, e["name"])
        for e in b.list_dir(BACKUP_DIR_NAME)
        if e["type"] == "file" and e["name"].startswith(prefix) and e["name"].endswith(".bak")
    )
