"""Search, discovery, and navigation tools."""

import os
import pathlib
import logging
from typing import Any, List, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult, ProgressFn, _report, _require_arg
from tools.gitignore import (
    _load_gitignore,
    _is_ignored,
    _ALWAYS_SKIP_DIRS,
    _ALWAYS_SKIP_EXTENSIONS,
)

logger = logging.getLogger(__name__)

_LIST_MAX_DEPTH = 2
_LIST_MAX_LINES = 50
_LIST_MAX_CHILDREN = 5


def _format_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def _list_tree(b: Backend, rel_dir: str, gi, depth: int, max_depth: int) -> List[str]:
    """Render one directory level (and bounded children) as indented lines."""
    prefix = "  " * (depth + 1)
    lines: List[str] = []
    for e in b.list_dir(rel_dir):
        name = e["name"]
        is_dir = e["type"] == "directory"
        rel = os.path.normpath(os.path.join(rel_dir, name))
        if _is_ignored(rel, name, is_dir, gi):
            continue
        if not is_dir:
            lines.append(f"{prefix}{name} ({_format_size(e.get('size', 0))})")
            continue
        lines.append(f"{prefix}{name}/")
        if depth < max_depth:
            children = _list_tree(b, rel, gi, depth + 1, max_depth)
            lines.extend(children[:_LIST_MAX_CHILDREN])
            if len(children) > _LIST_MAX_CHILDREN:
                lines.append(f"{prefix}  ... and {len(children) - _LIST_MAX_CHILDREN} more")
    return lines


def list_directory(path: Optional[str] = None,
                   backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """List files and directories at a path, respecting .gitignore."""
    try:
        b = backend or LocalBackend(working_directory)
        target = (path or ".").strip() or "."

        if not b.is_dir(target):
            return ToolResult(success=False, output="", error=f"Not a directory: {target}")

        gi = _load_gitignore(b.working_directory)
        lines = _list_tree(b, target, gi, 0, _LIST_MAX_DEPTH)
        if not lines:
            return ToolResult(success=True, output=f"Directory: {target} (empty)")
        shown = lines[:_LIST_MAX_LINES]
        output = f"Directory: {target}\n" + "\n".join(shown)
        if len(lines) > _LIST_MAX_LINES:
            output += f"\n... and {len(lines) - _LIST_MAX_LINES} more"
        return ToolResult(success=True, output=output)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def file_search(pattern: str, max_results: int = 30,
                backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Find files matching a glob pattern, respecting .gitignore."""
    err = _require_arg(pattern, "pattern")
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        glob_pattern = pattern if "/" in pattern or pattern.startswith("**") else f"**/{pattern}"
        gi = _load_gitignore(b.working_directory)

        matches = []
        for m in b.glob_find(glob_pattern, "."):
            parts = pathlib.PurePath(m).parts
            if any(p in _ALWAYS_SKIP_DIRS for p in parts):
                continue
            _, ext = os.path.splitext(m)
            if ext in _ALWAYS_SKIP_EXTENSIONS:
                continue
            if gi and gi.match_file(m):
                continue
            matches.append(m)

        if not matches:
            return ToolResult(success=True, output=f"No files found matching {pattern}.")

        limit = max(1, int(max_results or 30))
        output = f"Found {len(matches)} file(s) matching {pattern}:\n" + "\n".join(f"  {m}" for m in matches[:limit])
        if len(matches) > limit:
            output += f"\n  ... [{len(matches) - limit} more]"
        return ToolResult(success=True, output=output)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def text_search(query: str, include: Optional[str] = None, max_results: int = 20,
                backend: Optional[Backend] = None, working_directory: str = ".",
                on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Search for a regex pattern using ripgrep (or grep fallback)."""
    err = _require_arg(query, "query")
    if err:
        return err
    try:
        _report(on_progress, f"Searching for {query!r}...")
        b = backend or LocalBackend(working_directory)
        result = b.search(query, ".", include=include)

        if not result:
            return ToolResult(success=True, output=f"No matches found for {query!r}.")

        limit = max(1, int(max_results or 20))
        lines = result.split("\n")
        output = "\n".join(line[:300] for line in lines[:limit])
        if len(lines) > limit:
            output += f"\n\n... [{len(lines) - limit} more matches truncated]"
        return ToolResult(success=True, output=output)
    except Exception as e:
        if "timed out" in str(e).lower():
            return ToolResult(success=False, output="", error="Search timed out")
        return ToolResult(success=False, output="", error=str(e))


_PROJECT_MARKERS = [
    ("package.json", "JavaScript/TypeScript"),
    ("pyproject.toml", "Python"),
    ("setup.py", "Python"),
    ("requirements.txt", "Python"),
    ("Cargo.toml", "Rust"),
    ("go.mod", "Go"),
    ("pom.xml", "Java"),
    ("build.gradle", "Java/Kotlin"),
]

_SOURCE_EXTENSIONS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".java", ".rs", ".go",
    ".c", ".cc", ".cpp", ".h", ".hpp", ".cs", ".rb", ".php", ".kt", ".swift",
}


def codebase_overview(backend: Optional[Backend] = None, working_directory: str = ".",
                      on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Summarize the project type, source file count and top-level layout."""
    try:
        _report(on_progress, "Analyzing codebase...")
        b = backend or LocalBackend(working_directory)
        gi = _load_gitignore(b.working_directory)

        manifests = [(m, lang) for m, lang in _PROJECT_MARKERS if b.is_file(m)]
        language = manifests[0][1] if manifests else "unknown"

        source_count = 0
        dirs: List[str] = []
        pending = [(".", 0)]
        while pending:
            rel_dir, depth = pending.pop()
            for e in b.list_dir(rel_dir):
                is_dir = e["type"] == "directory"
                rel = os.path.normpath(os.path.join(rel_dir, e["name"]))
                if _is_ignored(rel, e["name"], is_dir, gi):
                    continue
                if is_dir:
                    if depth < 1:
                        dirs.append(rel + "/")
                    pending.append((rel, depth + 1))
                elif os.path.splitext(e["name"])[1].lower() in _SOURCE_EXTENSIONS:
                    source_count += 1

        lines = ["Codebase overview", f"Language: {language}"]
        if manifests:
            lines.append("Manifests: " + ", ".join(m for m, _ in manifests))
        lines.append(f"Source files: {source_count}")
        if dirs:
            lines.append("Directories:")
            lines.extend(f"  {d}" for d in sorted(dirs)[:20])
        return ToolResult(success=True, output="\n".join(lines))
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))
