"""
Context blocks for the system prompt: a short project summary, files the user
points at with --file, and code retrieved from a per-repository semantic index.
"""

import hashlib
import json
import logging
import os
from typing import Any, List, Optional, Tuple

from backend import Backend, LocalBackend
from tools._common import ProgressFn, _report
from tools.external_ops import git_changes
from tools.gitignore import _load_gitignore, _is_ignored
from tools.search_ops import _list_tree, _PROJECT_MARKERS, _SOURCE_EXTENSIONS

logger = logging.getLogger(__name__)

README_PREVIEW_CHARS = 500
_STRUCTURE_MAX_LINES = 40
_GIT_STATUS_MAX_ENTRIES = 8
_MANIFEST_HEAD_LINES = 12
_README_NAMES = ("README.md", "README.rst", "README.txt", "README")

# Extensions pasted into the prompt when a directory is given as file context
_TEXT_EXTENSIONS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".json", ".md", ".txt", ".html", ".css",
    ".java", ".c", ".cpp", ".h", ".go", ".rs", ".yml", ".yaml", ".toml", ".sh",
    ".cfg", ".ini", ".sql",
}
_SKIP_FILES = {"package-lock.json", "yarn.lock", "poetry.lock", "Cargo.lock", ".DS_Store"}
FILE_CONTEXT_TRUNCATED = "\n...[Context Truncated]..."

# Repository index
INDEX_CHUNK_LINES = 40
INDEX_CHUNK_CHARS = 1500
INDEX_MAX_FILES = 50
_INDEX_EXTENSIONS = _SOURCE_EXTENSIONS | {".md"}


# ============================================================
# Project summary
# ============================================================

def _git_summary(b: Backend) -> Tuple[bool, str]:
    result = git_changes(backend=b)
    if not result.success:
        return False, "n/a"
    changed = [l.strip() for l in result.output.split("\n\n")[0].splitlines()[1:] if l.strip()]
    if not changed:
        return True, "clean"
    status = ", ".join(changed[:_GIT_STATUS_MAX_ENTRIES])
    if len(changed) > _GIT_STATUS_MAX_ENTRIES:
        status += f", ... and {len(changed) - _GIT_STATUS_MAX_ENTRIES} more"
    return True, status


def _manifest_summary(b: Backend) -> Optional[str]:
    """Name, version, scripts and dependencies of the first manifest found."""
    for manifest, language in _PROJECT_MARKERS:
        if not b.is_file(manifest):
            continue
        try:
            content = b.read_file(manifest)
        except Exception as e:
            logger.debug(f"Could not read {manifest}: {e}")
            continue
        if manifest == "package.json":
            try:
                pkg = json.loads(content)
            except json.JSONDecodeError:
                return f"{manifest} ({language}, unparseable)"
            summary = {
                "name": pkg.get("name"),
                "version": pkg.get("version"),
                "scripts": sorted((pkg.get("scripts") or {}).keys()),
                "dependencies": sorted((pkg.get("dependencies") or {}).keys()),
            }
            return f"{manifest} ({language}): {json.dumps(summary)}"
        head = [l.rstrip() for l in content.splitlines() if l.strip()][:_MANIFEST_HEAD_LINES]
        return f"{manifest} ({language}):\n" + "\n".join(f"    {l}" for l in head)
    return None


def _readme_preview(b: Backend) -> Optional[str]:
    for name in _README_NAMES:
        if not b.is_file(name):
            continue
        try:
            content = b.read_file(name)
        except Exception as e:
            logger.debug(f"Could not read {name}: {e}")
            return None
        preview = " ".join(content[:README_PREVIEW_CHARS].split())
        return preview + ("..." if len(content) > README_PREVIEW_CHARS else "")
    return None


def build_project_context(backend: Optional[Backend] = None, working_directory: str = ".") -> str:
    """Name, git state, two-level layout, manifest and README preview."""
    b = backend or LocalBackend(working_directory)
    gi = _load_gitignore(b.working_directory)

    is_git, status = _git_summary(b)
    lines = [
        f"Name: {os.path.basename(os.path.normpath(b.working_directory))}",
        f"Git: {'yes' if is_git else 'no'}",
    ]
    if is_git:
        lines.append(f"Git status: {status}")

    structure = _list_tree(b, ".", gi, 0, 1)
    if structure:
        lines.append("Structure:")
        lines.extend(structure[:_STRUCTURE_MAX_LINES])
        if len(structure) > _STRUCTURE_MAX_LINES:
            lines.append(f"  ... and {len(structure) - _STRUCTURE_MAX_LINES} more")
    else:
        lines.append("Structure: (empty)")

    lines.append(f"Manifest: {_manifest_summary(b) or 'none'}")
    lines.append(f"Readme: {_readme_preview(b) or 'none'}")
    return "\n".join(lines)


# ============================================================
# User-supplied files
# ============================================================

def _walk_files(b: Backend, rel_dir: str, gi, extensions) -> List[str]:
    """Files under rel_dir with one of extensions, in sorted order."""
    found: List[str] = []
    pending = [rel_dir]
    while pending:
        current = pending.pop(0)
        for e in b.list_dir(current):
            name = e["name"]
            is_dir = e["type"] == "directory"
            rel = os.path.normpath(os.path.join(current, name))
            if _is_ignored(rel, name, is_dir, gi) or name in _SKIP_FILES:
                continue
            if is_dir:
                pending.append(rel)
            elif os.path.splitext(name)[1].lower() in extensions:
                found.append(rel)
    return found


def load_file_context(paths: List[str], backend: Optional[Backend] = None,
                      working_directory: str = ".", max_chars: int = 6000) -> str:
    """Concatenate the named files (directories are walked) for the prompt.

    Missing paths and paths outside the working directory are skipped with a
    warning. Output beyond max_chars is cut and marked.
    """
    b = backend or LocalBackend(working_directory)
    gi = _load_gitignore(b.working_directory)
    blocks: List[str] = []
    for path in paths or []:
        try:
            if b.is_dir(path):
                files = _walk_files(b, path, gi, _TEXT_EXTENSIONS)
            elif b.is_file(path):
                files = [path]
            else:
                logger.warning(f"File context path not found: {path}")
                continue
            for rel in files:
                blocks.append(f"--- FILE: {b.relative_path(rel)} ---\n{b.read_file(rel)}")
        except ValueError as e:
            logger.warning(f"Skipping file context {path}: {e}")
        except OSError as e:
            logger.warning(f"Could not read file context {path}: {e}")

    text = "\n\n".join(blocks)
    if len(text) > max_chars:
        text = text[:max_chars] + FILE_CONTEXT_TRUNCATED
    return text


# ============================================================
# Repository index
# ============================================================

def repo_index_path(working_directory: str, index_dir: str) -> str:
    """Index file for one repository, keyed by its absolute path."""
    key = hashlib.md5(os.path.abspath(working_directory).encode("utf-8")).hexdigest()
    return os.path.join(index_dir, f"{key}.json")


def chunk_text(content: str, lines_per_chunk: int = INDEX_CHUNK_LINES) -> List[Tuple[int, int, str]]:
    """Split content into (start_line, end_line, text) windows, skipping blank ones."""
    lines = content.splitlines()
    chunks = []
    for i in range(0, len(lines), lines_per_chunk):
        segment = "\n".join(lines[i:i + lines_per_chunk])
        if not segment.strip():
            continue
        if len(segment) > INDEX_CHUNK_CHARS:
            segment = segment[:INDEX_CHUNK_CHARS] + "..."
        chunks.append((i + 1, min(i + lines_per_chunk, len(lines)), segment))
    return chunks


def index_repository(store: Any, backend: Optional[Backend] = None, working_directory: str = ".",
                     max_files: int = INDEX_MAX_FILES, force: bool = False,
                     on_progress: Optional[ProgressFn] = None) -> int:
    """Embed source files into store as line-window chunks.

    An index that already has entries is left alone unless force is set.
    Returns the number of chunks stored.
    """
    b = backend or LocalBackend(working_directory)
    if len(store) and not force:
        logger.info(f"Repository already indexed at {store.index_path}")
        return 0
    if force:
        store.clear()

    gi = _load_gitignore(b.working_directory)
    files = _walk_files(b, ".", gi, _INDEX_EXTENSIONS)[:max_files]
    stored = 0
    for rel in files:
        try:
            content = b.read_file(rel)
        except Exception as e:
            logger.debug(f"Skipping {rel} while indexing: {e}")
            continue
        for start, end, text in chunk_text(content):
            entry = store.remember_sync(f"{rel}:{start}-{end}\n{text}", source=f"file:{rel}")
            if entry is not None:
                stored += 1
            elif stored == 0 and len(text.strip()) >= store.min_content_length:
                logger.warning("Embeddings unavailable; repository index not built")
                return 0
        _report(on_progress, f"Indexed {rel}")

    logger.info(f"Indexed {stored} chunk(s) from {len(files)} file(s)")
    return stored


async def retrieve_code_context(store: Any, query: str, k: int = 3) -> List[str]:
    """Top-k indexed chunks for query, as "path:start-end" headed snippets."""
    return [entry.content for entry, _ in await store.recall_entries(query, k)]
