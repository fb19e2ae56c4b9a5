"""
Backend abstraction for file and command operations.
Every path is resolved against, and confined to, the working directory.
"""

import logging
import os
import pathlib
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Abstract backend for file system and command operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """List entries in a directory. Returns list of {name, type, ext?, size?}."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def make_dir(self, path: str) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a file exists."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Check if a path is a directory."""

    @abstractmethod
    def is_file(self, path: str) -> bool:
        """Check if a path is a file."""

    @abstractmethod
    def file_size(self, path: str) -> int:
        """Get file size in bytes."""

    @abstractmethod
    def run_command(self, command: str, cwd: str, timeout: float = 30) -> Tuple[str, str, int]:
        """Run a shell command. Returns (stdout, stderr, returncode)."""

    def cancel_running_command(self) -> bool:
        """Kill the currently running command, if any. Returns True if killed."""
        return False

    @abstractmethod
    def search(self, pattern: str, path: str, include: Optional[str] = None,
               max_count: int = 100) -> str:
        """Search for a regex pattern. Returns matching lines."""

    @abstractmethod
    def glob_find(self, pattern: str, cwd: str = ".") -> List[str]:
        """Find files matching a glob pattern. Returns relative paths."""

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory."""
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.working_directory, path))

    def relative_path(self, path: str) -> str:
        """Path relative to the working directory, for display."""
        return os.path.relpath(self.resolve_path(path), self.working_directory)


# Cache ripgrep availability
_HAS_RIPGREP: Optional[bool] = None


def _has_ripgrep() -> bool:
    global _HAS_RIPGREP
    if _HAS_RIPGREP is None:
        try:
            subprocess.run(["rg", "--version"], capture_output=True, check=True)
            _HAS_RIPGREP = True
        except (subprocess.CalledProcessError, FileNotFoundError):
            _HAS_RIPGREP = False
    return _HAS_RIPGREP


class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)
        self._active_process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = os.path.abspath(self._working_directory)
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def _full(self, path: str) -> str:
        full = self.resolve_path(path) if path else self._working_directory
        self._ensure_under_working(full)
        return full

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full = self._full(path)
        entries = []
        for name in sorted(os.listdir(full)):
            child = os.path.join(full, name)
            if os.path.isdir(child):
                entries.append({"name": name, "type": "directory"})
            elif os.path.isfile(child):
                _, ext = os.path.splitext(name)
                entries.append({
                    "name": name, "type": "file",
                    "ext": ext.lstrip("."),
                    "size": os.path.getsize(child),
                })
        return entries

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def make_dir(self, path: str) -> None:
        os.makedirs(self._full(path), exist_ok=True)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(self._full(path))

    def is_file(self, path: str) -> bool:
        return os.path.isfile(self._full(path))

    def file_size(self, path: str) -> int:
        return os.path.getsize(self._full(path))

    def run_command(self, command: str, cwd: str = ".", timeout: float = 30) -> Tuple[str, str, int]:
        full_cwd = self._full(cwd) if cwd != "." else self._working_directory
        env = dict(os.environ, CI="true")  # discourage interactive prompts
        proc = subprocess.Popen(
            command, shell=True, cwd=full_cwd, env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            preexec_fn=os.setsid,  # create process group for clean kill
        )
        # Track the process so it can be killed on cancel
        with self._lock:
            self._active_process = proc
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill_process(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        finally:
            with self._lock:
                self._active_process = None
        return stdout or "", stderr or "", proc.returncode

    def cancel_running_command(self) -> bool:
        """Kill the currently running subprocess, if any. Returns True if killed."""
        with self._lock:
            proc = self._active_process
        if proc and proc.poll() is None:
            logger.info(f"Killing running command (pid {proc.pid})")
            self._kill_process(proc)
            return True
        return False

    @staticmethod
    def _kill_process(proc: subprocess.Popen) -> None:
        """Kill a process and its entire process group."""
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass
        try:
            proc.kill()
        except (ProcessLookupError, OSError):
            pass

    def search(self, pattern: str, path: str, include: Optional[str] = None,
               max_count: int = 100) -> str:
        search_path = self._full(path)

        if _has_ripgrep():
            cmd = ["rg", "--line-number", "--no-heading", "--color=never", "-m", str(max_count)]
            if include:
                cmd.extend(["--glob", include])
            cmd.extend(["--", pattern, search_path])
        else:
            cmd = ["grep", "-rn", "--color=never", "-I",
                   "--exclude-dir=.git", "--exclude-dir=node_modules", "--exclude-dir=.codex-backups"]
            if include:
                cmd.extend(["--include", include])
            cmd.extend(["-e", pattern, search_path])

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=15, cwd=self._working_directory)
        if not result.stdout:
            return ""
        # Report paths relative to the working directory
        prefix = self._working_directory + os.sep
        return "\n".join(
            line[len(prefix):] if line.startswith(prefix) else line
            for line in result.stdout.strip().splitlines()
        )

    def glob_find(self, pattern: str, cwd: str = ".") -> List[str]:
        base = pathlib.Path(self._full(cwd))
        skip = {"__pycache__", "node_modules", ".git", "venv", ".venv", ".codex-backups"}
        matches = []
        for p in sorted(base.glob(pattern)):
            if not p.is_file():
                continue
            rel = str(p.relative_to(base))
            if not set(pathlib.PurePath(rel).parts) & skip:
                matches.append(rel)
        return matches
