"""External tools: run_command, git_changes, web_fetch, web_search."""

import re
import html
import logging
import urllib.request
from typing import Any, Optional

from duckduckgo_search import DDGS

from backend import Backend, LocalBackend
from tools._common import ToolResult, ProgressFn, _report, _require_arg

logger = logging.getLogger(__name__)

_COMMAND_DEFAULT_TIMEOUT = 60
_COMMAND_OUTPUT_LIMIT = 2000

# Catastrophic commands, blocked before anything is spawned
_BLOCKED_COMMAND_PATTERNS = [
    re.compile(r"\brm\s+-[a-zA-Z]*r[a-zA-Z]*\s+(--no-preserve-root\s+)?(/|/\*|~|~/|\$HOME)(\s|$)"),
    re.compile(r"\bmkfs(\.\w+)?\b"),
    re.compile(r"^\s*format\s+[a-zA-Z]:", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
    re.compile(r"\bdd\s+.*\bof=/dev/(sd|hd|nvme|disk)"),
    re.compile(r">\s*/dev/(sd|hd|nvme|disk)"),
]


def is_blocked_command(command: str) -> bool:
    return any(p.search(command) for p in _BLOCKED_COMMAND_PATTERNS)


def run_command(command: str, timeout: Optional[float] = None,
                backend: Optional[Backend] = None, working_directory: str = ".",
                on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Execute a shell command in the working directory."""
    err = _require_arg(command, "command")
    if err:
        return err
    if is_blocked_command(command):
        logger.warning(f"Blocked dangerous command: {command!r}")
        return ToolResult(success=False, output="", error="Potentially dangerous command blocked")
    try:
        _report(on_progress, f"Running: {command}")
        b = backend or LocalBackend(working_directory)
        to = float(timeout) if timeout else _COMMAND_DEFAULT_TIMEOUT
        stdout, stderr, rc = b.run_command(command, cwd=".", timeout=to)

        output = (stdout + ("\n" + stderr if stdout and stderr else stderr)).strip()
        if len(output) > _COMMAND_OUTPUT_LIMIT:
            output = output[:_COMMAND_OUTPUT_LIMIT] + "\n... (output truncated)"
        if not output:
            output = "(command completed with no output)"
        if rc != 0:
            output = f"[exit code: {rc}]\n{output}"

        return ToolResult(
            success=rc == 0, output=output,
            error=None if rc == 0 else (
                f"Command timed out after {to:g}s" if rc == -1 and "timed out" in stderr
                else f"Command exited with code {rc}\n{output}"
            ),
        )
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def git_changes(backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Show staged and unstaged git changes."""
    try:
        b = backend or LocalBackend(working_directory)
        status, stderr, rc = b.run_command("git status --short", cwd=".", timeout=10)
        if rc != 0:
            return ToolResult(success=False, output="", error=(stderr.strip() or "Not a git repository"))
        if not status.strip():
            return ToolResult(success=True, output="No uncommitted changes.")
        stat, _, _ = b.run_command("git diff --stat", cwd=".", timeout=10)
        output = "Changed files:\n" + status.rstrip()
        if stat.strip():
            output += "\n\nDiff summary:\n" + stat.rstrip()
        return ToolResult(success=True, output=output)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


# --- WebFetch ---
_WEB_FETCH_MAX_BYTES = 500_000
_WEB_FETCH_TIMEOUT = 15
_WEB_TEXT_LIMIT = 5000
_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


def html_to_text(raw: str, max_length: int = _WEB_TEXT_LIMIT) -> str:
    """Reduce an HTML document to bounded plain text."""
    text = raw
    for tag in ("script", "style", "nav", "header", "footer", "noscript"):
        text = re.sub(rf"<{tag}[^>]*>[\s\S]*?</{tag}>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<!--[\s\S]*?-->", "", text)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "... [truncated]"
    return text


def web_fetch(url: str, backend: Optional[Backend] = None, working_directory: str = ".",
              on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Fetch a URL via HTTP GET and return its readable text."""
    err = _require_arg(url, "url")
    if err:
        return err
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        return ToolResult(success=False, output="", error="url must start with http:// or https://")
    try:
        _report(on_progress, f"Fetching: {url}")
        req = urllib.request.Request(url, headers={
            "User-Agent": _USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        })
        with urllib.request.urlopen(req, timeout=_WEB_FETCH_TIMEOUT) as resp:
            body = resp.read(_WEB_FETCH_MAX_BYTES)
            charset = resp.headers.get_content_charset() or "utf-8"
        text = html_to_text(body.decode(charset, errors="replace"))
        return ToolResult(success=True, output=f"Content from {url}:\n\n{text or 'Could not extract content'}")
    except Exception as e:
        logger.warning(f"web_fetch failed for {url}: {e}")
        return ToolResult(success=False, output="", error=f"Failed to fetch URL: {e}")


def web_search(query: str, max_results: int = 5, backend: Optional[Backend] = None,
               working_directory: str = ".", on_progress: Optional[ProgressFn] = None, **kw: Any) -> ToolResult:
    """Search the web with DuckDuckGo."""
    err = _require_arg(query, "query")
    if err:
        return err
    query = query.strip()
    max_results = max(1, min(10, int(max_results or 5)))
    try:
        _report(on_progress, f"Searching web: {query}")
        with DDGS() as ddgs:
            results = list(ddgs.text(query, max_results=max_results))
        if not results:
            return ToolResult(success=True, output=f"No web results found for \"{query}\"")
        lines = [f"Web search results for \"{query}\":\n"]
        for i, r in enumerate(results, 1):
            title = (r.get("title") or "").strip()
            href = (r.get("href") or r.get("link") or "").strip()
            body = (r.get("body") or "").strip()[:400] or "No description available"
            lines.append(f"{i}. {title}\n   {body}\n   URL: {href}\n")
        return ToolResult(success=True, output="\n".join(lines))
    except Exception as e:
        logger.warning(f"web_search failed: {e}")
        return ToolResult(success=False, output="", error=f"Web search failed: {e}")
