"""Capability validation and the executor boundary."""

import io
import os

import pytest

from tools import (
    EditorHost,
    TOOL_DEFINITIONS,
    TOOL_NAMES,
    BACKUP_DIR_NAME,
    create_directory,
    edit_file,
    execute_tool,
    file_search,
    get_tool_descriptions,
    is_blocked_command,
    list_backups,
    list_directory,
    read_file,
    run_command,
    text_search,
    validate_content,
    web_fetch,
    web_search,
    write_file,
)
from tools import external_ops
from tools.external_ops import html_to_text

CODE = "def add(a, b):\n    return a + b\n"


def _write(project, rel, content):
    path = os.path.join(project, rel)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def _read(project, rel):
    with open(os.path.join(project, rel), encoding="utf-8") as f:
        return f.read()


# ---------------------------------------------------------------------------
# Content validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("content", ["...", "// TODO", "# TODO", "short", "  ...code here  ", "\n\n"])
def test_validate_content_rejects_placeholders_and_short_bodies(content):
    assert validate_content(content) is not None


def test_validate_content_rejects_code_here_line():
    body = "function main() {\n  // code here\n}\n"
    assert "code here" in validate_content(body)


def test_validate_content_accepts_real_code():
    assert validate_content(CODE) is None
    # Ellipsis inside real code is fine
    assert validate_content("print('loading...')\nx = [1, 2, 3]\n") is None


# ---------------------------------------------------------------------------
# write_file / edit_file / read_file
# ---------------------------------------------------------------------------

def test_write_rejects_placeholder_before_touching_disk(project, backend):
    _write(project, "keep.py", CODE)
    result = write_file("keep.py", "...", backend=backend)
    assert not result.success
    assert "complete" in result.error
    result = write_file("keep.py", "  // code here  ", backend=backend)
    assert not result.success
    assert "Placeholder" in result.error
    assert _read(project, "keep.py") == CODE
    assert not os.path.exists(os.path.join(project, BACKUP_DIR_NAME))


def test_write_rejects_short_content(project, backend):
    result = write_file("new.py", "x = 1", backend=backend)
    assert not result.success
    assert "too short" in result.error
    assert not os.path.exists(os.path.join(project, "new.py"))


def test_write_creates_file_and_parent_dirs(project, backend):
    result = write_file("pkg/util.py", CODE, backend=backend)
    assert result.success
    assert result.output.startswith("Created pkg/util.py")
    assert _read(project, "pkg/util.py") == CODE


def test_overwrite_backs_up_previous_version(project, backend):
    _write(project, "app.py", CODE)
    new = CODE + "\n\ndef sub(a, b):\n    return a - b\n"
    result = write_file("app.py", new, backend=backend)
    assert result.success
    assert "Overwrote" in result.output
    backups = list_backups("app.py", backend=backend)
    assert len(backups) == 1
    assert backups[0].startswith(BACKUP_DIR_NAME + os.sep + "app.py.")
    assert backups[0].endswith(".bak")
    assert _read(project, backups[0]) == CODE
    assert _read(project, "app.py") == new


def test_edit_exact_match(project, backend):
    _write(project, "m.py", CODE)
    result = edit_file("m.py", "a + b", "b + a", backend=backend)
    assert result.success
    assert "return b + a" in _read(project, "m.py")
    assert len(list_backups("m.py", backend=backend)) == 1


def test_edit_whitespace_normalized_fallback(project, backend):
    _write(project, "m.py", "def add(a, b):\n    return a + b\n")
    result = edit_file("m.py", "def add(a, b):\n  return   a + b", "def add(a, b):\n    return b + a",
                       backend=backend)
    assert result.success
    assert "whitespace-insensitive" in result.output
    assert _read(project, "m.py") == "def add(a, b):\n    return b + a\n"


def test_edit_multiple_matches_need_replace_all(project, backend):
    _write(project, "m.txt", "alpha beta alpha gamma alpha\n")
    result = edit_file("m.txt", "alpha", "omega", backend=backend)
    assert not result.success
    assert "3 occurrences" in result.error
    result = edit_file("m.txt", "alpha", "omega", backend=backend, replace_all=True)
    assert result.success
    assert _read(project, "m.txt") == "omega beta omega gamma omega\n"


def test_edit_missing_search_text(project, backend):
    _write(project, "m.py", CODE)
    result = edit_file("m.py", "does not exist", "x", backend=backend)
    assert not result.success
    assert "not found" in result.error
    assert _read(project, "m.py") == CODE


def test_edit_missing_file(backend):
    result = edit_file("nope.py", "a", "b", backend=backend)
    assert not result.success
    assert "File not found" in result.error


def test_read_file_window_and_errors(project, backend):
    _write(project, "lines.txt", "\n".join(f"line {i}" for i in range(1, 21)))
    full = read_file("lines.txt", backend=backend)
    assert full.success and "(20 lines)" in full.output

    window = read_file("lines.txt", offset=5, limit=3, backend=backend)
    assert "lines 5-7 of 20" in window.output
    assert "line 5\nline 6\nline 7" in window.output

    assert "File not found" in read_file("missing.txt", backend=backend).error
    os.makedirs(os.path.join(project, "sub"))
    assert "directory" in read_file("sub", backend=backend).error


def test_read_file_rejects_large_files(project, backend):
    _write(project, "big.txt", "x" * 100_001)
    result = read_file("big.txt", backend=backend)
    assert not result.success
    assert "too large" in result.error


def test_paths_cannot_escape_working_directory(backend):
    result = read_file("../../etc/passwd", backend=backend)
    assert not result.success
    assert "escapes working directory" in result.error


def test_create_directory(project, backend):
    assert create_directory("a/b/c", backend=backend).success
    assert os.path.isdir(os.path.join(project, "a", "b", "c"))


# ---------------------------------------------------------------------------
# Listing and search
# ---------------------------------------------------------------------------

def test_list_directory_lists_files_and_subdirectories(project, backend):
    _write(project, "docs/a.md", "# A doc\n")
    _write(project, "docs/b.txt", "plain text\n")
    os.makedirs(os.path.join(project, "docs", "img"))
    result = list_directory("docs", backend=backend)
    assert result.success
    lines = result.output.splitlines()
    assert lines[0] == "Directory: docs"
    names = [l.strip().split(" ")[0] for l in lines[1:]]
    assert names == ["a.md", "b.txt", "img/"]


def test_list_directory_skips_noise(project, backend):
    _write(project, "src/main.py", CODE)
    _write(project, "node_modules/pkg/index.js", "module.exports = {};\n")
    _write(project, ".env", "SECRET=1\n")
    _write(project, "ignored.log", "noise\n")
    _write(project, ".gitignore", "*.log\n")
    output = list_directory(backend=backend).output
    assert "src/" in output and "main.py" in output
    assert "node_modules" not in output
    assert ".env" not in output
    assert "ignored.log" not in output


def test_list_directory_bounds_children(project, backend):
    for i in range(8):
        _write(project, f"many/f{i}.txt", "content\n")
    output = list_directory(backend=backend).output
    assert "... and 3 more" in output


def test_list_directory_not_a_directory(backend):
    assert not list_directory("nowhere", backend=backend).success


def test_file_search_glob(project, backend):
    _write(project, "src/a.py", CODE)
    _write(project, "src/deep/b.py", CODE)
    _write(project, "README.md", "# readme\n")
    result = file_search("*.py", backend=backend)
    assert result.success
    assert "src/a.py" in result.output
    assert os.path.join("src", "deep", "b.py") in result.output
    assert "README.md" not in result.output


def test_text_search(project, backend):
    _write(project, "src/a.py", "needle = 42\n")
    _write(project, "src/b.py", "haystack = 0\n")
    result = text_search("needle", backend=backend)
    assert result.success
    assert "src/a.py" in result.output
    assert "b.py" not in result.output
    assert "No matches" in text_search("zzz_not_here_zzz", backend=backend).output


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------

def test_run_command_success(backend):
    result = run_command("echo hello", backend=backend)
    assert result.success
    assert result.output == "hello"


def test_run_command_nonzero_exit_is_failure(backend):
    result = run_command("echo oops; exit 3", backend=backend)
    assert not result.success
    assert result.output.startswith("[exit code: 3]")
    assert "oops" in result.output


def test_run_command_timeout(backend):
    result = run_command("sleep 5", timeout=0.5, backend=backend)
    assert not result.success
    assert result.error == "Command timed out after 0.5s"


def test_run_command_truncates_output(backend):
    result = run_command("yes abcdef | head -n 1000", backend=backend)
    assert result.success
    assert result.output.endswith("... (output truncated)")
    assert len(result.output) < 2100


@pytest.mark.parametrize("command", [
    "rm -rf /",
    "sudo rm -rf ~",
    "mkfs.ext4 /dev/sda1",
    ":(){ :|:& };:",
    "dd if=/dev/zero of=/dev/sda",
])
def test_dangerous_commands_are_blocked(backend, command):
    assert is_blocked_command(command)
    result = run_command(command, backend=backend)
    assert not result.success
    assert "blocked" in result.error


def test_ordinary_commands_are_not_blocked():
    assert not is_blocked_command("rm -rf build/")
    assert not is_blocked_command("npm run format")
    assert not is_blocked_command("git log --format=%H")


# ---------------------------------------------------------------------------
# Web
# ---------------------------------------------------------------------------

def test_html_to_text_strips_markup():
    raw = ("<html><head><style>p{}</style><script>var x = 1;</script></head>"
           "<body><nav>Menu</nav><p>Fish &amp; chips</p><footer>(c)</footer></body></html>")
    assert html_to_text(raw) == "Fish & chips"
    assert html_to_text("<p>" + "a" * 6000 + "</p>").endswith("... [truncated]")


def test_web_fetch_rejects_non_http():
    result = web_fetch("file:///etc/passwd")
    assert not result.success
    assert "http" in result.error


class _FakeResponse(io.BytesIO):
    class headers:
        @staticmethod
        def get_content_charset():
            return "utf-8"


def test_web_fetch_returns_readable_text(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["timeout"] = timeout
        return _FakeResponse(b"<html><body><h1>Docs</h1><script>x()</script></body></html>")

    monkeypatch.setattr(external_ops.urllib.request, "urlopen", fake_urlopen)
    result = web_fetch("https://example.com/docs")
    assert result.success
    assert result.output == "Content from https://example.com/docs:\n\nDocs"
    assert seen == {"url": "https://example.com/docs", "timeout": 15}


def test_web_fetch_network_error(monkeypatch):
    def fake_urlopen(req, timeout=None):
        raise OSError("connection refused")

    monkeypatch.setattr(external_ops.urllib.request, "urlopen", fake_urlopen)
    result = web_fetch("https://example.com")
    assert not result.success
    assert "connection refused" in result.error


def test_web_search_formats_results(monkeypatch):
    class FakeDDGS:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def text(self, query, max_results=5):
            return [{"title": "Python docs", "href": "https://docs.python.org", "body": "Official docs"}]

    monkeypatch.setattr(external_ops, "DDGS", FakeDDGS)
    result = web_search("python asyncio")
    assert result.success
    assert "1. Python docs" in result.output
    assert "URL: https://docs.python.org" in result.output


# ---------------------------------------------------------------------------
# Editor introspection
# ---------------------------------------------------------------------------

class FakeEditor(EditorHost):
    def get_selection(self):
        return "selected()"

    def get_current_file(self):
        return ("src/app.py", CODE)

    def get_problems(self):
        return [{"path": "src/app.py", "line": 2, "severity": "error", "message": "undefined name"}]


def test_editor_tools_without_editor(project):
    for name in ("get_selection", "get_current_file", "get_problems"):
        result = execute_tool(name, {}, project)
        assert not result.success
        assert "No editor is attached" in result.error


def test_editor_tools_with_editor(project):
    editor = FakeEditor()
    assert "selected()" in execute_tool("get_selection", {}, project, editor=editor).output
    assert "Current file: src/app.py (2 lines)" in execute_tool("get_current_file", {}, project, editor=editor).output
    problems = execute_tool("get_problems", {}, project, editor=editor).output
    assert "[ERROR] src/app.py:2: undefined name" in problems


# ---------------------------------------------------------------------------
# Registry and dispatch
# ---------------------------------------------------------------------------

def test_registry_is_closed_and_enumerable():
    names = {d["name"] for d in TOOL_DEFINITIONS}
    assert names == set(TOOL_NAMES)
    descriptions = get_tool_descriptions()
    for name in names:
        assert f"- {name}:" in descriptions


def test_unknown_tool_is_a_failed_result(project):
    result = execute_tool("frobnicate", {"x": 1}, project)
    assert not result.success
    assert "frobnicate" in result.error


def test_invalid_arguments_do_not_raise(project):
    result = execute_tool("read_file", {}, project)
    assert not result.success
    assert "Invalid arguments for read_file" in result.error
    result = execute_tool("read_file", ["a.py"], project)
    assert not result.success


def test_camel_case_names_and_legacy_args(project):
    _write(project, "notes.txt", "hello world, this is a note\n")
    result = execute_tool("readFile", {"file_path": "notes.txt"}, project)
    assert result.success
    assert "hello world" in result.output

    result = execute_tool("editFile", {"path": "notes.txt", "old_string": "world", "new_string": "there"}, project)
    assert result.success
    assert _read(project, "notes.txt") == "hello there, this is a note\n"


def test_complete_tool_echoes_summary(project):
    assert execute_tool("complete", {"summary": "All set"}, project).output == "All set"


def test_progress_reported(project):
    messages = []
    execute_tool("write_file", {"path": "p.py", "content": CODE}, project, on_progress=messages.append)
    assert messages == ["Writing p.py..."]
