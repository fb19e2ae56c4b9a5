"""
System prompt and the fixed instructions the loop feeds back to the model.
"""

import re
from typing import Dict, List, Optional

from tools import get_tool_descriptions

SYSTEM_PROMPT = """You are Local Codex, an autonomous coding assistant working inside the user's project directory.

RULES:
1. ALWAYS write COMPLETE, working code. NO placeholders like "// TODO", "..." or "// code here".
2. Call several independent tools at once when you can (e.g. read three files in one turn).
3. READ a file before editing it. Edits must match the current content exactly.
4. If the user only greets you or asks a general question, answer directly, then call "complete" with your answer as the summary.
5. Search the codebase before writing new code to avoid duplication.

AVAILABLE TOOLS:
{tools}

TOOL USAGE FORMAT (JSON only, one object per call):
{{"tool": "tool_name", "args": {{"arg1": "value1"}}}}

EXAMPLES:

User: "How are you?"
Assistant: {{"tool": "complete", "args": {{"summary": "I'm doing well and ready to code. What should we work on?"}}}}

User: "Show me app.py"
Assistant: {{"tool": "read_file", "args": {{"path": "app.py"}}}}

User: "Add a health endpoint" (after reading the files)
Assistant: {{"tool": "edit_file", "args": {{"path": "app.py", "search": "app = Flask(__name__)\\n", "replace": "app = Flask(__name__)\\n\\n\\n@app.route(\\"/health\\")\\ndef health():\\n    return {{\\"ok\\": True}}\\n"}}}}

When the work is finished:
{{"tool": "complete", "args": {{"summary": "Added /health to app.py"}}}}

WORKFLOW:
1. Gather context with read-only tools.
2. Make the changes.
3. Verify (run tests or the program when it makes sense).
4. Call "complete" with a short summary.
"""

CORRECTIVE_INSTRUCTION = "Please fix this and try again. Remember: Write COMPLETE code, no placeholders."
CONTINUE_INSTRUCTION = 'Continue with the next step or use the "complete" tool when done.'
NUDGE_INSTRUCTION = (
    'No tool call was found in your reply. Respond with a JSON tool call such as '
    '{"tool": "read_file", "args": {"path": "..."}}, or finish with '
    '{"tool": "complete", "args": {"summary": "..."}}.'
)

# Tool output folded back into the conversation, per result
MAX_TOOL_OUTPUT_CHARS = 8000

_COMPLETION_PHRASES = re.compile(
    r"\b(task completed?|finished|all done|(?:created|written|updated) successfully|successfully (?:created|written|updated))\b"
)
# Words that turn a completion phrase into a negation or a condition
_QUALIFIERS = re.compile(r"\bnot\b|n't\b|\bnever\b|\byet\b|\bonce\b|\bwhen\b|\bafter\b|\bbefore\b|\buntil\b|\bif\b")
_CLAUSE_BREAKS = ".!?\n:;"


def build_system_prompt(memories: Optional[List[str]] = None, working_directory: Optional[str] = None,
                        project_context: Optional[str] = None, file_context: Optional[str] = None,
                        code_context: Optional[List[str]] = None) -> str:
    prompt = SYSTEM_PROMPT.format(tools=get_tool_descriptions())
    if working_directory:
        prompt += f"\nWorking directory: {working_directory}\n"
    if project_context:
        prompt += f"\nPROJECT CONTEXT:\n{project_context}\n"
    if code_context:
        prompt += "\nRELEVANT CODE (from the repository index):\n" + "\n\n".join(code_context) + "\n"
    if file_context:
        prompt += f"\nFILE CONTEXT (supplied by the user):\n{file_context}\n"
    if memories:
        prompt += "\nRELEVANT MEMORIES (from earlier sessions):\n" + "\n".join(memories) + "\n"
    return prompt


def trim_history(history: List[Dict[str, str]], max_chars: int) -> List[Dict[str, str]]:
    """Keep the most recent turns whose combined content fits in max_chars."""
    kept: List[Dict[str, str]] = []
    total = 0
    for turn in reversed(history or []):
        content = turn.get("content") or ""
        if total + len(content) > max_chars:
            break
        kept.append({"role": turn.get("role", "user"), "content": content})
        total += len(content)
    kept.reverse()
    return kept


def format_tool_results(names: List[str], results: list) -> str:
    """Render results as the text block appended after a tool batch."""
    blocks = []
    for name, result in zip(names, results):
        text = result.to_text()
        if len(text) > MAX_TOOL_OUTPUT_CHARS:
            text = text[:MAX_TOOL_OUTPUT_CHARS] + f"\n... (truncated, {len(text) - MAX_TOOL_OUTPUT_CHARS} more chars)"
        status = "OK" if result.success else "ERROR"
        blocks.append(f"[{name}] {status}:\n{text}")
    return "\n\n".join(blocks)


def looks_complete(text: str) -> bool:
    """True when a plain-text reply announces the work is finished."""
    lower = (text or "").lower()
    for match in _COMPLETION_PHRASES.finditer(lower):
        clause_start = max(lower.rfind(c, 0, match.start()) for c in _CLAUSE_BREAKS) + 1
        if not _QUALIFIERS.search(lower, clause_start, match.start()):
            return True
    return False


def trailing_question(text: str) -> Optional[str]:
    """The final question of a reply that ends by asking the user something."""
    stripped = (text or "").strip()
    if not stripped.endswith("?"):
        return None
    # Last sentence, or last line if the reply is a single paragraph
    last_line = stripped.splitlines()[-1].strip()
    parts = re.split(r"(?<=[.!])\s+", last_line)
    return parts[-1].strip() or stripped
