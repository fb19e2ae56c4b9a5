"""
Tool-call extraction from free-form model text.

Models are asked to answer with {"tool": "<name>", "args": {...}} objects but
freely wrap them in prose, code fences or half-finished JSON. The scanner
walks the text left to right, matching braces outside of string literals,
and keeps going past anything it cannot decode.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ToolInvocation:
    """One requested capability call"""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


_TOOL_FIELD = re.compile(r'"tool"\s*:\s*"([A-Za-z_][\w.-]*)"')
_STRING_FIELD = re.compile(r'"([A-Za-z_]\w*)"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_SCALAR_FIELD = re.compile(r'"([A-Za-z_]\w*)"\s*:\s*(true|false|-?\d+(?:\.\d+)?)\s*[,}]')
# Last-field content that may hold unescaped quotes: run to the final closing quote
_GREEDY_CONTENT = re.compile(r'"content"\s*:\s*"([\s\S]*)"\s*\}', re.DOTALL)


def _scan_object(text: str, start: int) -> Optional[int]:
    """Index of the brace closing the object opened at start, or None if unterminated."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if in_string:
            if ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _unescape(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return (raw.replace("\\n", "\n").replace("\\t", "\t")
                .replace('\\"', '"').replace("\\\\", "\\"))


def _from_object(obj: Any) -> Optional[ToolInvocation]:
    if not isinstance(obj, dict):
        return None
    name = obj.get("tool")
    args = obj.get("args")
    if isinstance(name, str) and name.strip() and isinstance(args, dict):
        return ToolInvocation(name=name.strip(), args=args)
    return None


def _extract_fields(span: str, known_tools: Optional[Collection[str]]) -> Optional[ToolInvocation]:
    """Salvage a call from malformed JSON by pulling out its key/value pairs."""
    match = _TOOL_FIELD.search(span)
    if not match:
        return None
    name = match.group(1)
    if known_tools is not None and name not in known_tools:
        return None

    args: Dict[str, Any] = {}
    for m in _STRING_FIELD.finditer(span):
        key, raw = m.group(1), m.group(2)
        if key in ("tool", "args"):
            continue
        if key == "content":
            rest = span[m.end():].lstrip()
            if rest and rest[0] not in ",}":
                greedy = _GREEDY_CONTENT.search(span, m.start())
                if greedy:
                    args.setdefault(key, _unescape(greedy.group(1)))
                    break
        args.setdefault(key, _unescape(raw))
    for m in _SCALAR_FIELD.finditer(span):
        key = m.group(1)
        if key not in args:
            args[key] = json.loads(m.group(2))

    logger.debug(f"Recovered {name} call by field extraction ({len(args)} args)")
    return ToolInvocation(name=name, args=args)


def parse_tool_calls(text: str, known_tools: Optional[Collection[str]] = None) -> List[ToolInvocation]:
    """Extract every tool invocation from text, left to right.

    known_tools limits which names field extraction may salvage from malformed
    JSON. Well-formed objects are returned whatever their name, so unknown
    tools surface as execution errors rather than vanishing.
    """
    calls: List[ToolInvocation] = []
    if not text:
        return calls
    pos = 0
    truncated_at: Optional[int] = None
    calls_before_truncation = 0
    while True:
        start = text.find("{", pos)
        if start == -1:
            break
        end = _scan_object(text, start)
        if end is None:
            # A stray brace may precede real calls, so keep scanning after it
            if truncated_at is None:
                truncated_at = start
                calls_before_truncation = len(calls)
            pos = start + 1
            continue

        span = text[start:end + 1]
        try:
            obj = json.loads(span)
        except ValueError:
            salvaged = _extract_fields(span, known_tools)
            if salvaged:
                calls.append(salvaged)
                pos = end + 1
            else:
                pos = start + 1
            continue

        invocation = _from_object(obj)
        if invocation:
            calls.append(invocation)
        pos = end + 1

    # Nothing decodable after an unterminated object: treat it as a cut-off call
    if truncated_at is not None and len(calls) == calls_before_truncation:
        salvaged = _extract_fields(text[truncated_at:], known_tools)
        if salvaged:
            calls.append(salvaged)
    return calls
