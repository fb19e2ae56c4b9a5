"""
Fast-path routing for trivial requests that need no model call:
the time, the date, listing a directory, printing a file, and arithmetic.
"""

import ast
import logging
import operator
import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, available_timezones

from backend import Backend, LocalBackend
from tools import list_directory, read_file

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"\b(what(?:'s| is)? the (?:current )?time|what time is it|current time|time now)\b")
_DATE_RE = re.compile(r"\b(what(?:'s| is)? the (?:current )?date|what(?:'s| is)? today'?s? date|today'?s date|current date)\b")
_ZONE_RE = re.compile(r"\bin\s+([a-z][a-z_ ]*[a-z])\s*\??$")
_LIST_RE = re.compile(r"^(?:list files|show files|ls)(?:\s+in)?(?:\s+(.+))?$", re.IGNORECASE)
_READ_RE = re.compile(r"^(?:read|cat)\s+(\S+)$", re.IGNORECASE)
_MATH_RE = re.compile(r"^[\d\s.+\-*/%()]+$")

_MATH_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _eval_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _MATH_OPS:
        left, right = _eval_node(node.left), _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > 100:
            raise ValueError("exponent too large")
        return _MATH_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _MATH_OPS:
        return _MATH_OPS[type(node.op)](_eval_node(node.operand))
    raise ValueError("unsupported expression")


def evaluate_math(expression: str) -> Optional[str]:
    """Evaluate plain arithmetic. None when the text is not a safe expression."""
    expr = expression.strip()
    if not _MATH_RE.match(expr) or not re.search(r"\d\s*[-+*/%]", expr):
        return None
    try:
        value = _eval_node(ast.parse(expr, mode="eval"))
    except (SyntaxError, ValueError, ZeroDivisionError, OverflowError):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def _zone_for(lower: str) -> Optional[ZoneInfo]:
    """Timezone for a trailing 'in <city>' phrase, if it names a known zone."""
    match = _ZONE_RE.search(lower)
    if not match:
        return None
    city = match.group(1).strip().replace(" ", "_")
    for key in available_timezones():
        if key.lower() == city or key.lower().endswith("/" + city):
            return ZoneInfo(key)
    return None


def route_intent(message: str, working_directory: str = ".",
                 backend: Optional[Backend] = None) -> Optional[str]:
    """Answer message locally, or return None to hand it to the agent."""
    text = (message or "").strip()
    if not text:
        return None
    lower = text.lower()

    if _TIME_RE.search(lower):
        zone = _zone_for(lower)
        now = datetime.now(zone) if zone else datetime.now()
        where = f" in {zone.key}" if zone else ""
        return f"It's {now.strftime('%H:%M:%S')}{where}"

    if _DATE_RE.search(lower):
        zone = _zone_for(lower)
        now = datetime.now(zone) if zone else datetime.now()
        return f"Today is {now.strftime('%A, %B %d, %Y')}"

    b = backend or LocalBackend(working_directory)
    list_match = _LIST_RE.match(text)
    if list_match:
        target = (list_match.group(1) or ".").strip()
        result = list_directory(path=target, backend=b)
        return result.output if result.success else f"Error: {result.error}"

    read_match = _READ_RE.match(text)
    if read_match and "what" not in lower:
        result = read_file(path=read_match.group(1), backend=b)
        return result.output if result.success else f"Error: {result.error}"

    answer = evaluate_math(text)
    if answer is not None:
        return answer

    logger.debug("No fast-path intent matched")
    return None
