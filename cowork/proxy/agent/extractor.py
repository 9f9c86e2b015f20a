"""Tool-call extraction from streamed model text.

Models announce filesystem operations inline, either as function-call text
such as ``write_file("notes.txt", "Hello")`` or as tagged JSON blocks
(``<tool_call>{"name": ..., "arguments": {...}}</tool_call>``). This module
turns accumulated response text into an ordered list of ToolCall records.

Extraction is pure and prefix-monotonic: each occurrence of a method name is
judged only on the text between it and its own closing parenthesis, so a
call found in a prefix is found again in any longer prefix. That makes it
safe to re-run on every streaming increment.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .models import METHOD_SHAPES, MethodShape, ToolCall

logger = logging.getLogger("cowork.agent.extractor")

SUPPORTED_METHODS: tuple[str, ...] = tuple(METHOD_SHAPES)

_CALL_START_RE = re.compile(r"\b(" + "|".join(map(re.escape, SUPPORTED_METHODS)) + r")\s*\(", re.IGNORECASE)

_TOOL_CALL_TAG_RE = re.compile(
    r"<tool_call>\s*(\{.*?\})\s*</tool_call>",
    re.DOTALL | re.IGNORECASE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


def extract_tool_calls(text: str | None) -> list[ToolCall]:
    """Return every call in ``text`` in source-position order.

    Method names match case-insensitively and are normalized to lower case.
    Repeated identical calls are kept as separate entries.
    """
    if not text:
        return []

    found: list[tuple[int, ToolCall]] = []

    for match in _CALL_START_RE.finditer(text):
        method = match.group(1).lower()
        args = _parse_arguments(text, match.end(), METHOD_SHAPES[method])
        if args is None:
            continue
        call = ToolCall.from_args(method, args)
        if call is not None:
            found.append((match.start(), call))

    for match in _TOOL_CALL_TAG_RE.finditer(text):
        call = _parse_tagged_call(match.group(1))
        if call is not None:
            found.append((match.start(), call))

    # sort is stable, so equal positions keep discovery order
    found.sort(key=lambda item: item[0])
    return [call for _, call in found]


# ── Function-call syntax ────────────────────────────────────────────

def _skip_ws(text: str, i: int) -> int:
    while i < len(text) and text[i].isspace():
        i += 1
    return i


def _read_quoted(text: str, i: int) -> tuple[str, int] | None:
    """Read a quoted string starting at ``text[i]``; None if unterminated."""
    quote = text[i]
    out: list[str] = []
    i += 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    return None


def _parse_arguments(text: str, pos: int, shape: MethodShape) -> list[str] | None:
    """Parse the argument list that starts right after ``(`` at ``pos``.

    Returns None when the call is malformed or not yet closed.
    """
    args: list[str] = []
    i = _skip_ws(text, pos)
    if i >= len(text):
        return None
    if text[i] == ")":
        return args

    while True:
        if text[i] in "\"'":
            quoted = _read_quoted(text, i)
            if quoted is None:
                return None
            value, i = quoted
        elif shape.raw_tail and len(args) == len(shape.args) - 1:
            end = text.find(")", i)
            if end == -1:
                return None
            value, i = text[i:end].strip(), end
        else:
            return None

        args.append(value)
        i = _skip_ws(text, i)
        if i >= len(text):
            return None
        if text[i] == ")":
            return args
        if text[i] != "," or len(args) >= len(shape.args):
            return None
        i = _skip_ws(text, i + 1)
        if i >= len(text):
            return None


# ── Tagged JSON syntax ──────────────────────────────────────────────

def _parse_tagged_call(raw: str) -> ToolCall | None:
    parsed = try_parse_json(raw)
    if parsed is None:
        return None

    function = parsed.get("function") if isinstance(parsed.get("function"), dict) else {}
    name = str(parsed.get("name") or function.get("name") or "").lower()
    arguments = (
        parsed.get("arguments")
        or parsed.get("parameters")
        or function.get("arguments")
        or {}
    )
    if isinstance(arguments, str):
        arguments = try_parse_json(arguments) or {}

    if name not in METHOD_SHAPES or not isinstance(arguments, dict):
        return None
    call = ToolCall.from_mapping(name, arguments)
    if call is not None:
        logger.debug(f"Extracted tagged tool_call: {name}")
    return call


def try_parse_json(raw: str) -> dict[str, Any] | None:
    """Parse JSON, repairing trailing commas and single quotes if needed."""
    candidates = [raw]
    cleaned = re.sub(r",\s*([}\]])", r"\1", raw)
    candidates.append(cleaned)
    candidates.append(cleaned.replace("'", '"'))

    for candidate in candidates:
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result
    return None
