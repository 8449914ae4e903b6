"""JSON extraction and repair helpers for free-text model responses.

Models asked for "JSON only" still wrap it in prose, markdown fences, or hand
back almost-JSON. ``recover_json`` isolates the first balanced JSON value and,
when that does not parse, applies a few conservative repairs. A repair is only
kept if the result parses; otherwise the extracted block is returned untouched
so the caller can decide to retry.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable

logger = logging.getLogger(__name__)

_CLOSING = {"{": "}", "[": "]"}
# Characters that may legitimately follow the closing quote of a string.
_STRING_TERMINATORS = {",", "}", "]", ":", ""}

_TRAILING_COMMA_RE = re.compile(r",\s*(?=[}\]])")
_BARE_KEY_RE = re.compile(r"(?<=[{,])(\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_KEY_AHEAD_RE = re.compile(r'"[A-Za-z_][A-Za-z0-9_ -]*"\s*:')
_BARE_LITERAL_RE = re.compile(r"^(?:true|false|null|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)$")


def clean_json_response(text: str) -> str:
    """Strip markdown code fences and surrounding whitespace from JSON-like text."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1 :]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def is_valid_json(text: str | None) -> bool:
    """True when ``text`` parses as a JSON object or array."""
    if not text or not text.strip():
        return False
    stripped = text.strip()
    if stripped[0] not in _CLOSING:
        return False
    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        return False
    return True


def extract_first_json_block(text: str | None) -> str | None:
    """Return the first balanced ``{...}`` or ``[...]`` block in ``text``.

    Brackets inside string literals are ignored. A start position whose
    brackets are mismatched is abandoned and the scan moves to the next
    opening bracket.
    """
    if not text or not text.strip():
        return None

    length = len(text)
    for start, opener in enumerate(text):
        if opener not in _CLOSING:
            continue

        stack: list[str] = []
        in_string = False
        escape = False
        for i in range(start, length):
            ch = text[i]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
            elif ch in _CLOSING:
                stack.append(ch)
            elif ch in ("}", "]"):
                if not stack or _CLOSING[stack.pop()] != ch:
                    break
                if not stack:
                    return text[start : i + 1]

    return None


def _next_significant_char(text: str, index: int) -> str:
    while index < len(text) and text[index].isspace():
        index += 1
    return text[index] if index < len(text) else ""


def _escape_inner_quotes(text: str) -> str:
    """Escape quotes that sit inside a string literal instead of ending it.

    Two-state scan (in string / not in string) with an escape flag. Inside a
    string, a quote only terminates it when the next significant character is
    structural. A quote that opens a ``"key":`` right after a comma means the
    previous value was never closed; the value is closed before that comma.
    """
    out: list[str] = []
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if escape:
            out.append(ch)
            escape = False
            continue
        if ch == "\\":
            out.append(ch)
            escape = True
            continue
        if ch != '"':
            out.append(ch)
            continue

        if not in_string:
            in_string = True
            out.append(ch)
            continue

        if _next_significant_char(text, i + 1) in _STRING_TERMINATORS:
            in_string = False
            out.append(ch)
            continue

        last = len(out) - 1
        while last >= 0 and out[last].isspace():
            last -= 1
        if last >= 0 and out[last] == "," and _KEY_AHEAD_RE.match(text, i):
            # Close the unterminated value, then open the next key.
            del out[last:]
            while out and out[-1].isspace():
                out.pop()
            out.append('", "')
            continue

        out.append('\\"')

    return "".join(out)


def _map_outside_strings(text: str, transform: Callable[[str], str]) -> str:
    """Apply ``transform`` to every stretch of ``text`` outside string literals."""
    pieces: list[str] = []
    segment_start = 0
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                pieces.append(text[segment_start : i + 1])
                segment_start = i + 1
        elif ch == '"':
            pieces.append(transform(text[segment_start:i]))
            segment_start = i
            in_string = True

    tail = text[segment_start:]
    pieces.append(tail if in_string else transform(tail))
    return "".join(pieces)


def _structural_cleanup(segment: str) -> str:
    segment = _TRAILING_COMMA_RE.sub("", segment)
    return _BARE_KEY_RE.sub(lambda m: f'{m.group(1)}"{m.group(2)}":', segment)


def _consume_array_element(text: str, index: int, out: list[str]) -> int:
    """Quote a bare scalar element starting at ``index``; return the new index."""
    start = index
    while start < len(text) and text[start].isspace():
        start += 1
    if start >= len(text) or text[start] in '"{[],':
        return index

    end = start
    while end < len(text) and text[end] not in ",]":
        end += 1

    raw = text[start:end]
    token = raw.rstrip()
    out.append(text[index:start])
    if _BARE_LITERAL_RE.match(token):
        out.append(token)
    else:
        out.append(json.dumps(token, ensure_ascii=False))
    out.append(raw[len(token):])
    return end


def _quote_bare_array_elements(text: str) -> str:
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escape = False
    i = 0

    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        out.append(ch)
        i += 1
        if ch == '"':
            in_string = True
        elif ch in _CLOSING:
            stack.append(ch)
            if ch == "[":
                i = _consume_array_element(text, i, out)
        elif ch in ("}", "]"):
            if stack:
                stack.pop()
        elif ch == "," and stack and stack[-1] == "[":
            i = _consume_array_element(text, i, out)

    return "".join(out)


def repair_json(block: str) -> str:
    """Heuristically repair near-valid JSON.

    Returns ``block`` unchanged when it already parses or when the repaired
    text still does not parse.
    """
    if not block or is_valid_json(block):
        return block

    working = block.strip()
    working = _escape_inner_quotes(working)
    working = _map_outside_strings(working, _structural_cleanup)
    working = _quote_bare_array_elements(working)

    if is_valid_json(working):
        return working

    logger.debug("JSON repair attempt failed; returning extracted block unchanged.")
    return block


def recover_json(text: str) -> str:
    """Fence-strip, extract and repair the JSON value carried in ``text``."""
    cleaned = clean_json_response(text)
    block = extract_first_json_block(cleaned) or cleaned
    return repair_json(block)
