"""Turn raw model text into parsed JSON, or fail loudly.

Steps, in order: strip wrapping code fences, strip citation markers, trim,
parse. Grounded responses often decorate values with ``[1]``-style citation
markers; those are removed only outside JSON strings and only where they
follow a completed value, so "Pack [2] Socks" and ``"sizes": [38]`` survive.

Known limitation: a marker that does not follow a value, such as one placed
after a separating comma (``{"a": "x", [1] "b": "y"}``), is kept and the
parse fails with ParseFailure.
"""

from __future__ import annotations

import json
import re
from typing import Any

from lens_inventory.errors import ParseFailure

_FENCE_LANGS = ("json", "JSON")
_CITATION = re.compile(r"\[\s*\d+(?:\s*,\s*\d+)*\s*\]")
# A citation can only follow the end of a value: a closing quote/brace/
# bracket, a digit, or the last letter of true/false/null
_VALUE_END = set('"}]') | set("0123456789") | set("el")


def strip_code_fence(text: str) -> str:
    """Remove a wrapping markdown code fence, with or without a language tag.

    Handles both multiline (```json\\n...\\n```) and single-line (```{...}```)
    forms. Text without a leading fence is returned unchanged.
    """
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    for lang in _FENCE_LANGS:
        text = text.removeprefix(lang)
    text = text.lstrip("\n")
    if "```" in text:
        text = text.rsplit("```", 1)[0]
    return text.strip()


def strip_citation_markers(text: str) -> str:
    """Remove bracketed numeric citation markers outside JSON string literals."""
    out: list[str] = []
    i = 0
    in_string = False
    escape_next = False
    last_significant = ""
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape_next:
                escape_next = False
            elif ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
                last_significant = '"'
            i += 1
            continue
        if ch == "[" and last_significant in _VALUE_END:
            marker = _CITATION.match(text, i)
            if marker:
                i = marker.end()
                continue
        if ch == '"':
            in_string = True
        if not ch.isspace():
            last_significant = ch
        out.append(ch)
        i += 1
    return "".join(out)


def _balanced_segment(text: str, start: int) -> str | None:
    """Return the balanced JSON object or array that opens at ``start``."""
    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _embedded_json(text: str) -> Any:
    """Parse the first JSON object or array embedded in surrounding prose.

    Only top-level segments are tried, never values nested inside a broken
    one, so a truncated payload cannot yield one of its inner records.
    Citation-shaped brackets ("[1]") are skipped rather than taken as data.
    Returns None when no embedded value parses.
    """
    start = 0
    while start < len(text):
        if text[start] not in "{[":
            start += 1
            continue
        segment = _balanced_segment(text, start)
        if segment is None:
            return None
        if not _CITATION.fullmatch(segment):
            try:
                return json.loads(segment)
            except json.JSONDecodeError:
                pass
        start += len(segment)
    return None


def sanitize(raw: str) -> str:
    """Apply fence and citation stripping, then trim."""
    return strip_citation_markers(strip_code_fence(raw or "")).strip()


def parse_model_json(raw: str) -> Any:
    """Sanitize raw model text and parse it as JSON.

    Falls back to the outermost JSON value when the model wrapped the payload
    in prose. Raises ParseFailure (with a bounded snippet) otherwise; never
    substitutes an empty default.
    """
    text = sanitize(raw)
    if not text:
        raise ParseFailure("empty response", raw or "")

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        first_error = exc

    embedded = _embedded_json(text)
    if embedded is not None:
        return embedded
    raise ParseFailure(f"invalid JSON ({first_error.msg})", text) from first_error
