"""Typed parsing of model output.

``parse_ai_json`` recovers JSON from fenced, prose-wrapped or truncated
responses. The ``parse_*`` section parsers validate the shape each section
expects and raise ``ParseError`` so callers can tell a bad response apart
from a provider failure.
"""
from __future__ import annotations

import json
import re
from typing import Any

from clarus.errors import ParseError
from clarus.services.logger import logger

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?([\s\S]*?)\n?\s*```")


def _strip_fences(raw: str) -> str | None:
    match = _FENCE_RE.search(raw)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def _extract_json_substring(raw: str) -> str | None:
    """Return the first balanced object or array, or the truncated tail."""
    start_obj = raw.find("{")
    start_arr = raw.find("[")
    if start_obj == -1 and start_arr == -1:
        return None
    if start_arr == -1 or (start_obj != -1 and start_obj < start_arr):
        start, open_ch, close_ch = start_obj, "{", "}"
    else:
        start, open_ch, close_ch = start_arr, "[", "]"

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
        if depth == 0:
            return raw[start : i + 1]
    return raw[start:]


def _repair_truncated(raw: str) -> str:
    repaired = re.sub(r",\s*$", "", raw.rstrip())

    quotes = 0
    escaped = False
    for ch in repaired:
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            quotes += 1
    if quotes % 2:
        repaired += '"'

    braces = brackets = 0
    in_string = escaped = False
    for ch in repaired:
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            braces += 1
        elif ch == "}":
            braces -= 1
        elif ch == "[":
            brackets += 1
        elif ch == "]":
            brackets -= 1

    return repaired + "]" * max(brackets, 0) + "}" * max(braces, 0)


def parse_ai_json(raw: str | None, context: str | None = None) -> Any:
    """Parse model JSON: direct, fenced block, balanced substring, then truncation repair."""
    if not raw or not isinstance(raw, str):
        raise ParseError("Empty or non-string input", context, str(raw or ""))

    trimmed = raw.strip()
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        pass

    fenced = _strip_fences(trimmed)
    if fenced:
        try:
            data = json.loads(fenced)
            logger.warning("[ai-response-parser] Parsed JSON from markdown code fence")
            return data
        except json.JSONDecodeError:
            pass

    substring = _extract_json_substring(trimmed)
    if substring:
        try:
            data = json.loads(substring)
            logger.warning("[ai-response-parser] Parsed JSON by extracting substring from prose")
            return data
        except json.JSONDecodeError:
            try:
                data = json.loads(_repair_truncated(substring))
                logger.warning("[ai-response-parser] Parsed JSON after repairing truncated response")
                return data
            except json.JSONDecodeError:
                pass

    preview = trimmed[:500] + "..." if len(trimmed) > 500 else trimmed
    raise ParseError(f"Unable to extract valid JSON from AI response (length={len(trimmed)})", context, preview)


# --- Section parsers ---


def parse_text(value: Any, section: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, dict) and isinstance(value.get(section), str):
        return value[section]
    raise ParseError("expected non-empty text", section)


def parse_triage(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError("expected a JSON object", "triage")
    return value


def parse_truth_check(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError("expected a JSON object", "truth_check")
    if value.get("refused") is True:
        return value
    if "overall_rating" not in value and "issues" not in value:
        raise ParseError("missing overall_rating and issues", "truth_check")
    return value


def parse_action_items(value: Any) -> Any:
    if isinstance(value, dict) and "action_items" in value:
        value = value["action_items"]
    if value is None:
        raise ParseError("empty action items", "action_items")
    return value


MAX_TAGS = 5


def parse_tags(value: Any) -> list[str]:
    raw_tags = value.get("tags") if isinstance(value, dict) else value
    if not isinstance(raw_tags, list):
        raise ParseError("expected a tags array", "auto_tags")

    tags: list[str] = []
    for tag in raw_tags:
        if not isinstance(tag, str):
            continue
        cleaned = tag.lower().strip().replace("-", " ")
        if 0 < len(cleaned) <= 50 and cleaned not in tags:
            tags.append(cleaned)
        if len(tags) == MAX_TAGS:
            break
    return tags


def parse_mid_summary(value: Any) -> tuple[str, str | None]:
    """Return ``(summary, title)``; plain text responses carry no title."""
    if isinstance(value, str) and value.strip():
        return value, None
    if isinstance(value, dict):
        summary = value.get("mid_length_summary") or value.get("summary")
        if isinstance(summary, str) and summary.strip():
            title = value.get("title")
            return summary, title.strip() if isinstance(title, str) and title.strip() else None
    raise ParseError("expected mid_length_summary text", "mid_length_summary")
