"""
Decoding of raw model answers.

Models wrap answers in Markdown fences or add a sentence of prose around
them no matter what the prompt says. Every caller goes through the same
three steps: strip known wrappers, parse strictly, fall back to a typed
default at the call site when parsing fails.
"""

import re
import json
from typing import Any

from build_healer.errors import ModelError


_FENCE_RE = re.compile(r"```[ \t]*[\w+.-]*[ \t]*\r?\n(.*?)\r?\n?[ \t]*```", re.DOTALL)


def strip_wrapping_fence(text: str) -> str:
    """
    Remove a fence only when it wraps the whole answer.

    Used for source code answers, where a ``` inside the file (a Markdown
    string, a doc comment) must survive. Anything after the last bare
    closing fence is commentary and is dropped with it.
    """
    if text is None:
        return ""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return text
    body = stripped.splitlines(keepends=True)[1:]
    for index in range(len(body) - 1, -1, -1):
        if body[index].strip() == "```":
            body = body[:index]
            break
    return "".join(body)


def strip_code_fences(text: str) -> str:
    """
    Remove Markdown code-fence wrapping from a model answer.

    If the answer contains a fenced block, the first block's body is
    returned. An unterminated opening fence is dropped too. Text without
    fences comes back stripped but otherwise unchanged.
    """
    if text is None:
        return ""
    stripped = text.strip()

    match = _FENCE_RE.search(stripped)
    if match:
        return match.group(1).strip()

    return strip_wrapping_fence(stripped).strip()


def _outermost_json(text: str) -> str:
    """Slice from the first { or [ to its last matching closer"""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return text
    return text[start:end + 1]


def parse_json_response(text: str) -> Any:
    """
    Decode a model answer that should be JSON.

    Raises ModelError when nothing parseable is left after stripping.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ModelError("empty model answer")

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidate = _outermost_json(cleaned)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ModelError(f"model answer is not valid JSON: {e.msg} at position {e.pos}")


def parse_json_object(text: str) -> dict:
    data = parse_json_response(text)
    if not isinstance(data, dict):
        raise ModelError(f"expected a JSON object, got {type(data).__name__}")
    return data
