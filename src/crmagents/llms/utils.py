"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Utility functions for LLM interactions, including JSON extraction.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import LLMInvalidResponseError

_JSON_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")

JSON_ONLY_INSTRUCTION = "Respond with ONLY valid JSON."


def clamp_str(s: str, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + "…"


def extract_json_object(text: str) -> str | None:
    """
    Return the span from the first `{` to the last `}` in `text`, or None.

    The span is not checked for balance; parsing decides whether it is valid.
    """
    if not text:
        return None
    match = _JSON_OBJECT_SPAN.search(text)
    return match.group(0) if match else None


def parse_json_response(text: str) -> Any:
    """Extract and parse the JSON object embedded in an LLM response."""
    span = extract_json_object(text)
    if span is None:
        raise LLMInvalidResponseError("Failed to parse LLM response as JSON")
    try:
        return json.loads(span)
    except json.JSONDecodeError as e:
        raise LLMInvalidResponseError(
            f"Malformed JSON in LLM response: {e.msg} (line {e.lineno}, column {e.colno}): "
            f"{clamp_str(span, 200)}"
        ) from e


def with_json_instruction(system_prompt: str) -> str:
    return f"{system_prompt}\n\n{JSON_ONLY_INSTRUCTION}"
