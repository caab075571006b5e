"""Helpers for pulling structured data out of model responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Patterns for sensitive data that should be masked in error messages
SENSITIVE_PATTERNS = [
    (re.compile(r'(Bearer\s+)[A-Za-z0-9_.-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(x-api-key["\s:=]+)[A-Za-z0-9_-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(api[_-]?key["\s:=]+)[A-Za-z0-9_-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(Authorization["\s:=]+)[A-Za-z0-9_-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(sk-ant-)[A-Za-z0-9_-]+'), r'\1[REDACTED]'),  # Anthropic key format
    (re.compile(r'(sk-)(?!ant-)[A-Za-z0-9]+'), r'\1[REDACTED]'),  # OpenAI key format
    (re.compile(r'(gh[pousr]_)[A-Za-z0-9]+'), r'\1[REDACTED]'),  # GitHub token format
]

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*)'")


def sanitize_error(message: str) -> str:
    """Sanitize error messages to remove sensitive data.

    Masks API keys, bearer tokens, and other sensitive patterns
    to prevent them from being logged or shown to users.

    Args:
        message: Error message that may contain sensitive data.

    Returns:
        Sanitized message with sensitive data masked.
    """
    result = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _balanced_object(content: str) -> Optional[str]:
    """Return the first brace-balanced object in content, ignoring braces in strings."""
    start = content.find('{')
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False

    for i, char in enumerate(content[start:], start):
        if escape:
            escape = False
            continue
        if char == '\\' and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return content[start:i + 1]
    return None


def repair_json(text: str) -> str:
    """Apply basic repairs for JSON that models commonly get wrong.

    Removes trailing commas, quotes bare object keys and converts
    single-quoted values to double-quoted ones.
    """
    fixed = _TRAILING_COMMA_RE.sub(r"\1", text)
    fixed = _UNQUOTED_KEY_RE.sub(r'\1"\2":', fixed)
    fixed = _SINGLE_QUOTED_VALUE_RE.sub(r': "\1"', fixed)
    return fixed


def extract_json_from_response(content: str) -> tuple[Optional[dict], str]:
    """Extract a JSON object from a model response using multiple strategies.

    Tries, in order:
    1. Parse entire response as JSON
    2. Extract from ```json code blocks
    3. Find the first balanced object (handles nested objects and strings)
    4. Apply basic repairs to the balanced object and parse again

    Args:
        content: Raw response content from the model.

    Returns:
        Tuple of (parsed_dict or None, error_message).
    """
    if not content or not content.strip():
        return None, "Empty response content"

    # Strategy 1: Try parsing entire response as JSON
    try:
        parsed = json.loads(content)
        if isinstance(parsed, dict):
            return parsed, ""
    except json.JSONDecodeError:
        pass

    # Strategy 2: Extract from markdown code block
    block = _FENCE_RE.search(content)
    if block:
        try:
            return json.loads(block.group(1)), ""
        except json.JSONDecodeError:
            pass

    # Strategy 3: Balanced braces
    candidate = _balanced_object(content)
    if candidate is None:
        return None, "No JSON object found in response"

    try:
        return json.loads(candidate), ""
    except json.JSONDecodeError:
        pass

    # Strategy 4: Repair and retry
    try:
        parsed = json.loads(repair_json(candidate))
        logger.debug("JSON parsing recovered after repair")
        return parsed, ""
    except json.JSONDecodeError as e:
        return None, f"Could not extract valid JSON from response: {e}"


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def as_str_list(value: Any) -> list[str]:
    """Coerce a model-provided value into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return [str(value)]
