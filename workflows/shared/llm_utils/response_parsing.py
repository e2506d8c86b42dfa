"""LLM response parsing utilities."""

import json
import re
from typing import Any, Optional

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _strip_fences(content: str) -> str:
    match = _FENCE_RE.search(content)
    if match:
        return match.group(1)
    if content.startswith("```"):
        # Unterminated fence, usually a truncated response
        return content.split("\n", 1)[1] if "\n" in content else ""
    return content


def extract_json_from_response(content: str, default: Optional[Any] = None) -> Any:
    """Extract JSON from an LLM response.

    Handles markdown code fences and prose before or after the JSON value.

    Raises:
        json.JSONDecodeError: no JSON could be decoded and no default was given
    """
    content = _strip_fences(content.strip()).strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError as first_error:
        starts = [i for i in (content.find("{"), content.find("[")) if i >= 0]
        if starts:
            try:
                value, _ = json.JSONDecoder().raw_decode(content[min(starts):])
                return value
            except json.JSONDecodeError:
                pass
        if default is not None:
            return default
        raise first_error


def extract_response_content(response: Any) -> str:
    """Extract text content from various LLM response formats."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                if block.get("type", "text") == "text":
                    parts.append(block.get("text", ""))
            elif hasattr(block, "text"):
                parts.append(block.text)
            else:
                parts.append(str(block))
        return "".join(parts).strip()
    return str(content).strip()
