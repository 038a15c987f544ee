"""
JSON extraction for LLM responses.

Agents ask the model for raw JSON but models regularly wrap it in
markdown fences or add trailing commentary. These helpers recover the
first JSON object or array from such a reply.
"""

import json
import re
from typing import Any, Dict


class ParseError(Exception):
    """Raised when response parsing fails."""

    pass


def extract_json_from_response(raw_response: str) -> str:
    """
    Extract JSON content from LLM response.

    Handles multiple formats:
    - Raw JSON
    - JSON in markdown code blocks (```json ... ```)
    - JSON with leading/trailing prose

    Args:
        raw_response: Raw LLM response string

    Returns:
        Cleaned JSON string ready for parsing
    """
    content = raw_response.strip()

    code_block_pattern = r"```(?:json)?\s*([\s\S]*?)```"
    match = re.search(code_block_pattern, content)
    if match:
        content = match.group(1).strip()

    # Skip any prose before the first bracket
    starts = [i for i in (content.find("{"), content.find("[")) if i >= 0]
    if starts:
        content = content[min(starts):]

    opener = content[:1]
    closer = {"{": "}", "[": "]"}.get(opener)
    if closer is None:
        return content

    depth = 0
    in_string = False
    escaped = False
    for i, char in enumerate(content):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return content[: i + 1]

    # Unbalanced; let the JSON parser report it
    return content


def parse_json_object(raw_response: str) -> Dict[str, Any]:
    """
    Parse an LLM reply that must contain a JSON object.

    Raises:
        ParseError: If the reply is not valid JSON or not an object
    """
    json_str = extract_json_from_response(raw_response)

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse response JSON: {e}\nContent: {json_str[:500]}")

    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")

    return data
