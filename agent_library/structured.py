"""
Structured output for adapters without a native JSON-schema option: the
schema is written into the prompt and the JSON object is recovered from the
agent's free-text answer afterwards.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import json
import re
from typing import Optional

from agent_library.models import OutputFormat

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def inject_output_schema(prompt: str, output_format: Optional[OutputFormat]) -> str:
    """Append formatting instructions for the requested schema to a prompt."""
    if not output_format or output_format.type != "json_schema" or not output_format.schema:
        return prompt
    schema_json = json.dumps(output_format.schema, indent=2)
    return f"""{prompt}

## REQUIRED OUTPUT FORMAT

You MUST return your response as a valid JSON object matching this schema:

```json
{schema_json}
```

IMPORTANT:
- Your final response MUST be ONLY the JSON object (no markdown code fences, no extra text)
- All required fields in the schema MUST be present
- The JSON must be valid and parseable"""


def _parse_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def extract_structured_output(content: Optional[str]) -> Optional[dict]:
    """Recover a JSON object from agent output.

    Tries the whole content, then a fenced code block, then the span from the
    first "{" to the last "}". Returns None when nothing parses to an object.
    """
    if not content:
        return None

    parsed = _parse_object(content.strip())
    if parsed is not None:
        return parsed

    match = FENCED_BLOCK_PATTERN.search(content)
    if match:
        parsed = _parse_object(match.group(1).strip())
        if parsed is not None:
            return parsed

    match = OBJECT_PATTERN.search(content)
    if match:
        return _parse_object(match.group(0))
    return None
