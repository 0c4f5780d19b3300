import json
import re
from typing import Any, Optional
from loguru import logger

# Greedy: spans from the first opening bracket to the last closing one.
_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def _extract(text: Optional[str], pattern: re.Pattern, expected: type) -> Optional[Any]:
    if not text:
        return None

    match = pattern.search(text)
    if not match:
        return None

    try:
        value = json.loads(match.group(0))
    except ValueError as e:
        logger.debug(f"Model output is not valid JSON: {e}")
        return None

    if not isinstance(value, expected):
        return None
    return value


def extract_json_array(text: Optional[str]) -> Optional[list]:
    """Returns the first JSON array embedded in free-form model output, or None."""
    return _extract(text, _ARRAY_PATTERN, list)


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    """Returns the first JSON object embedded in free-form model output, or None."""
    return _extract(text, _OBJECT_PATTERN, dict)
