import json
import re
from typing import Any, Dict, Optional

from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse a single JSON object from model output.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Prose before or after the object
    - Trailing concatenated objects (only the first is kept)

    Args:
        text: Raw model output

    Returns:
        Parsed dict, or None when no JSON object can be recovered
    """
    if not text:
        return None

    cleaned_text = strip_code_fences(text)

    try:
        parsed = json.loads(cleaned_text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, attempting recovery...")

    # Decode the first complete object starting at the first brace
    decoder = json.JSONDecoder()
    start = cleaned_text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(cleaned_text, start)
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass
        start = cleaned_text.find("{", start + 1)

    LOGGER.error("Failed to recover a JSON object from model output")
    return None
